from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .models import CandidateContact, Conflict, Contact
from .normalization import normalize_email, normalize_phone


@dataclass
class MatchPartition:
    safe: List[CandidateContact] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.safe) + len(self.conflicts)


def is_duplicate(candidate: CandidateContact, existing: Contact) -> bool:
    email = normalize_email(candidate.email)
    if email and normalize_email(existing.email) == email:
        return True
    phone = normalize_phone(candidate.phone)
    return bool(phone) and normalize_phone(existing.phone) == phone


class DuplicateMatcher:
    """Partition candidates against existing contacts.

    The scan is linear and keeps the order of ``existing``: the first contact
    matching on email or phone wins. Candidates are never compared with each
    other.
    """

    def find_match(
        self, candidate: CandidateContact, existing: Sequence[Contact]
    ) -> Optional[Contact]:
        for contact in existing:
            if is_duplicate(candidate, contact):
                return contact
        return None

    def partition(
        self, candidates: Sequence[CandidateContact], existing: Sequence[Contact]
    ) -> MatchPartition:
        result = MatchPartition()
        for idx, candidate in enumerate(candidates):
            match = self.find_match(candidate, existing)
            if match is None:
                result.safe.append(candidate)
            else:
                result.conflicts.append(Conflict(candidate=candidate, existing=match, index=idx))
        return result
