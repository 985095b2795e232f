from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .models import Contact

RemovedEntry = Tuple[int, Contact]


class ContactCollection:
    """The engine's visible, optimistically updated view of the contact list.

    Newest contacts sit at the front, the way the dashboard lists them.
    """

    def __init__(self, contacts: Iterable[Contact] = ()):
        self._contacts: List[Contact] = list(contacts)

    def __len__(self) -> int:
        return len(self._contacts)

    def __iter__(self) -> Iterator[Contact]:
        return iter(list(self._contacts))

    def __contains__(self, contact_id: object) -> bool:
        return any(contact.id == contact_id for contact in self._contacts)

    def snapshot(self) -> List[Contact]:
        return list(self._contacts)

    def ids(self) -> List[str]:
        return [contact.id for contact in self._contacts]

    def get(self, contact_id: str) -> Optional[Contact]:
        for contact in self._contacts:
            if contact.id == contact_id:
                return contact
        return None

    def add(self, contact: Contact) -> None:
        if not self.replace(contact):
            self._contacts.insert(0, contact)

    def add_many(self, contacts: Sequence[Contact]) -> None:
        for contact in reversed(contacts):
            self.add(contact)

    def replace(self, contact: Contact) -> bool:
        for idx, current in enumerate(self._contacts):
            if current.id == contact.id:
                self._contacts[idx] = contact
                return True
        return False

    def apply_fields(self, contact_ids: Iterable[str], fields: Dict[str, Any]) -> None:
        wanted = set(contact_ids)
        self._contacts = [
            contact.with_fields(**fields) if contact.id in wanted else contact
            for contact in self._contacts
        ]

    def remove(self, contact_ids: Iterable[str]) -> List[RemovedEntry]:
        wanted = set(contact_ids)
        removed = [
            (idx, contact) for idx, contact in enumerate(self._contacts) if contact.id in wanted
        ]
        self._contacts = [contact for contact in self._contacts if contact.id not in wanted]
        return removed

    def restore(self, entries: Sequence[RemovedEntry]) -> None:
        for position, contact in sorted(entries, key=lambda entry: entry[0]):
            if contact.id in self:
                continue
            self._contacts.insert(min(position, len(self._contacts)), contact)
