from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ReconciliationMismatch

FIELD_NAMES = ("full_name", "phone", "email", "company", "job_title")
REQUIRED_FIELDS = ("full_name", "phone")
MERGEABLE_FIELDS = ("company", "job_title", "email")

# backend payload keys (camelCase for batch bodies, snake_case for single
# contact requests) -> engine field names
_API_FIELD_ALIASES = {
    "fullName": "full_name",
    "full_name": "full_name",
    "phone": "phone",
    "email": "email",
    "company": "company",
    "jobTitle": "job_title",
    "job_title": "job_title",
    "source": "source",
    "consent": "consent",
}


class Source(str, Enum):
    OCR = "ocr"
    FORM = "form"
    IMPORT = "import"
    MANUAL = "manual"

    @property
    def api_value(self) -> str:
        return "ocr_list" if self is Source.OCR else self.value

    @classmethod
    def from_api(cls, value: Any) -> "Source":
        raw = str(value or "").strip().lower()
        if raw in ("ocr_list", "ocr"):
            return cls.OCR
        if raw == "api":
            return cls.FORM
        try:
            return cls(raw)
        except ValueError:
            return cls.MANUAL


class ConsentStatus(str, Enum):
    OPT_IN = "opt-in"
    OPT_OUT = "opt-out"
    UNKNOWN = "unknown"

    @property
    def api_value(self) -> str:
        return self.value.replace("-", "_")

    @classmethod
    def from_api(cls, value: Any) -> "ConsentStatus":
        raw = str(value or "").strip().lower().replace("_", "-")
        try:
            return cls(raw)
        except ValueError:
            return cls.UNKNOWN


class Resolution(str, Enum):
    PENDING = "pending"
    SKIP = "skip"
    MERGE = "merge"
    ADD = "add"


def translate_field_errors(errors: Optional[Dict[str, Any]]) -> Dict[str, List[str]]:
    """Re-key a backend field-error map with engine field names."""
    translated: Dict[str, List[str]] = {}
    for key, value in (errors or {}).items():
        name = _API_FIELD_ALIASES.get(str(key), str(key))
        messages = value if isinstance(value, list) else [value]
        translated.setdefault(name, []).extend(str(message) for message in messages)
    return translated


_ENGINE_TO_API = {
    "full_name": "fullName",
    "phone": "phone",
    "email": "email",
    "company": "company",
    "job_title": "jobTitle",
    "source": "source",
    "consent": "consent",
}


def fields_to_api(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Re-key engine field updates for a field-level store update."""
    payload: Dict[str, Any] = {}
    for name, value in fields.items():
        key = _ENGINE_TO_API.get(name)
        if key is None:
            raise KeyError(f"unknown contact field: {name}")
        if isinstance(value, (Source, ConsentStatus)):
            value = value.api_value
        payload[key] = value
    return payload


def _text(payload: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return str(value).strip()
    return ""


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass
class CandidateContact:
    full_name: str = ""
    phone: str = ""
    email: str = ""
    company: str = ""
    job_title: str = ""
    source: Source = Source.MANUAL
    consent: ConsentStatus = ConsentStatus.UNKNOWN

    @classmethod
    def from_mapping(cls, payload: Dict[str, Any]) -> "CandidateContact":
        return cls(
            full_name=_text(payload, "full_name", "fullName"),
            phone=_text(payload, "phone"),
            email=_text(payload, "email"),
            company=_text(payload, "company"),
            job_title=_text(payload, "job_title", "jobTitle"),
            source=Source.from_api(payload.get("source")),
            consent=ConsentStatus.from_api(payload.get("consent")),
        )

    def missing_fields(self) -> List[str]:
        return [name for name in REQUIRED_FIELDS if not getattr(self, name).strip()]

    def is_complete(self) -> bool:
        return not self.missing_fields()

    def to_dict(self) -> Dict[str, str]:
        return {
            "full_name": self.full_name,
            "phone": self.phone,
            "email": self.email,
            "company": self.company,
            "job_title": self.job_title,
            "source": self.source.value,
            "consent": self.consent.value,
        }

    def to_api(self) -> Dict[str, Optional[str]]:
        return {
            "fullName": self.full_name,
            "phone": self.phone,
            "email": self.email or None,
            "company": self.company or None,
            "jobTitle": self.job_title or None,
            "source": self.source.api_value,
            "consent": self.consent.api_value,
        }

    def copy(self) -> "CandidateContact":
        return replace(self)


@dataclass(frozen=True)
class Contact:
    id: str
    full_name: str
    phone: str
    email: str = ""
    company: str = ""
    job_title: str = ""
    source: Source = Source.MANUAL
    consent: ConsentStatus = ConsentStatus.UNKNOWN
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "Contact":
        contact_id = _text(payload, "id")
        if not contact_id:
            raise ValueError("contact payload has no id")
        return cls(
            id=contact_id,
            full_name=_text(payload, "fullName", "full_name"),
            phone=_text(payload, "phone"),
            email=_text(payload, "email"),
            company=_text(payload, "company"),
            job_title=_text(payload, "jobTitle", "job_title"),
            source=Source.from_api(payload.get("source")),
            consent=ConsentStatus.from_api(payload.get("consent")),
            created_at=_parse_timestamp(payload.get("createdAt", payload.get("created_at"))),
            updated_at=_parse_timestamp(payload.get("updatedAt", payload.get("updated_at"))),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "phone": self.phone,
            "email": self.email,
            "company": self.company,
            "job_title": self.job_title,
            "source": self.source.value,
            "consent": self.consent.value,
            "created_at": self.created_at.isoformat() if self.created_at else "",
            "updated_at": self.updated_at.isoformat() if self.updated_at else "",
        }

    def with_fields(self, **changes: Any) -> "Contact":
        return replace(self, **changes)


@dataclass
class Conflict:
    candidate: CandidateContact
    existing: Contact
    index: int
    resolution: Resolution = Resolution.PENDING

    @property
    def is_resolved(self) -> bool:
        return self.resolution is not Resolution.PENDING

    def merge_fields(self) -> Dict[str, str]:
        """Fields empty on the existing contact that the candidate can fill."""
        updates: Dict[str, str] = {}
        for name in MERGEABLE_FIELDS:
            incoming = getattr(self.candidate, name).strip()
            if incoming and not getattr(self.existing, name).strip():
                updates[name] = incoming
        return updates


@dataclass(frozen=True)
class DuplicateEntry:
    candidate: CandidateContact
    existing: Optional[Contact] = None


@dataclass(frozen=True)
class ErrorEntry:
    candidate: CandidateContact
    message: str
    field_errors: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class BatchReconciliationResult:
    created: List[Contact] = field(default_factory=list)
    duplicates: List[DuplicateEntry] = field(default_factory=list)
    errors: List[ErrorEntry] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.created) + len(self.duplicates) + len(self.errors)

    def resolvable_duplicates(self) -> List[DuplicateEntry]:
        return [entry for entry in self.duplicates if entry.existing is not None]

    def unresolvable_duplicates(self) -> List[DuplicateEntry]:
        return [entry for entry in self.duplicates if entry.existing is None]

    def extend(self, other: "BatchReconciliationResult") -> None:
        self.created.extend(other.created)
        self.duplicates.extend(other.duplicates)
        self.errors.extend(other.errors)

    def verify(self, expected: int) -> None:
        if self.total != expected:
            raise ReconciliationMismatch(
                f"batch result accounts for {self.total} of {expected} submitted contacts"
            )

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "BatchReconciliationResult":
        return cls(
            created=[Contact.from_api(item) for item in payload.get("created") or []],
            duplicates=[
                DuplicateEntry(
                    candidate=CandidateContact.from_mapping(item.get("input") or {}),
                    existing=Contact.from_api(item["existing"]) if item.get("existing") else None,
                )
                for item in payload.get("duplicates") or []
            ],
            errors=[
                ErrorEntry(
                    candidate=CandidateContact.from_mapping(item.get("input") or {}),
                    message=str(item.get("message") or "Validation failed"),
                    field_errors=translate_field_errors(item.get("errors")),
                )
                for item in payload.get("errors") or []
            ],
        )
