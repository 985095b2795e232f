from __future__ import annotations

import asyncio
import itertools
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from .errors import PersistenceError
from .normalization import (
    is_valid_phone_input,
    normalize_email,
    phone_comparison_key,
    validate_email_safe,
)

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100
MAX_FIELD_LENGTH = 255
API_SOURCES = ("ocr_list", "form", "import", "manual")
API_CONSENTS = ("opt_in", "opt_out", "unknown")

Payload = Dict[str, Any]


class ContactStore(Protocol):
    """Persistent store port. Payloads use the backend's wire format."""

    async def create(self, payload: Payload) -> Payload:
        ...

    async def create_batch(self, payloads: Sequence[Payload]) -> Payload:
        ...

    async def update(self, contact_id: str, fields: Payload) -> Payload:
        ...

    async def update_batch(self, contact_ids: Sequence[str], fields: Payload) -> List[Payload]:
        ...

    async def delete(self, contact_id: str) -> None:
        ...

    async def delete_batch(self, contact_ids: Sequence[str]) -> None:
        ...


def _value(payload: Payload, *keys: str) -> str:
    for key in keys:
        if payload.get(key) is not None:
            return str(payload[key]).strip()
    return ""


def validate_payload(payload: Payload, camel_case: bool = True) -> Dict[str, List[str]]:
    """Backend-side field validation; keys follow the request's naming."""
    name_key, title_key = ("fullName", "jobTitle") if camel_case else ("full_name", "job_title")
    errors: Dict[str, List[str]] = {}

    def add(key: str, message: str) -> None:
        errors.setdefault(key, []).append(message)

    full_name = _value(payload, "fullName", "full_name")
    phone = _value(payload, "phone")
    email = _value(payload, "email")
    if not full_name:
        add(name_key, "Name is required")
    if not phone:
        add("phone", "Phone number is required")
    elif not is_valid_phone_input(phone):
        add("phone", "Please enter a valid phone number")
    if email and not validate_email_safe(email):
        add("email", "Please enter a valid email address")
    for key, value in (
        (name_key, full_name),
        ("phone", phone),
        ("email", email),
        ("company", _value(payload, "company")),
        (title_key, _value(payload, "jobTitle", "job_title")),
    ):
        if len(value) > MAX_FIELD_LENGTH:
            add(key, f"The {key} may not be greater than {MAX_FIELD_LENGTH} characters.")
    source = _value(payload, "source")
    if source and source not in API_SOURCES:
        add("source", "The selected source is invalid.")
    consent = _value(payload, "consent")
    if consent and consent not in API_CONSENTS:
        add("consent", "The selected consent is invalid.")
    return errors


class InMemoryContactStore:
    """Store double with the backend's batch, duplicate and validation rules."""

    def __init__(
        self,
        contacts: Sequence[Payload] = (),
        max_batch_size: int = MAX_BATCH_SIZE,
        default_phone_region: str = "ID",
    ):
        self.max_batch_size = max_batch_size
        self.default_phone_region = default_phone_region
        self.calls: List[Tuple[Any, ...]] = []
        self._rows: Dict[str, Payload] = {}
        self._ids = itertools.count(1)
        self._failures: Dict[str, PersistenceError] = {}
        for payload in contacts:
            self._insert(payload)

    def fail_next(self, operation: str, error: Optional[PersistenceError] = None) -> None:
        self._failures[operation] = error or PersistenceError("Server error", status=500)

    def list_contacts(self) -> List[Payload]:
        rows = sorted(self._rows.values(), key=lambda row: row["createdAt"], reverse=True)
        return [dict(row) for row in rows]

    def count_calls(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    async def _enter(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, *args))
        await asyncio.sleep(0)
        error = self._failures.pop(operation, None)
        if error is not None:
            logger.debug("Injected failure for %s: %s", operation, error)
            raise error

    def _insert(self, payload: Payload) -> Payload:
        now = datetime.now(timezone.utc).isoformat()
        contact_id = _value(payload, "id") or str(next(self._ids))
        row = {
            "id": contact_id,
            "fullName": _value(payload, "fullName", "full_name"),
            "phone": _value(payload, "phone"),
            "email": _value(payload, "email") or None,
            "company": _value(payload, "company") or None,
            "jobTitle": _value(payload, "jobTitle", "job_title") or None,
            "source": _value(payload, "source") or "manual",
            "consent": _value(payload, "consent") or "unknown",
            "createdAt": _value(payload, "createdAt") or now,
            "updatedAt": now,
        }
        self._rows[contact_id] = row
        return dict(row)

    def _find_duplicate(self, payload: Payload) -> Optional[Payload]:
        phone_key = phone_comparison_key(_value(payload, "phone"), self.default_phone_region)
        email = normalize_email(_value(payload, "email"))
        for row in self._rows.values():
            row_phone_key = phone_comparison_key(row["phone"], self.default_phone_region)
            if phone_key and row_phone_key == phone_key:
                return row
            if email and normalize_email(row["email"]) == email:
                return row
        return None

    def _get(self, contact_id: str) -> Payload:
        row = self._rows.get(contact_id)
        if row is None:
            raise PersistenceError("Contact not found", status=404)
        return row

    async def create(self, payload: Payload) -> Payload:
        await self._enter("create", dict(payload))
        errors = validate_payload(payload, camel_case=False)
        if errors:
            first = next(iter(errors.values()))[0]
            raise PersistenceError(first, field_errors=errors, status=422)
        return self._insert(payload)

    async def create_batch(self, payloads: Sequence[Payload]) -> Payload:
        await self._enter("create_batch", [dict(payload) for payload in payloads])
        if not payloads:
            raise PersistenceError("At least one contact is required.", status=422)
        if len(payloads) > self.max_batch_size:
            raise PersistenceError(
                f"Maximum {self.max_batch_size} contacts per batch.", status=422
            )
        created: List[Payload] = []
        duplicates: List[Payload] = []
        errors: List[Payload] = []
        for payload in payloads:
            existing = self._find_duplicate(payload)
            if existing is not None:
                duplicates.append({"input": dict(payload), "existing": dict(existing)})
                continue
            field_errors = validate_payload(payload)
            if field_errors:
                errors.append(
                    {
                        "input": dict(payload),
                        "message": next(iter(field_errors.values()))[0],
                        "errors": field_errors,
                    }
                )
                continue
            created.append(self._insert(payload))
        return {"created": created, "duplicates": duplicates, "errors": errors}

    async def update(self, contact_id: str, fields: Payload) -> Payload:
        await self._enter("update", contact_id, dict(fields))
        row = self._get(contact_id)
        for key, value in fields.items():
            row[key] = value
        row["updatedAt"] = datetime.now(timezone.utc).isoformat()
        return dict(row)

    async def update_batch(self, contact_ids: Sequence[str], fields: Payload) -> List[Payload]:
        await self._enter("update_batch", list(contact_ids), dict(fields))
        allowed = {
            key: value for key, value in fields.items() if key in ("company", "jobTitle", "consent")
        }
        updated: List[Payload] = []
        for contact_id in contact_ids:
            row = self._rows.get(contact_id)
            if row is None:
                continue
            row.update(allowed)
            row["updatedAt"] = datetime.now(timezone.utc).isoformat()
            updated.append(dict(row))
        return updated

    async def delete(self, contact_id: str) -> None:
        await self._enter("delete", contact_id)
        self._get(contact_id)
        del self._rows[contact_id]

    async def delete_batch(self, contact_ids: Sequence[str]) -> None:
        await self._enter("delete_batch", list(contact_ids))
        for contact_id in contact_ids:
            self._rows.pop(contact_id, None)
