from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, Optional, Tuple

import pandas as pd
import phonenumbers
from email_validator import EmailNotValidError, validate_email

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+\-']+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}$")
PHONE_INPUT_RE = re.compile(r"^\+?[0-9\s\-()]+$")

# ordered: the first field whose synonyms contain the header wins
HEADER_SYNONYMS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    (
        "full_name",
        ("name", "full_name", "fullname", "nama", "contact", "contact_name", "nama lengkap"),
    ),
    (
        "phone",
        (
            "phone",
            "phone_number",
            "telephone",
            "tel",
            "mobile",
            "hp",
            "nomor",
            "no_hp",
            "no hp",
            "handphone",
            "telepon",
        ),
    ),
    ("email", ("email", "e-mail", "mail", "email_address")),
    (
        "company",
        ("company", "organization", "org", "perusahaan", "company_name", "organisasi"),
    ),
    ("job_title", ("job_title", "jobtitle", "title", "position", "jabatan", "role")),
)


def map_header(
    header: Any, synonyms: Iterable[Tuple[str, Iterable[str]]] = HEADER_SYNONYMS
) -> Optional[str]:
    normalized = str(header or "").strip().lower()
    if not normalized:
        return None
    for field_name, variations in synonyms:
        if normalized in variations:
            return field_name
    return None


def normalize_phone(value: Any) -> str:
    return re.sub(r"\D", "", str(value or ""))


def normalize_email(value: Any) -> str:
    return str(value or "").strip().lower()


def _coerce_to_string(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, (list, dict)) and pd.isna(value):
        return ""
    return str(value).strip()


def safe_get(row: Any, key: str) -> str:
    try:
        return _coerce_to_string(row.get(key, ""))
    except (AttributeError, KeyError, TypeError):
        return ""


def _fallback_canonical_phone(cleaned: str) -> str:
    local = re.match(r"^0([0-9]{9,12})$", cleaned)
    if local:
        return f"+62{local.group(1)}"
    if re.match(r"^62[0-9]{9,12}$", cleaned):
        return f"+{cleaned}"
    if cleaned.startswith("+"):
        return cleaned
    return f"+{cleaned}"


def canonical_phone(value: Any, default_region: str = "ID") -> str:
    """Store-side canonical form of a phone number (E.164 when parseable).

    ``08123...`` local numbers are read in ``default_region``; bare country
    code prefixes such as ``628123...`` are read as international.
    """
    cleaned = re.sub(r"[^0-9+]", "", str(value or ""))
    if not cleaned or cleaned == "+":
        return ""
    if cleaned.startswith("+") or cleaned.startswith("0"):
        candidates = [cleaned]
    else:
        candidates = [f"+{cleaned}", cleaned]
    for candidate in candidates:
        try:
            region = None if candidate.startswith("+") else default_region
            parsed = phonenumbers.parse(candidate, region)
        except phonenumbers.NumberParseException:
            logger.debug("phonenumbers.parse failed for %s", candidate)
            continue
        if phonenumbers.is_valid_number(parsed):
            return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)
    return _fallback_canonical_phone(cleaned)


def phone_comparison_key(value: Any, default_region: str = "ID") -> str:
    return canonical_phone(value, default_region).lstrip("+")


def is_valid_phone_input(value: Any) -> bool:
    text = str(value or "").strip()
    return bool(text) and bool(PHONE_INPUT_RE.match(text))


def validate_email_safe(raw: Any) -> str:
    candidate = str(raw or "").strip()
    if not candidate:
        return ""
    try:
        result = validate_email(candidate, check_deliverability=False)
    except EmailNotValidError:
        return ""
    return result.normalized


def normalize_row(row: Dict[str, Any]) -> Dict[str, str]:
    """Project a raw row onto canonical field names using ``map_header``."""
    mapped: Dict[str, str] = {}
    for header, value in row.items():
        field_name = map_header(header)
        text = _coerce_to_string(value)
        if field_name and text:
            mapped[field_name] = text
    return mapped
