from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .errors import ExtractionFailed, FileValidationError
from .models import CandidateContact, ConsentStatus, Source
from .parsing import MAX_FILE_BYTES, SUPPORTED_EXTENSIONS

logger = logging.getLogger(__name__)

IMAGE_TYPES = ("image/png", "image/jpeg", "image/jpg", "image/webp")


class Extractor(Protocol):
    """Image-to-rows collaborator, e.g. a vision model behind an API."""

    async def extract(self, image_bytes: bytes, mime_type: str) -> Sequence[Dict[str, Any]]:
        ...


def check_image_upload(data: bytes, mime_type: str, max_bytes: int = MAX_FILE_BYTES) -> None:
    if (mime_type or "").strip().lower() not in IMAGE_TYPES:
        raise FileValidationError("Invalid image type. Use PNG, JPEG or WEBP.")
    if len(data) > max_bytes:
        raise FileValidationError(f"Image too large. Maximum {max_bytes // (1024 * 1024)}MB.")


def check_import_upload(data: bytes, filename: str, max_bytes: int = MAX_FILE_BYTES) -> str:
    name = (filename or "").strip().lower()
    extension = name.rsplit(".", 1)[-1] if "." in name else ""
    if extension not in SUPPORTED_EXTENSIONS:
        raise FileValidationError("Invalid file type. Please upload a .csv or .xlsx file.")
    if len(data) > max_bytes:
        raise FileValidationError(f"File too large. Maximum {max_bytes // (1024 * 1024)}MB.")
    return extension


def _clean_phone(raw: str) -> str:
    digits = re.sub(r"[^0-9+]", "", raw or "")
    return re.sub(r"^0", "62", digits)


def clean_extracted_rows(rows: Sequence[Dict[str, Any]]) -> List[CandidateContact]:
    cleaned: List[CandidateContact] = []
    for row in rows:
        cleaned.append(
            CandidateContact(
                full_name=str(row.get("fullName") or row.get("full_name") or "").strip(),
                phone=_clean_phone(str(row.get("phone") or "")),
                email=str(row.get("email") or "").strip().lower(),
                company=str(row.get("company") or "").strip(),
                source=Source.OCR,
                consent=ConsentStatus.UNKNOWN,
            )
        )
    return cleaned


async def extract_candidates(
    extractor: Extractor, image_bytes: bytes, mime_type: str
) -> List[CandidateContact]:
    try:
        rows: Optional[Sequence[Dict[str, Any]]] = await extractor.extract(image_bytes, mime_type)
    except Exception as exc:
        logger.warning("Extraction failed: %s", exc)
        raise ExtractionFailed() from exc
    if not rows:
        raise ExtractionFailed("No contacts were found in the image")
    return clean_extracted_rows(rows)
