from __future__ import annotations

import io
import logging
import re
import zipfile
from typing import Dict, Iterable, List

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from .errors import (
    CorruptFormat,
    EmptyFile,
    MissingRequiredColumns,
    SizeExceeded,
    UnsupportedFormat,
)
from .models import CandidateContact, ConsentStatus, Source
from .normalization import map_header, normalize_row

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = 10 * 1024 * 1024
SUPPORTED_EXTENSIONS = ("csv", "xlsx")

_MIME_EXTENSIONS = {
    "text/csv": "csv",
    "application/csv": "csv",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
}

# compound document header; encrypted xlsx files are wrapped in one
_OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


def resolve_format(name_or_mime: str) -> str:
    raw = (name_or_mime or "").strip().lower()
    if raw in _MIME_EXTENSIONS:
        return _MIME_EXTENSIONS[raw]
    extension = raw.rsplit(".", 1)[-1] if "." in raw else raw
    if extension not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFormat(
            f"Unsupported file type {extension or raw!r}; expected one of: csv, xlsx"
        )
    return extension


def _count_outside_quotes(line: str, char: str) -> int:
    count = 0
    in_quotes = False
    for current in line:
        if current == '"':
            in_quotes = not in_quotes
        elif current == char and not in_quotes:
            count += 1
    return count


def detect_delimiter(first_line: str) -> str:
    commas = _count_outside_quotes(first_line, ",")
    semicolons = _count_outside_quotes(first_line, ";")
    tabs = _count_outside_quotes(first_line, "\t")
    # comma keeps every tie
    if semicolons > commas and semicolons >= tabs:
        return ";"
    if tabs > commas and tabs >= semicolons:
        return "\t"
    return ","


def split_delimited_line(line: str, delimiter: str) -> List[str]:
    values: List[str] = []
    current: List[str] = []
    in_quotes = False
    idx = 0
    while idx < len(line):
        char = line[idx]
        if char == '"':
            if in_quotes and idx + 1 < len(line) and line[idx + 1] == '"':
                current.append('"')
                idx += 1
            else:
                in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            values.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        idx += 1
    values.append("".join(current).strip())
    return values


def _require_columns(fields: Iterable[str], label: str) -> None:
    mapped = set(fields)
    if "full_name" not in mapped:
        raise MissingRequiredColumns(f"{label} must have a name column (Name, Full Name, Nama)")
    if "phone" not in mapped:
        raise MissingRequiredColumns(f"{label} must have a phone column (Phone, Phone Number, HP)")


def _build_candidates(rows: Iterable[Dict[str, str]]) -> List[CandidateContact]:
    candidates: List[CandidateContact] = []
    dropped = 0
    for row in rows:
        candidate = CandidateContact(
            full_name=row.get("full_name", ""),
            phone=row.get("phone", ""),
            email=row.get("email", ""),
            company=row.get("company", ""),
            job_title=row.get("job_title", ""),
            source=Source.IMPORT,
            consent=ConsentStatus.UNKNOWN,
        )
        if candidate.is_complete():
            candidates.append(candidate)
        else:
            dropped += 1
    if dropped:
        logger.info("Dropped %d row(s) without both name and phone", dropped)
    return candidates


def parse_delimited(text: str) -> List[CandidateContact]:
    lines = [line for line in re.split(r"\r?\n", text) if line.strip()]
    if len(lines) < 2:
        raise EmptyFile("CSV file contains no data rows")

    delimiter = detect_delimiter(lines[0])
    logger.debug("Detected delimiter %r", delimiter)
    field_map: Dict[int, str] = {}
    for idx, header in enumerate(split_delimited_line(lines[0], delimiter)):
        field_name = map_header(header)
        if field_name:
            field_map[idx] = field_name
    _require_columns(field_map.values(), "CSV")

    rows: List[Dict[str, str]] = []
    for line in lines[1:]:
        mapped: Dict[str, str] = {}
        for idx, value in enumerate(split_delimited_line(line, delimiter)):
            field_name = field_map.get(idx)
            if field_name and value:
                mapped[field_name] = value
        rows.append(mapped)

    candidates = _build_candidates(rows)
    if not candidates:
        raise EmptyFile("No valid contacts found in CSV")
    return candidates


def parse_spreadsheet(data: bytes) -> List[CandidateContact]:
    if data.startswith(_OLE2_MAGIC):
        raise CorruptFormat("XLSX file is password protected")
    try:
        frame = pd.read_excel(
            io.BytesIO(data), sheet_name=0, dtype=str, keep_default_na=False, engine="openpyxl"
        )
    except (zipfile.BadZipFile, InvalidFileException, KeyError, ValueError, OSError) as exc:
        raise CorruptFormat(f"Failed to parse XLSX: {exc}") from exc

    if len(frame.columns) == 0:
        raise EmptyFile("XLSX sheet is empty")
    _require_columns(
        (field_name for field_name in map(map_header, frame.columns) if field_name), "XLSX"
    )
    if frame.empty:
        raise EmptyFile("XLSX file contains no data rows")

    frame = frame.fillna("")
    rows = [normalize_row(record) for record in frame.to_dict(orient="records")]
    candidates = _build_candidates(rows)
    if not candidates:
        raise EmptyFile("No valid contacts found in XLSX (requires Name and Phone columns)")
    return candidates


def parse(
    file_bytes: bytes, name_or_mime: str, max_bytes: int = MAX_FILE_BYTES
) -> List[CandidateContact]:
    file_format = resolve_format(name_or_mime)
    if len(file_bytes) > max_bytes:
        raise SizeExceeded(
            f"File too large ({len(file_bytes)} bytes). Maximum {max_bytes // (1024 * 1024)}MB."
        )
    if file_format == "csv":
        candidates = parse_delimited(file_bytes.decode("utf-8-sig", errors="replace"))
    else:
        candidates = parse_spreadsheet(file_bytes)
    logger.info("Parsed %d candidate contact(s) from %s", len(candidates), file_format)
    return candidates
