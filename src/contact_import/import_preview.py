import argparse
import csv
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from .common import load_config
from .errors import ContactImportError
from .logging_utils import configure_logging
from .matching import DuplicateMatcher
from .models import Contact
from .normalization import canonical_phone, normalize_row, safe_get
from .parsing import parse

logger = logging.getLogger(__name__)

SAFE_COLUMNS = ["full_name", "phone", "canonical_phone", "email", "company", "job_title"]
CONFLICT_COLUMNS = [
    "row",
    "full_name",
    "phone",
    "email",
    "existing_id",
    "existing_full_name",
    "existing_phone",
    "existing_email",
    "fillable_fields",
]


def load_existing_contacts(path: Optional[str]) -> List[Contact]:
    """Read already-known contacts from a CSV with any recognised headers."""
    if not path:
        return []
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    contacts: List[Contact] = []
    for idx, row in df.iterrows():
        record = row.to_dict()
        mapped = normalize_row(record)
        contact_id = safe_get(record, "id") or safe_get(record, "contact_id") or f"existing-{idx}"
        contacts.append(
            Contact(
                id=contact_id,
                full_name=mapped.get("full_name", ""),
                phone=mapped.get("phone", ""),
                email=mapped.get("email", ""),
                company=mapped.get("company", ""),
                job_title=mapped.get("job_title", ""),
            )
        )
    logger.info("Loaded %d existing contact(s) from %s", len(contacts), path)
    return contacts


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Preview a contact import: split rows into safe contacts and duplicates."
    )
    parser.add_argument("--config", type=str, default=None)
    parser.add_argument("--input", type=str, default=None, help="CSV or XLSX file to import")
    parser.add_argument("--existing-csv", type=str, default=None)
    parser.add_argument("--out-dir", type=str, default=None)
    parser.add_argument("--default-phone-region", type=str, default=None)
    parser.add_argument("--log-level", type=str, default=None, help="Override logging level")

    args = parser.parse_args(argv)
    config = load_config(args)
    configure_logging(config, level_override=args.log_level)

    input_path = config.inputs.get("input")
    if not input_path:
        parser.error("--input is required (or inputs.input in the config)")
    region = config.normalization.default_phone_region

    try:
        data = Path(input_path).read_bytes()
        candidates = parse(data, os.path.basename(input_path), config.limits.max_file_bytes)
    except ContactImportError as exc:
        logger.error("Could not read %s: %s", input_path, exc.reason)
        print({"error": exc.reason})
        return 1

    existing = load_existing_contacts(config.inputs.get("existing_csv"))
    partition = DuplicateMatcher().partition(candidates, existing)

    safe_records: List[Dict[str, Any]] = []
    for candidate in partition.safe:
        record = candidate.to_dict()
        record["canonical_phone"] = canonical_phone(candidate.phone, region)
        safe_records.append({name: record[name] for name in SAFE_COLUMNS})

    conflict_records: List[Dict[str, Any]] = []
    for conflict in partition.conflicts:
        conflict_records.append(
            {
                "row": conflict.index + 1,
                "full_name": conflict.candidate.full_name,
                "phone": conflict.candidate.phone,
                "email": conflict.candidate.email,
                "existing_id": conflict.existing.id,
                "existing_full_name": conflict.existing.full_name,
                "existing_phone": conflict.existing.phone,
                "existing_email": conflict.existing.email,
                "fillable_fields": "|".join(conflict.merge_fields()),
            }
        )

    out_dir = config.outputs.dir
    out_dir.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(safe_records, columns=SAFE_COLUMNS).to_csv(
        out_dir / "safe_contacts.csv", index=False, encoding="utf-8", quoting=csv.QUOTE_ALL
    )
    pd.DataFrame(conflict_records, columns=CONFLICT_COLUMNS).to_csv(
        out_dir / "conflicts.csv", index=False, encoding="utf-8", quoting=csv.QUOTE_ALL
    )

    print(
        {
            "candidates": partition.total,
            "safe": len(partition.safe),
            "conflicts": len(partition.conflicts),
            "existing": len(existing),
        }
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
