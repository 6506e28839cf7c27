# tools/collection_csv.py
"""
Bulk patient import from CSV and CSV export of any collection.

How to run:
python -m tools.collection_csv import patients.csv
python -m tools.collection_csv export appointments appointments.csv
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

from esante_db.service import EsanteDatabase, open_database
from esante_db.settings import LOG_FORMAT, LOG_LEVEL

logger = logging.getLogger(__name__)

# normalized header -> stored key (or (parent, child) for emergencyContact)
PATIENT_COLUMNS = {
    "name": "name",
    "nom": "name",
    "fullname": "name",
    "email": "email",
    "phone": "phone",
    "telephone": "phone",
    "dateofbirth": "dateOfBirth",
    "birthdate": "dateOfBirth",
    "dob": "dateOfBirth",
    "address": "address",
    "adresse": "address",
    "bloodtype": "bloodType",
    "allergies": "allergies",
    "medicalhistory": "medicalHistory",
    "emergencycontactname": ("emergencyContact", "name"),
    "emergencycontactphone": ("emergencyContact", "phone"),
    "emergencycontactrelation": ("emergencyContact", "relation"),
    "doctorid": "doctorId",
}

LIST_KEYS = {"allergies", "medicalHistory"}


def _normalize_header(col: str) -> str:
    return re.sub(r"[^a-z]", "", str(col).lower())


def _split_cell(value: str) -> List[str]:
    return [x.strip() for x in re.split(r"[;,]", value) if x.strip()]


def _row_to_patient(row: pd.Series, columns: Dict[str, Any]) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for col, target in columns.items():
        value = str(row.get(col, "")).strip()
        if not value:
            continue
        if isinstance(target, tuple):
            parent, child = target
            data.setdefault(parent, {})[child] = value
        elif target in LIST_KEYS:
            data[target] = _split_cell(value)
        else:
            data[target] = value
    return data


async def import_patients_csv(db: EsanteDatabase, path: Path) -> dict:
    """
    Add one patient per CSV row. Column names are matched loosely
    ("Date of birth", "date_of_birth" and "dateOfBirth" are the same column).
    Rows without a name are skipped.
    """
    report = {"imported_patients": 0, "skipped_rows": 0, "errors": []}

    df = pd.read_csv(path, dtype=str, keep_default_na=False)

    columns = {}
    for col in df.columns:
        target = PATIENT_COLUMNS.get(_normalize_header(col))
        if target is not None:
            columns[col] = target
    if "name" not in columns.values():
        raise ValueError(f"{path}: no name column (found {list(df.columns)})")

    for idx, row in df.iterrows():
        data = _row_to_patient(row, columns)
        if not data.get("name"):
            report["skipped_rows"] += 1
            continue

        result = await db.patients.add(data)
        if result.ok:
            report["imported_patients"] += 1
        else:
            logger.warning("Row %s not imported: %s", idx, result.error)
            report["errors"].append({"row": int(idx), "reason": result.reason})

    return report


async def export_collection_csv(db: EsanteDatabase, collection: str, path: Path) -> int:
    """
    Write ``collection`` to CSV, one row per entry. Nested objects are
    flattened (emergencyContact.name, ...), lists joined with "; ".
    Password hashes are never exported.
    """
    entries = await db.repository(collection).list()
    rows = [e.to_document() for e in entries]

    df = pd.json_normalize(rows) if rows else pd.DataFrame()
    if "passwordHash" in df.columns:
        df = df.drop(columns=["passwordHash"])
    for col in df.columns:
        df[col] = df[col].apply(lambda v: "; ".join(map(str, v)) if isinstance(v, list) else v)

    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    return len(df)


async def _main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="eSanté CSV import/export")
    sub = parser.add_subparsers(dest="command", required=True)

    p_import = sub.add_parser("import", help="import patients from a CSV file")
    p_import.add_argument("path", type=Path)

    p_export = sub.add_parser("export", help="export a collection to a CSV file")
    p_export.add_argument("collection")
    p_export.add_argument("path", type=Path)

    args = parser.parse_args(argv)
    db = await open_database()

    if args.command == "import":
        report = await import_patients_csv(db, args.path)
        print(f"Imported {report['imported_patients']} patients "
              f"({report['skipped_rows']} skipped, {len(report['errors'])} errors)")
    else:
        n = await export_collection_csv(db, args.collection, args.path)
        print(f"Exported {n} rows of {args.collection} to {args.path}")


if __name__ == "__main__":
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    asyncio.run(_main())
