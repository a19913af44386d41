"""
CSV import utility functions for parsing user rows.
"""
import csv
import re
from io import StringIO
from typing import Any

from app.features.csv_import.schemas import CSVColumnMapping


LIST_SEPARATOR = re.compile(r"[;,]")

# Columns holding lists of values
LIST_FIELDS = ("roles", "admin_organization_ids")


def normalize_header(name: str) -> str:
    """
    Reduce a column header to a spelling-independent key.

    ``organizationId``, ``organization_id`` and ``Organization ID`` all become
    ``organizationid``.
    """
    return re.sub(r"[\s_\-]", "", name).lower()


def parse_list(value: str | None) -> list[str]:
    """
    Split a ``;``- or ``,``-separated cell into its non-blank items.

    Returns:
        list[str]: Stripped items; an empty list for None or a blank cell.
    """
    if not value:
        return []
    return [item.strip() for item in LIST_SEPARATOR.split(value) if item.strip()]


def safe_get(row: dict, key: str, default: Any = None) -> Any:
    """
    Safely get a value from CSV row, returning default if missing or empty.
    """
    value = row.get(key, default)
    if isinstance(value, str) and not value.strip():
        return default
    if isinstance(value, str):
        return value.strip()
    return value


def decode_csv(content: bytes) -> str:
    """
    Decode an uploaded CSV file.

    Raises:
        ValueError: the content is not UTF-8
    """
    try:
        # utf-8-sig also strips a leading BOM
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValueError("File must be UTF-8 encoded")


def parse_user_rows(text: str, mapping: CSVColumnMapping | None = None) -> list[dict[str, Any]]:
    """
    Parse CSV text into user import rows.

    Headers are matched to ``mapping`` regardless of case or camel/snake spelling.
    Blank cells are left out of the row; list columns become lists. Unknown
    columns are ignored. Completely blank lines are skipped.
    """
    mapping = mapping or CSVColumnMapping()
    columns = {normalize_header(header): field for field, header in mapping.model_dump().items()}
    # Accept the field's own name too (e.g. organization_id for organizationId)
    columns.update({normalize_header(field): field for field in mapping.model_dump()})

    reader = csv.DictReader(StringIO(text))
    rows: list[dict[str, Any]] = []
    for raw in reader:
        row: dict[str, Any] = {}
        for header, value in raw.items():
            if header is None:
                continue
            field = columns.get(normalize_header(header))
            if field is None:
                continue
            value = safe_get(raw, header)
            if value is None:
                continue
            row[field] = parse_list(value) if field in LIST_FIELDS else value
        if row:
            rows.append(row)
    return rows
