"""CSV input loading and normalization.

Admin CSVs come from Excel, PowerShell's Export-Csv and hand edits, so the loader tolerates:
 - UTF-8 with or without a byte-order mark, and UTF-16 with a BOM;
 - a leading `#TYPE System.Management.Automation.PSCustomObject` line;
 - header names in any case, with stray whitespace;
 - several possible column names per logical field (first non-empty alias wins).

Rows without a valid key are dropped with a warning. The load only fails when nothing usable
is left.
"""

import base64
import binascii
import csv
import io
import logging
import os
import re
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from .errors import MalformedInputError
from .models import DesiredRecord

logger = logging.getLogger(__name__)

Validator = Callable[[str], bool]

GUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
SERIAL_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9\-_. /]{0,63}$")

BOM = "\ufeff"


def is_guid(value: str) -> bool:
    return bool(GUID_PATTERN.match(value.strip("{}")))


def is_serial(value: str) -> bool:
    return bool(SERIAL_PATTERN.match(value))


def is_base64(value: str) -> bool:
    """True for a non-empty, strictly valid base64 string (Autopilot hardware hashes)."""
    if not value or len(value) % 4:
        return False
    try:
        base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return False
    return True


def _clean_header(name: Optional[str]) -> str:
    return (name or "").replace(BOM, "").strip().lower()


def detect_encoding(path: str) -> str:
    with open(path, "rb") as f:
        head = f.read(4)
    if head.startswith((b"\xff\xfe", b"\xfe\xff")):
        return "utf-16"
    return "utf-8-sig"


def resolve_columns(headers: Sequence[str], column_aliases: Mapping[str, Sequence[str]]) -> Dict[str, List[str]]:
    """Map each logical field to the actual header names present, in alias order."""
    by_clean: Dict[str, str] = {}
    for header in headers:
        by_clean.setdefault(_clean_header(header), header)
    resolved = {}
    for field_name, aliases in column_aliases.items():
        matches = []
        for alias in aliases:
            actual = by_clean.get(_clean_header(alias))
            if actual is not None and actual not in matches:
                matches.append(actual)
        resolved[field_name] = matches
    return resolved


def _first_value(row: Mapping[str, Optional[str]], columns: Sequence[str]) -> str:
    for column in columns:
        value = (row.get(column) or "").replace(BOM, "").strip()
        if value:
            return value
    return ""


def load_records(
    path: str,
    column_aliases: Mapping[str, Sequence[str]],
    key_field: str = "key",
    validators: Optional[Mapping[str, Validator]] = None,
    delimiter: str = ",",
) -> List[DesiredRecord]:
    """Parse a CSV file into desired records.

    Args:
        path: CSV file to read.
        column_aliases: Logical field name -> ordered list of accepted header names.
            Must contain `key_field`.
        key_field: The logical field holding the record key.
        validators: Optional per-field validators. A failing key drops the row; a failing
            non-empty attribute also drops the row.
        delimiter: Field delimiter.
    Returns:
        Records in file order, first occurrence of each key only.
    Raises:
        MalformedInputError: missing/empty file, no key column, or no valid rows.
    """
    if key_field not in column_aliases:
        raise ValueError(f"column_aliases has no entry for key field '{key_field}'")
    if not os.path.isfile(path):
        raise MalformedInputError(f"Input file '{path}' not found")
    validators = validators or {}

    try:
        with open(path, "r", encoding=detect_encoding(path), newline="") as f:
            text = f.read()
    except (OSError, UnicodeError) as e:
        raise MalformedInputError(f"Cannot read '{path}': {e}") from e

    text = text.lstrip("\r\n" + BOM)
    if _clean_header(text[:5]) == "#type":
        text = text.split("\n", 1)[1] if "\n" in text else ""
    if not text.strip():
        raise MalformedInputError(f"Input file '{path}' is empty")

    reader = csv.DictReader(io.StringIO(text), delimiter=delimiter)
    columns = resolve_columns(reader.fieldnames or [], column_aliases)
    if not columns[key_field]:
        raise MalformedInputError(
            f"'{path}' has no column for {key_field}; expected one of: {', '.join(column_aliases[key_field])}"
        )
    logger.debug("Resolved columns for %s: %s", path, columns)

    records: List[DesiredRecord] = []
    seen = set()
    skipped = 0
    for line_no, row in enumerate(reader, start=1):
        # Fields whose column is absent stay out of the record so they are never compared
        values = {name: _first_value(row, cols) for name, cols in columns.items() if cols}
        key = values.pop(key_field)
        if not key:
            if any(v for v in row.values() if isinstance(v, str) and v.strip()):
                logger.warning("Row %d: no %s value, skipped", line_no, key_field)
                skipped += 1
            continue
        bad = []
        for name, check in validators.items():
            value = key if name == key_field else values.get(name, "")
            if value and not check(value):
                bad.append(name)
        if bad:
            logger.warning("Row %d (%s): invalid %s, skipped", line_no, key, ", ".join(bad))
            skipped += 1
            continue
        if key.casefold() in seen:
            logger.warning("Row %d: duplicate %s '%s', keeping the first occurrence", line_no, key_field, key)
            skipped += 1
            continue
        seen.add(key.casefold())
        records.append(DesiredRecord(key=key, attributes=values, line=line_no))

    if not records:
        raise MalformedInputError(f"'{path}' has no usable rows ({skipped} skipped)")
    logger.info("Loaded %d record(s) from %s (%d skipped)", len(records), path, skipped)
    return records
