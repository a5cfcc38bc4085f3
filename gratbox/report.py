"""CSV report and export writing.

Reports always start with the fixed columns `Key,Operation,Result,ErrorDetail`; targets may
append descriptive columns. Files are UTF-8 with no type-metadata row.
"""

import csv
import os
from collections import Counter
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from .errors import ReportWriteError
from .models import OutcomeRow, Result

REPORT_COLUMNS = ["Key", "Operation", "Result", "ErrorDetail"]


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ";".join(str(v) for v in value)
    return str(value)


def write_csv(path: str, fieldnames: Sequence[str], rows: Iterable[Mapping[str, Any]]) -> int:
    """Write dict rows under a fixed header. Returns the number of data rows written.

    Raises:
        ReportWriteError: when the directory cannot be created or the file cannot be written.
    """
    directory = os.path.dirname(os.path.abspath(path))
    count = 0
    try:
        os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=list(fieldnames), extrasaction="ignore")
            writer.writeheader()
            for row in rows:
                writer.writerow({name: _cell(row.get(name)) for name in fieldnames})
                count += 1
    except OSError as e:
        raise ReportWriteError(f"Could not write '{path}': {e}") from e
    return count


def outcome_to_dict(row: OutcomeRow) -> Dict[str, str]:
    data = {
        "Key": row.key,
        "Operation": row.operation,
        "Result": row.result.value,
        "ErrorDetail": row.error_detail,
    }
    for name, value in row.extra.items():
        data.setdefault(name, value)
    return data


def write_report(path: str, rows: Sequence[OutcomeRow], extra_columns: Sequence[str] = ()) -> str:
    """Persist outcome rows in input order and return the path written.

    Extra columns default to the union of the rows' extra keys, in first-seen order.
    """
    columns = list(REPORT_COLUMNS)
    names = list(extra_columns)
    if not names:
        for row in rows:
            for name in row.extra:
                if name not in names:
                    names.append(name)
    columns.extend(n for n in names if n not in columns)
    write_csv(path, columns, (outcome_to_dict(r) for r in rows))
    return path


def read_report(path: str) -> List[OutcomeRow]:
    with open(path, "r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        rows = []
        for raw in reader:
            extra = {k: v for k, v in raw.items() if k not in REPORT_COLUMNS}
            rows.append(
                OutcomeRow(
                    key=raw["Key"],
                    operation=raw["Operation"],
                    result=Result(raw["Result"]),
                    error_detail=raw.get("ErrorDetail") or "",
                    extra=extra,
                )
            )
        return rows


def summarize(rows: Iterable[OutcomeRow]) -> Dict[str, int]:
    """Count outcomes as applied / skipped / errored / would_apply."""
    counts = Counter(row.result for row in rows)
    return {
        "applied": counts[Result.SUCCESS],
        "skipped": counts[Result.SKIPPED],
        "errored": counts[Result.ERROR],
        "would_apply": counts[Result.WOULD_APPLY],
    }
