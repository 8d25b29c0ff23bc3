"""Parsing converter CSV output and shaping rows for the relational store."""

from __future__ import annotations

import csv
import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Sequence

from table_importer.core.errors import CsvParseError

logger = logging.getLogger(__name__)

# Same shape of number the dashboard accepted when it typed cells client-side
NUMBER_PATTERN = re.compile(r"^\s*-?(\d+\.?|\.\d+|\d+\.\d+)([eE][-+]?\d+)?\s*$")
INTEGER_PATTERN = re.compile(r"^\s*-?\d+\s*$")
TRUE_VALUES = {"true", "TRUE"}
FALSE_VALUES = {"false", "FALSE"}


@dataclass
class ParsedCsv:
    fieldnames: list[str]
    records: list[dict[str, Any]] = field(default_factory=list)


def parse_number(value: str) -> int | float | None:
    """Return the numeric value of ``value`` or None if it is not a number."""
    if INTEGER_PATTERN.match(value):
        return int(value)
    if NUMBER_PATTERN.match(value):
        number = float(value)
        return number if math.isfinite(number) else None
    return None


def coerce_value(value: str | None) -> Any:
    """Dynamic typing for one CSV cell: bool, int/float, None or the raw string."""
    if value is None or value == "":
        return None
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    number = parse_number(value)
    return value if number is None else number


def parse_csv(path: Path) -> ParsedCsv:
    """Read ``path`` using its first row as header.

    Rows shorter than the header are padded with None; longer rows, broken
    quoting and undecodable bytes abort with the first error found.
    """
    try:
        with path.open("r", encoding="utf-8-sig", newline="") as handle:
            reader = csv.reader(handle, strict=True)
            header = next(reader, None)
            if not header or not any(name.strip() for name in header):
                raise CsvParseError("CSV file appears to be empty or invalid")
            fieldnames = [name.strip() for name in header]
            duplicates = sorted({n for n in fieldnames if fieldnames.count(n) > 1})
            if duplicates:
                raise CsvParseError(f"Duplicate column(s): {', '.join(duplicates)}")

            parsed = ParsedCsv(fieldnames=fieldnames)
            for row in reader:
                if not row or row == [""]:
                    continue
                if len(row) > len(fieldnames):
                    raise CsvParseError(
                        f"CSV parsing error: Too many fields on line {reader.line_num}: "
                        f"expected {len(fieldnames)} fields but parsed {len(row)}"
                    )
                padded = list(row) + [None] * (len(fieldnames) - len(row))
                parsed.records.append(
                    {name: coerce_value(cell) for name, cell in zip(fieldnames, padded)}
                )
    except FileNotFoundError as e:
        raise CsvParseError(f"CSV file not found: {path}") from e
    except UnicodeDecodeError as e:
        raise CsvParseError(f"File encoding error: {e}") from e
    except csv.Error as e:
        raise CsvParseError(f"CSV parsing error: {e}") from e

    logger.info(f"Parsed {len(parsed.records)} record(s) from {path.name}")
    return parsed


def normalize_records(
    records: Iterable[dict[str, Any]], table_id: str
) -> list[dict[str, Any]]:
    """Lower-case column names, coerce numeric strings and stamp ``table_id``."""
    normalized: list[dict[str, Any]] = []
    for record in records:
        row: dict[str, Any] = {}
        for key, value in record.items():
            column = key.lower()
            if column in row:
                raise CsvParseError(f"Column {key!r} collides with another column")
            if isinstance(value, str):
                number = parse_number(value)
                if number is not None:
                    value = number
            row[column] = value
        row["table_id"] = table_id
        normalized.append(row)
    return normalized


def write_csv(path: Path, columns: Sequence[str], rows: Iterable[dict[str, Any]]) -> int:
    """Write ``rows`` restricted to ``columns``; return the number of data rows."""
    count = 0
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(columns), extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow({c: _csv_cell(row.get(c)) for c in columns})
            count += 1
    return count


def _csv_cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return value
