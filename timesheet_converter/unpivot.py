"""
Unpivot a wide time-tracking export into one entry per (tag row, date).

Export layout (standard profile, 0-based columns):

    Tag 1 | Tag 2 | Tag 3 | Notes | 2024-07-01 | 2024-07-02 | ... | Total
    ABC123456 | Design | Field | ... | 3.5 | | ... | 3.5
    ...
    Total | | | | 3.5 | ...

Header cells may hold spreadsheet serial numbers, date strings or real
dates. Scanning of header columns stops at the first "Total" header and
scanning of data rows stops at the first row whose Tag 1 is "Total" or blank.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, List, Optional, Sequence, Tuple

from timesheet_converter.config import LayoutConfig
from timesheet_converter.errors import NoDataError, NoDateColumnsError

# Serial 25569 is 1970-01-01
SERIAL_EPOCH = date(1970, 1, 1)
SERIAL_EPOCH_OFFSET = 25569

TOTAL_MARKER = "total"
PROJECT_NUMBER_LENGTH = 6
PROJECT_NUMBER_RE = re.compile(r"^[0-9]{6}$")
LEADING_FLOAT_RE = re.compile(r"^\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)")

HEADER_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%d.%m.%Y",
    "%b %d %Y",
    "%B %d %Y",
    "%d %b %Y",
    "%d %B %Y",
    "%a %b %d %Y",
    "%A %B %d %Y",
)


@dataclass(frozen=True)
class DateColumn:
    column_index: int
    date: date


@dataclass(frozen=True)
class TimeEntry:
    date: date
    project_number: str
    notes: str
    hours: float
    original_tag: str
    tag2: str
    tag3: str


@dataclass
class UnpivotResult:
    entries: List[TimeEntry]
    date_columns: List[DateColumn]
    warnings: List[str] = field(default_factory=list)


def _warn(warnings: List[str], message: str) -> None:
    logging.warning(message)
    warnings.append(message)


# -------------------------------
# Cell value helpers
# -------------------------------
def serial_to_date(serial: float) -> date:
    """Spreadsheet day serial to calendar date; the time-of-day fraction is dropped."""
    return SERIAL_EPOCH + timedelta(days=math.floor(serial) - SERIAL_EPOCH_OFFSET)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_date_text(text: str) -> Optional[date]:
    s = text.strip()
    if not s:
        return None
    try:
        return datetime.fromisoformat(s).date()
    except ValueError:
        pass
    cleaned = " ".join(s.replace(",", " ").split())
    for fmt in HEADER_DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    return None


def parse_header_date(value: Any) -> Optional[date]:
    """Interpret a header cell as a date column label, or None if it is not one."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if _is_number(value):
        if not math.isfinite(value):
            return None
        try:
            return serial_to_date(value)
        except OverflowError:
            return None
    if isinstance(value, str):
        return parse_date_text(value)
    return None


def is_total_marker(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower() == TOTAL_MARKER


def cell_text(row: Sequence[Any], index: Optional[int]) -> str:
    """Trimmed text of a cell; absent cells and columns read as ''."""
    if index is None or index >= len(row):
        return ""
    value = row[index]
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def parse_hours(value: Any) -> float:
    """Hours recorded in a date cell; anything unreadable counts as 0."""
    if _is_number(value):
        hours = float(value)
    elif isinstance(value, str):
        m = LEADING_FLOAT_RE.match(value)
        hours = float(m.group(1)) if m else 0.0
    elif isinstance(value, timedelta):
        hours = value.total_seconds() / 3600.0
    elif isinstance(value, time):
        hours = value.hour + value.minute / 60.0 + value.second / 3600.0
    else:
        hours = 0.0
    return hours if math.isfinite(hours) else 0.0


# -------------------------------
# Header scan
# -------------------------------
def find_date_columns(header_row: Sequence[Any], layout: LayoutConfig) -> Tuple[List[DateColumn], List[str]]:
    """Collect date-bearing header columns up to (excluding) the first Total header."""
    date_columns: List[DateColumn] = []
    warnings: List[str] = []
    for index in range(layout.date_column_start, len(header_row)):
        value = header_row[index]
        if is_total_marker(value):
            break
        parsed = parse_header_date(value)
        if parsed is not None:
            date_columns.append(DateColumn(column_index=index, date=parsed))
        elif value is not None and str(value).strip():
            _warn(
                warnings,
                f"Header cell value '{value}' at column index {index} could not be parsed into a valid date. Skipping this column.",
            )
    return date_columns, warnings


# -------------------------------
# Project numbers
# -------------------------------
def derive_project_number(tag1: str, layout: LayoutConfig) -> Tuple[str, Optional[str]]:
    """Project number for a Tag 1 value, plus a warning message when the value looks off."""
    if tag1.lower() == layout.office_tag.lower():
        return layout.office_code, None
    if len(tag1) >= PROJECT_NUMBER_LENGTH:
        project_number = tag1[-PROJECT_NUMBER_LENGTH:]
        if not PROJECT_NUMBER_RE.match(project_number):
            return project_number, (
                f"Extracted project number '{project_number}' from tag '{tag1}' is not 6 digits. Using as is."
            )
        return project_number, None
    return tag1, (
        f"Tag '{tag1}' is shorter than 6 characters. Using full tag as project number: '{tag1}'."
    )


def ends_data_rows(tag1: str) -> bool:
    return tag1 == "" or tag1.lower() == TOTAL_MARKER


# -------------------------------
# Unpivot
# -------------------------------
def unpivot(rows: Sequence[Sequence[Any]], layout: LayoutConfig) -> UnpivotResult:
    """Turn the wide export into TimeEntry records (positive hours only).

    Raises NoDataError when there are no rows and NoDateColumnsError when the
    header carries no usable dates. Data anomalies are reported as warnings.
    """
    if not rows:
        raise NoDataError("No rows found on the export sheet, not even a header row.")

    date_columns, warnings = find_date_columns(rows[0], layout)
    if not date_columns:
        raise NoDateColumnsError(
            "No valid date columns found in the export header. Ensure dates are in the header or are recognizable."
        )
    logging.info(
        f"Found {len(date_columns)} date column(s): {date_columns[0].date.isoformat()} .. {date_columns[-1].date.isoformat()}"
    )

    entries: List[TimeEntry] = []
    for row_index in range(1, len(rows)):
        row = rows[row_index]
        tag1 = cell_text(row, layout.tag1_column)
        if ends_data_rows(tag1):
            logging.debug(f"Stopped reading data rows at row index {row_index}")
            break

        tag2 = cell_text(row, layout.tag2_column)
        tag3 = cell_text(row, layout.tag3_column)
        notes = cell_text(row, layout.notes_column)
        project_number, warning = derive_project_number(tag1, layout)
        if warning:
            _warn(warnings, warning)

        for dc in date_columns:
            value = row[dc.column_index] if dc.column_index < len(row) else None
            hours = parse_hours(value)
            if hours > 0:
                entries.append(TimeEntry(
                    date=dc.date,
                    project_number=project_number,
                    notes=notes,
                    hours=hours,
                    original_tag=tag1,
                    tag2=tag2,
                    tag3=tag3,
                ))

    logging.info(f"Unpivoted {len(entries)} time entr{'y' if len(entries) == 1 else 'ies'}")
    return UnpivotResult(entries=entries, date_columns=date_columns, warnings=warnings)
