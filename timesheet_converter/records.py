"""
Assemble sorted timesheet output records from unpivoted time entries.

Lookup-driven columns (descriptions, task, job code, running totals and the
day alternation flag) are filled in by the workbook writer with formulas; the
records only reserve them with placeholder values so the column layout stays
fixed.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, List, Sequence

import pandas as pd

from timesheet_converter.config import Identity
from timesheet_converter.errors import NoEntriesError
from timesheet_converter.fiscal_calendar import fiscal_period
from timesheet_converter.unpivot import TimeEntry


PENDING_FORMULA = "PENDING_FORMULA"

# Fixed English names; sheet names must not follow the host locale
MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

OUTPUT_COLUMNS = [
    "Employee Number",
    "Employee Name",
    "Date",
    "Project",
    "Project Description",
    "Task",
    "Task Description",
    "Job Code",
    "Job Code Description",
    "Hours",
    "Comment",
    "Period",
    "Start Date",
    "End Date",
    "Fiscal Year",
    "Total Days",
    "Transaction",
    "Accum Days",
    "Hour Total",
    "Column1",
    "Tag 2",
    "Tag 3",
]

DATE_COLUMNS = ("Date", "Start Date", "End Date")


@dataclass(frozen=True)
class PeriodLabel:
    """Month/year the timesheet is named after."""

    month: int
    year: int

    @property
    def month_name(self) -> str:
        return MONTH_NAMES[self.month - 1]

    def table_name(self, prefix: str = "TimesheetData") -> str:
        return f"{prefix}_{self.month:02d}_{self.year}"

    def __str__(self) -> str:
        return f"{self.month_name} {self.year}"


@dataclass
class AssembledTimesheet:
    records: pd.DataFrame
    period_label: PeriodLabel

    def __len__(self) -> int:
        return len(self.records)


def sort_entries(entries: Sequence[TimeEntry]) -> List[TimeEntry]:
    """Order by date, then original Tag 1; equal keys keep their scan order.

    Tags compare case-insensitively, with lowercase ahead of uppercase on
    case-only differences (locale collation order).
    """
    return sorted(entries, key=lambda e: (e.date, e.original_tag.casefold(), e.original_tag.swapcase()))


def _record_row(entry: TimeEntry, identity: Identity) -> List[Any]:
    period = fiscal_period(entry.date)
    return [
        identity.employee_number,
        identity.employee_name,
        entry.date,
        entry.project_number,
        PENDING_FORMULA,
        "",
        PENDING_FORMULA,
        PENDING_FORMULA,
        PENDING_FORMULA,
        entry.hours,
        entry.notes,
        period.fiscal_month,
        period.period_start,
        period.period_end,
        period.fiscal_year,
        "",
        "",
        "",
        "",
        False,
        entry.tag2,
        entry.tag3,
    ]


def assemble(entries: Sequence[TimeEntry], identity: Identity) -> AssembledTimesheet:
    """Sort entries and build the output records frame plus the period label.

    Raises NoEntriesError when there is nothing to assemble, since the period
    label is taken from the earliest record.
    """
    if not entries:
        raise NoEntriesError("Cannot determine a valid first month date from the data: no entries with hours.")

    ordered = sort_entries(entries)
    first = ordered[0].date
    period_label = PeriodLabel(month=first.month, year=first.year)

    records = pd.DataFrame([_record_row(e, identity) for e in ordered], columns=OUTPUT_COLUMNS)
    logging.info(f"Assembled {len(records)} record(s) for period '{period_label}'")
    return AssembledTimesheet(records=records, period_label=period_label)


def records_as_rows(records: pd.DataFrame) -> List[List[Any]]:
    """Record values as plain Python objects, in OUTPUT_COLUMNS order."""
    return records[OUTPUT_COLUMNS].astype(object).values.tolist()


def export_records_csv(records: pd.DataFrame, export_dir: str, period_label: PeriodLabel) -> str:
    os.makedirs(export_dir, exist_ok=True)
    csv_path = os.path.join(export_dir, f"{period_label.table_name()}.csv")
    records.to_csv(csv_path, index=False)
    logging.info(f"Exported records CSV: {csv_path}")
    return csv_path
