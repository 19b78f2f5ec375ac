"""
Fiscal calendar: the fiscal year runs May through April.

Fiscal month 1 is May, 12 is April. The fiscal year is labelled by the
calendar year it ends in (May 2024 - April 2025 is FY 2025).
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date

FISCAL_YEAR_START_MONTH = 5  # May


@dataclass(frozen=True)
class FiscalPeriod:
    fiscal_month: int
    period_start: date
    period_end: date
    fiscal_year: int


def fiscal_month(d: date) -> int:
    month0 = d.month - 1
    return (month0 - (FISCAL_YEAR_START_MONTH - 1) + 12) % 12 + 1


def fiscal_period(d: date) -> FiscalPeriod:
    """Fiscal month index, month bounds and fiscal year label for a calendar date."""
    month0 = d.month - 1
    period = fiscal_month(d)
    starts_this_year = month0 >= FISCAL_YEAR_START_MONTH - 1
    start_year = d.year if starts_this_year else d.year - 1
    calendar_month = (period - 1 + FISCAL_YEAR_START_MONTH - 1) % 12 + 1

    # Bounds are dated in the fiscal year's start year, Jan-Apr included.
    last_day = calendar.monthrange(start_year, calendar_month)[1]
    return FiscalPeriod(
        fiscal_month=period,
        period_start=date(start_year, calendar_month, 1),
        period_end=date(start_year, calendar_month, last_day),
        fiscal_year=d.year + 1 if starts_this_year else d.year,
    )
