"""Exceptions raised by the timesheet conversion stages."""
from __future__ import annotations


class ConversionError(RuntimeError):
    """Base error for a conversion run that cannot produce output."""


class NoActiveSheetError(ConversionError):
    """Raised when the source sheet cannot be located in the workbook."""


class NoDataError(ConversionError):
    """Raised when the source sheet has no rows at all."""


class NoDateColumnsError(ConversionError):
    """Raised when the header row yields no parseable date columns."""


class NoEntriesError(ConversionError):
    """Raised when no time entry has positive hours, so no period can be derived."""


class LookupTablesMissingError(ConversionError):
    """Raised when the lookups sheet or one of its tables is missing."""


class ConfigError(ValueError):
    """Raised when the converter configuration is inconsistent."""


class WorkbookLockedError(Exception):
    """Raised when the workbook cannot be saved due to a file lock."""
