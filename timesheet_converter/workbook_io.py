"""
Workbook handling for the timesheet converter.

This module contains both:
 - Reading the wide export sheet into an in-memory table (list of row lists)
 - Writing the assembled timesheet into its period sheet with an Excel table
   and the lookup formulas
 - Workbook utilities (opening, backup creation, save with lock retry)
"""

import logging
import os
from datetime import datetime
from time import sleep
from typing import Any, Dict, List, Optional

from openpyxl import load_workbook
from openpyxl.utils import get_column_letter
from openpyxl.utils.cell import column_index_from_string, coordinate_from_string
from openpyxl.worksheet.table import Table

from timesheet_converter.config import LayoutConfig
from timesheet_converter.errors import ConversionError, LookupTablesMissingError, NoActiveSheetError, WorkbookLockedError
from timesheet_converter.formulas import build_column_formulas
from timesheet_converter.records import DATE_COLUMNS, OUTPUT_COLUMNS, AssembledTimesheet, records_as_rows


DATE_NUMBER_FORMAT = "yyyy-mm-dd"
HOURS_NUMBER_FORMAT = "0.00"
REQUIRED_LOOKUP_TABLES = ("project_table", "task_codes_table", "job_codes_table")


# -------------------------------
# Reading
# -------------------------------
def _merged_values(sheet) -> Dict[tuple, Any]:
    """Map every (row, col) inside a merged range to its top-left value."""
    values: Dict[tuple, Any] = {}
    for merged_range in sheet.merged_cells.ranges:
        top_left = sheet.cell(merged_range.min_row, merged_range.min_col).value
        for row in range(merged_range.min_row, merged_range.max_row + 1):
            for col in range(merged_range.min_col, merged_range.max_col + 1):
                values[(row, col)] = top_left
    return values


def select_sheet(wb, sheet_name: Optional[str] = None):
    if sheet_name:
        try:
            return wb[sheet_name]
        except KeyError:
            raise NoActiveSheetError(
                f"Sheet '{sheet_name}' not found. Available sheets: {list(wb.sheetnames)}"
            )
    sheet = wb.active
    if sheet is None:
        raise NoActiveSheetError("No active sheet found. Save the workbook with the export sheet selected or pass --sheet.")
    return sheet


def read_sheet_rows(sheet) -> List[List[Any]]:
    """All rows of the sheet from A1 as value lists; trailing empty rows are dropped."""
    merged = _merged_values(sheet)
    rows: List[List[Any]] = []
    for row_number, values in enumerate(sheet.iter_rows(values_only=True), start=1):
        row = list(values)
        if merged:
            for col_number in range(1, len(row) + 1):
                if (row_number, col_number) in merged:
                    row[col_number - 1] = merged[(row_number, col_number)]
        rows.append(row)

    while rows and all(v is None or (isinstance(v, str) and not v.strip()) for v in rows[-1]):
        rows.pop()
    return rows


def load_raw_table(file_path: str, sheet_name: Optional[str] = None) -> List[List[Any]]:
    """Read the export sheet (cached values, not formulas) into a list of rows."""
    if not os.path.exists(file_path):
        raise SystemExit(f"Workbook not found: {file_path}")
    wb = load_workbook(file_path, data_only=True)
    try:
        sheet = select_sheet(wb, sheet_name)
        rows = read_sheet_rows(sheet)
        logging.info(f"Read {len(rows)} row(s) from sheet '{sheet.title}' of {file_path}")
        return rows
    finally:
        wb.close()


# -------------------------------
# Workbook utilities
# -------------------------------
def open_workbook_for_writing(file_path: str):
    return load_workbook(file_path)


def create_backup(wb, backup_dir: str) -> str:
    """Save a timestamped copy of the workbook under backup_dir before it is modified."""
    os.makedirs(backup_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    backup_path = os.path.join(backup_dir, f"backup_{timestamp}.xlsx")
    wb.save(backup_path)
    logging.info(f"Created backup of workbook: {backup_path}")
    return backup_path


def save_workbook(wb, path: str) -> None:
    try:
        wb.save(path)
        logging.info(f"Workbook saved: {path}")
    except PermissionError as e:
        logging.warning(f"Save PermissionError: {e}; retrying in 1s...")
        sleep(1)
        try:
            wb.save(path)
            logging.info(f"Workbook saved after retry: {path}")
        except PermissionError as e2:
            logging.error(f"Workbook locked, aborting save: {e2}")
            raise WorkbookLockedError(str(e2))


# -------------------------------
# Writing
# -------------------------------
def find_lookups_sheet(wb, lookups: Dict[str, Any]):
    """Return the lookups sheet after checking its tables.

    Raises LookupTablesMissingError when lookups are required and missing;
    otherwise a missing sheet is logged and None returned.
    """
    sheet_name = lookups["sheet"]
    required = lookups.get("required", True)
    if sheet_name not in wb.sheetnames:
        message = f"Lookup sheet '{sheet_name}' not found. Cannot proceed with lookups."
        if required:
            raise LookupTablesMissingError(message)
        logging.warning(message)
        return None

    ws = wb[sheet_name]
    missing = [lookups[key] for key in REQUIRED_LOOKUP_TABLES if lookups[key] not in ws.tables]
    if missing:
        message = f"Lookup table(s) {missing} not found on '{sheet_name}'."
        if required:
            raise LookupTablesMissingError(message)
        logging.warning(message)
    return ws


def prepare_output_sheet(wb, sheet_name: str, lookups_ws=None):
    """Create the period sheet, or recreate it empty if it already exists.

    The sheet is placed immediately before the lookups sheet when there is one.
    """
    if sheet_name in wb.sheetnames:
        logging.info(f"Output sheet '{sheet_name}' already exists. Clearing it.")
        existing = wb[sheet_name]
        index = wb.index(existing)
        wb.remove(existing)
        ws = wb.create_sheet(sheet_name, index)
    else:
        ws = wb.create_sheet(sheet_name)
        logging.info(f"Created new output sheet: {sheet_name}")

    if lookups_ws is not None:
        lookups_index = wb.index(lookups_ws)
        ws_index = wb.index(ws)
        target = lookups_index if ws_index > lookups_index else lookups_index - 1
        wb.move_sheet(ws, offset=target - ws_index)
        logging.info(f"Moved output sheet '{sheet_name}' before '{lookups_ws.title}' sheet.")

    for sheet in wb.worksheets:
        sheet.sheet_view.tabSelected = sheet is ws
    wb.active = wb.index(ws)
    return ws


def _table_owner(wb, table_name: str) -> Optional[str]:
    for sheet in wb.worksheets:
        if table_name in sheet.tables:
            return sheet.title
    return None


def _cell_value(header: str, value: Any) -> Any:
    # Digit-only project numbers are stored as numbers so lookups match numeric keys
    if header == "Project" and isinstance(value, str) and value.isascii() and value.isdigit():
        return int(value)
    return value


def write_timesheet(wb, timesheet: AssembledTimesheet, layout: LayoutConfig, config: Dict[str, Any]):
    """Render the assembled records into the workbook; returns the output worksheet."""
    lookups = config["lookups"]
    output = config["output"]
    period_label = timesheet.period_label
    sheet_name = str(period_label)
    table_name = period_label.table_name(output.get("table_prefix", "TimesheetData"))

    lookups_ws = find_lookups_sheet(wb, lookups)
    owner = _table_owner(wb, table_name)
    if owner is not None and owner != sheet_name:
        raise ConversionError(f"Table '{table_name}' already exists on sheet '{owner}'. Rename or delete it first.")
    ws = prepare_output_sheet(wb, sheet_name, lookups_ws)
    ws["A1"] = sheet_name

    col_letter, start_row = coordinate_from_string(output.get("start_cell", "B4"))
    start_col = column_index_from_string(col_letter)

    for offset, header in enumerate(OUTPUT_COLUMNS):
        ws.cell(row=start_row, column=start_col + offset, value=header)

    rows = records_as_rows(timesheet.records)
    for row_offset, values in enumerate(rows, start=1):
        for offset, (header, value) in enumerate(zip(OUTPUT_COLUMNS, values)):
            cell = ws.cell(row=start_row + row_offset, column=start_col + offset, value=_cell_value(header, value))
            if header in DATE_COLUMNS:
                cell.number_format = DATE_NUMBER_FORMAT
            elif header == "Hours":
                cell.number_format = HOURS_NUMBER_FORMAT

    formulas = build_column_formulas(layout, lookups, table_name, len(rows))
    for header, column_values in formulas.items():
        col = start_col + OUTPUT_COLUMNS.index(header)
        for row_offset, value in enumerate(column_values, start=1):
            ws.cell(row=start_row + row_offset, column=col, value=value)

    end_ref = f"{get_column_letter(start_col + len(OUTPUT_COLUMNS) - 1)}{start_row + max(len(rows), 1)}"
    table_ref = f"{get_column_letter(start_col)}{start_row}:{end_ref}"
    ws.add_table(Table(displayName=table_name, ref=table_ref))
    logging.info(f"Wrote {len(rows)} timesheet row(s) to sheet '{sheet_name}' as table '{table_name}' ({table_ref})")
    return ws
