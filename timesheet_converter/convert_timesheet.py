from __future__ import annotations

import argparse
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd

from timesheet_converter.config import DEFAULT_CONFIG_PATH, build_identity, build_layout, load_config
from timesheet_converter.errors import ConfigError, ConversionError
from timesheet_converter.records import PeriodLabel, assemble, export_records_csv
from timesheet_converter.unpivot import unpivot
from timesheet_converter.workbook_io import (
    create_backup,
    load_raw_table,
    open_workbook_for_writing,
    save_workbook,
    write_timesheet,
)


logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
# Allow dynamic log level via env var (TIMESHEET_LOG_LEVEL)
_env_level = os.getenv("TIMESHEET_LOG_LEVEL")
if _env_level:
    try:
        logging.getLogger().setLevel(_env_level.upper())
    except ValueError:  # pragma: no cover
        logging.warning(f"Invalid TIMESHEET_LOG_LEVEL '{_env_level}', keeping default INFO")


@dataclass
class ConversionResult:
    ok: bool
    diagnostic: str = ""
    warnings: List[str] = field(default_factory=list)
    records: Optional[pd.DataFrame] = None
    period_label: Optional[PeriodLabel] = None
    sheet_name: Optional[str] = None
    output_path: Optional[str] = None
    csv_path: Optional[str] = None
    entry_count: int = 0
    date_column_count: int = 0


# ------------------------------------
# Arguments & configuration
# ------------------------------------
def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments.

    Identity and layout flags override the YAML config; everything else is
    per-run behaviour.
    """
    parser = argparse.ArgumentParser(description="Convert a wide time-tracking export into a fiscal-period timesheet sheet")
    parser.add_argument("--workbook", required=True, help="Path to the workbook holding the time-tracking export")
    parser.add_argument("--sheet", help="Export sheet name (default: the workbook's active sheet)")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="YAML converter config")
    parser.add_argument("--profile", choices=["standard", "legacy"], help="Export layout profile override")
    parser.add_argument("--employee-number", help="Employee number written on every row")
    parser.add_argument("--employee-name", help="Employee name written on every row")
    parser.add_argument("--output", help="Where to save the converted workbook (default: overwrite --workbook)")
    parser.add_argument("--output-dir", default="data/output", help="Directory for backups")
    parser.add_argument("--export-csv-dir", help="If set, write the assembled records as CSV for inspection (directory created if missing)")
    parser.add_argument("--dry-run", action="store_true", help="Convert and validate only; do not write the workbook (still exports CSV if --export-csv-dir specified)")
    return parser.parse_args(argv)


def apply_cli_overrides(config: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    if args.profile:
        config["profile"] = args.profile
    employee = config.setdefault("employee", {})
    if args.employee_number is not None:
        number = args.employee_number.strip()
        employee["number"] = int(number) if number.isdigit() else number
    if args.employee_name is not None:
        employee["name"] = args.employee_name
    return config


# ------------------------------------
# Conversion pipeline
# ------------------------------------
def convert(
    workbook_path: str,
    config: Dict[str, Any],
    sheet_name: Optional[str] = None,
    output_path: Optional[str] = None,
    dry_run: bool = False,
    export_csv_dir: Optional[str] = None,
    backup_dir: Optional[str] = None,
) -> ConversionResult:
    """Read the export, unpivot, assemble and (unless dry-run) write the period sheet.

    Aborted runs come back as ConversionResult(ok=False) with the diagnostic
    message; the workbook is left untouched in that case.
    """
    warnings: List[str] = []
    try:
        layout = build_layout(config)
    except ConfigError as e:
        logging.error(f"Invalid converter config: {e}")
        return ConversionResult(ok=False, diagnostic=str(e))
    identity = build_identity(config)
    if not identity.employee_name:
        logging.warning("Employee name is not configured; rows will carry a blank name.")

    try:
        rows = load_raw_table(workbook_path, sheet_name)
        unpivoted = unpivot(rows, layout)
        warnings.extend(unpivoted.warnings)
        timesheet = assemble(unpivoted.entries, identity)
    except ConversionError as e:
        logging.error(f"Conversion aborted: {e}")
        return ConversionResult(ok=False, diagnostic=str(e), warnings=warnings)

    result = ConversionResult(
        ok=True,
        warnings=warnings,
        records=timesheet.records,
        period_label=timesheet.period_label,
        sheet_name=str(timesheet.period_label),
        entry_count=len(timesheet),
        date_column_count=len(unpivoted.date_columns),
    )

    # Optional CSV export (debug/audit) - occurs even in dry-run
    if export_csv_dir:
        result.csv_path = export_records_csv(timesheet.records, export_csv_dir, timesheet.period_label)

    if dry_run:
        logging.info(f"Dry-run: skipping write for '{result.sheet_name}' ({result.entry_count} rows)")
        return result

    target_path = output_path or workbook_path
    wb = open_workbook_for_writing(workbook_path)
    try:
        if backup_dir:
            create_backup(wb, backup_dir)
        write_timesheet(wb, timesheet, layout, config)
        save_workbook(wb, target_path)
    except ConversionError as e:
        logging.error(f"Conversion aborted: {e}")
        return ConversionResult(ok=False, diagnostic=str(e), warnings=warnings)
    finally:
        wb.close()

    result.output_path = target_path
    return result


def format_summary(result: ConversionResult) -> str:
    if not result.ok:
        return f"Conversion aborted: {result.diagnostic}"
    lines = [
        "=== Timesheet Conversion Summary ===",
        f"Period: {result.period_label} (table {result.period_label.table_name()})",
        f"Date columns: {result.date_column_count} | Entries: {result.entry_count} | Warnings: {len(result.warnings)}",
    ]
    if result.csv_path:
        lines.append(f"CSV export: {result.csv_path}")
    if result.output_path:
        lines.append(f"Workbook updated: {result.output_path} (sheet '{result.sheet_name}')")
    else:
        lines.append("Dry-run completed (no modifications written).")
    return "\n".join(lines)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    if not os.path.exists(args.workbook):
        raise SystemExit(f"Workbook not found: {args.workbook}")

    config = apply_cli_overrides(load_config(args.config), args)
    result = convert(
        args.workbook,
        config,
        sheet_name=args.sheet,
        output_path=args.output,
        dry_run=args.dry_run,
        export_csv_dir=args.export_csv_dir,
        backup_dir=None if args.dry_run else os.path.join(args.output_dir, "backup"),
    )
    print("\n" + format_summary(result))
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
