"""
Excel formulas for the lookup-driven timesheet columns.

Formulas use the file-format spelling of structured references
(``Table[[#This Row],[Col]]`` rather than ``[@Col]``) and the ``_xlfn.``
prefix for XLOOKUP, since openpyxl writes formula text verbatim.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List

from timesheet_converter.config import LayoutConfig


XLOOKUP = "_xlfn.XLOOKUP"
_PLAIN_TABLE_NAME_RE = re.compile(r"^[A-Za-z0-9_]+$")


def safe_table_name(name: str) -> str:
    if _PLAIN_TABLE_NAME_RE.match(name):
        return name
    return "'" + name.replace("'", "''") + "'"


def this_row(table: str, column: str) -> str:
    return f"{table}[[#This Row],[{column}]]"


def column_ref(table: str, column: str) -> str:
    return f"{table}[{column}]"


def code_literal(code: str) -> str:
    """Formula literal for a project code; all-digit codes compare as numbers."""
    return code if code.isascii() and code.isdigit() else '"' + code.replace('"', '""') + '"'


def _neighbour(offset: int, target: str) -> str:
    return f"INDIRECT(ADDRESS(ROW(){offset:+d},COLUMN({target})))"


def project_description_formula(table: str, lookups: Dict[str, Any]) -> str:
    project_table = safe_table_name(lookups["project_table"])
    lookup = (
        f'{XLOOKUP}({this_row(table, "Project")},{column_ref(project_table, "Number")},'
        f'{column_ref(project_table, "Description")},"Project Not Found")'
    )
    return f'=IFERROR({lookup},"Project Not Found")'


def task_description_formula(table: str, lookups: Dict[str, Any]) -> str:
    task_codes = lookups["task_codes_table"]
    project = this_row(table, "Project")
    codes = f'INDIRECT("{task_codes}["&{project}&" Codes]")'
    descriptions = f'INDIRECT("{task_codes}["&{project}&" Desc]")'
    return f'=IFERROR({XLOOKUP}({this_row(table, "Task")},{codes},{descriptions},"FIXXX",0),"")'


def task_formula(table: str, lookups: Dict[str, Any], layout: LayoutConfig) -> str:
    task_codes = safe_table_name(lookups["task_codes_table"])
    tag2_table = safe_table_name(lookups["tag2_table"])
    tag2 = this_row(table, "Tag 2")
    office = layout.office_code
    office_lookup = (
        f'{XLOOKUP}({tag2},{column_ref(task_codes, office + " Desc")},'
        f'{column_ref(task_codes, office + " Codes")},"")'
    )
    tag2_lookup = f'{XLOOKUP}({tag2},{column_ref(tag2_table, "Tag 2")},{column_ref(tag2_table, "Task")},"")'
    return (
        f'=IF({this_row(table, "Project")}={code_literal(office)},'
        f'IF({tag2}<>"",{office_lookup},""),'
        f'IF({tag2}<>"",{tag2_lookup},""))'
    )


def job_code_formula(table: str, lookups: Dict[str, Any], layout: LayoutConfig) -> str:
    default = layout.default_job_code
    tag3_table = safe_table_name(lookups["tag3_table"])
    tag3 = this_row(table, "Tag 3")
    tag3_lookup = (
        f'{XLOOKUP}({tag3},{column_ref(tag3_table, "Tag 3")},'
        f'{column_ref(tag3_table, "Job Code")},"{default}")'
    )
    return (
        f'=IF({this_row(table, "Project")}={code_literal(layout.office_code)},"ADM",'
        f'IF({tag3}<>"",{tag3_lookup},"{default}"))'
    )


def job_code_description_formula(table: str, lookups: Dict[str, Any]) -> str:
    job_codes = safe_table_name(lookups["job_codes_table"])
    lookup = (
        f'{XLOOKUP}({this_row(table, "Job Code")},{column_ref(job_codes, "Job Code")},'
        f'{column_ref(job_codes, "Description")},"Job Code Not Found")'
    )
    return f'=IFERROR({lookup},"Job Code Not Found")'


def _last_row_of_day(table: str) -> str:
    day = this_row(table, "Date")
    next_day = _neighbour(1, day)
    return f'OR({day}<>{next_day},{next_day}="")'


def hour_total_formula(table: str) -> str:
    """Hours for the day, shown on the day's last row."""
    day = this_row(table, "Date")
    total = f'SUMIFS({column_ref(table, "Hours")},{column_ref(table, "Date")},{day})'
    return f'=IF({day}<>"",IF({_last_row_of_day(table)},{total},""),"")'


def total_days_formula(table: str) -> str:
    """Running hours total up to the day, shown on the day's last row."""
    day = this_row(table, "Date")
    running = f'SUM(INDEX({column_ref(table, "Hours")},1):{this_row(table, "Hours")})'
    return f'=IF({day}<>"",IF({_last_row_of_day(table)},{running},""),"")'


def alternation_formula(table: str) -> str:
    """Column1: repeats the previous row's flag on the same day, flips it on a new day."""
    day = this_row(table, "Date")
    flag = this_row(table, "Column1")
    previous_day = _neighbour(-1, day)
    previous_flag = _neighbour(-1, flag)
    return f'=IF({day}<>"",IF({day}={previous_day},{previous_flag},NOT({previous_flag})),"")'


def build_column_formulas(
    layout: LayoutConfig,
    lookups: Dict[str, Any],
    table_name: str,
    row_count: int,
) -> Dict[str, List[Any]]:
    """Per-row cell contents for every formula-driven column of the output table."""
    table = safe_table_name(table_name)
    per_column: Dict[str, Any] = {
        "Project Description": project_description_formula(table, lookups),
        "Task Description": task_description_formula(table, lookups),
        "Job Code Description": job_code_description_formula(table, lookups),
        "Hour Total": hour_total_formula(table),
        "Total Days": total_days_formula(table),
    }
    if layout.task_lookup:
        per_column["Task"] = task_formula(table, lookups, layout)
    else:
        per_column["Task"] = ""
    if layout.job_code_lookup:
        per_column["Job Code"] = job_code_formula(table, lookups, layout)
    else:
        per_column["Job Code"] = layout.default_job_code

    formulas = {header: [value] * row_count for header, value in per_column.items()}
    if row_count:
        formulas["Column1"] = ["=TRUE"] + [alternation_formula(table)] * (row_count - 1)
    else:
        formulas["Column1"] = []
    return formulas
