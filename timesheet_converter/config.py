"""
Converter configuration: inline defaults, layout profiles and YAML overrides.

The YAML file mirrors DEFAULT_CONFIG; any key left out keeps its default.
Two layout profiles describe the known export variants:

  standard: Tag 1 | Tag 2 | Tag 3 | Notes | <dates...> | Total
  legacy:   Tag 1 | Notes | Tag 2 | <dates...> | Total
"""
from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from timesheet_converter.errors import ConfigError


DEFAULT_CONFIG_PATH = os.path.join("config", "converter_config.yaml")

DEFAULT_CONFIG: Dict[str, Any] = {
    "profile": "standard",
    "layout": {},
    "employee": {
        "number": "",
        "name": "",
    },
    "project": {
        "office_tag": "office",
        "office_code": "992024",
    },
    "lookups": {
        "sheet": "LOOKUPS",
        "project_table": "ProjectLookup",
        "task_codes_table": "TaskCodes",
        "job_codes_table": "JobCodes",
        "tag2_table": "Tag2Lookup",
        "tag3_table": "Tag3Lookup",
        "required": True,
    },
    "output": {
        "start_cell": "B4",
        "table_prefix": "TimesheetData",
    },
}

LAYOUT_PROFILES: Dict[str, Dict[str, Any]] = {
    "standard": {
        "tag1_column": 0,
        "tag2_column": 1,
        "tag3_column": 2,
        "notes_column": 3,
        "date_column_start": 4,
        "task_lookup": True,
        "job_code_lookup": True,
        "default_job_code": "ENC",
    },
    "legacy": {
        "tag1_column": 0,
        "tag2_column": 2,
        "tag3_column": None,
        "notes_column": 1,
        "date_column_start": 3,
        "task_lookup": False,
        "job_code_lookup": False,
        "default_job_code": "ENC",
    },
}

LAYOUT_OVERRIDE_KEYS = ("tag1_column", "tag2_column", "tag3_column", "notes_column", "date_column_start")


@dataclass(frozen=True)
class LayoutConfig:
    """Column positions (0-based) of the wide export plus profile behaviour."""

    name: str
    tag1_column: int
    tag2_column: Optional[int]
    tag3_column: Optional[int]
    notes_column: Optional[int]
    date_column_start: int
    task_lookup: bool = True
    job_code_lookup: bool = True
    default_job_code: str = "ENC"
    office_tag: str = "office"
    office_code: str = "992024"

    @property
    def tag_column_count(self) -> int:
        return self.date_column_start


@dataclass(frozen=True)
class Identity:
    employee_number: Any
    employee_name: str


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[str]) -> Dict[str, Any]:
    """Load YAML converter config merged over DEFAULT_CONFIG.

    Missing or unreadable files are non-fatal: the defaults are returned.
    """
    if not path or not os.path.exists(path):
        logging.warning(f"Converter config not found ({path}); using default inline config.")
        return copy.deepcopy(DEFAULT_CONFIG)

    import yaml

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logging.error(f"Failed loading converter config '{path}': {e}; using defaults")
        return copy.deepcopy(DEFAULT_CONFIG)

    if not isinstance(raw, dict):
        logging.error(f"Converter config '{path}' is not a mapping; using defaults")
        return copy.deepcopy(DEFAULT_CONFIG)

    logging.info(f"Loaded converter config from {path}")
    return _deep_merge(DEFAULT_CONFIG, raw)


def build_layout(config: Dict[str, Any]) -> LayoutConfig:
    """Resolve the layout profile named in config and apply per-column overrides."""
    profile_name = config.get("profile") or "standard"
    if profile_name not in LAYOUT_PROFILES:
        raise ConfigError(
            f"Unknown layout profile '{profile_name}'. Available profiles: {sorted(LAYOUT_PROFILES)}"
        )
    settings = dict(LAYOUT_PROFILES[profile_name])
    for key, value in (config.get("layout") or {}).items():
        if key not in LAYOUT_OVERRIDE_KEYS:
            logging.warning(f"Ignoring unknown layout key '{key}'")
            continue
        settings[key] = value

    project = config.get("project") or {}
    layout = LayoutConfig(
        name=profile_name,
        office_tag=str(project.get("office_tag", "office")),
        office_code=str(project.get("office_code", "992024")),
        **settings,
    )

    fixed = [c for c in (layout.tag1_column, layout.tag2_column, layout.tag3_column, layout.notes_column) if c is not None]
    if any(c < 0 for c in fixed) or layout.date_column_start <= max(fixed):
        raise ConfigError(
            f"date_column_start ({layout.date_column_start}) must come after every tag/notes column {fixed}"
        )
    return layout


def build_identity(config: Dict[str, Any]) -> Identity:
    employee = config.get("employee") or {}
    return Identity(
        employee_number=employee.get("number", ""),
        employee_name=str(employee.get("name") or ""),
    )
