from __future__ import annotations

from typing import Dict, List
import re

from .backends import TABLE_ID_REGEX
from .fieldtypes import known_type
from .metadata import normalize_table_meta


def _issue(issues: List[Dict], severity: str, code: str, path: str, message: str) -> None:
    issues.append({"severity": severity, "code": code, "path": path, "message": message})


def _check_columns(tid: str, raw: dict, issues: List[Dict]) -> None:
    seen = set()
    for i, c in enumerate(raw.get("columns") or []):
        name = c if isinstance(c, str) else (c.get("name") if isinstance(c, dict) else None)
        path = f"tables.{tid}.columns[{i}]"
        if not name:
            _issue(issues, "error", "COL_NAME_MISSING", path, "Column has no name")
            continue
        if name in seen:
            _issue(issues, "error", "COL_DUPLICATE", path, f"Duplicate column '{name}'")
        seen.add(name)
        if not isinstance(c, dict):
            continue
        ctype = c.get("type")
        if ctype and not known_type(ctype):
            _issue(issues, "warning", "COL_TYPE_UNKNOWN", path,
                   f"Unknown type '{ctype}' for column '{name}' (rendered as string)")
        if str(ctype or "").lower() == "relation" and not c.get("relation"):
            _issue(issues, "error", "COL_RELATION_TARGET_MISSING", path,
                   f"Relation column '{name}' has no relation target table")


def validate_catalog(tables: Dict[str, dict]) -> Dict:
    """Check a raw metadata dictionary (the tables: block of datadesk.yml).

    Returns a dict: { errors: int, warnings: int, issues: [ {severity, code, path, message} ] }
    """
    issues: List[Dict] = []
    if not isinstance(tables, dict):
        _issue(issues, "error", "TABLES_NOT_MAPPING", "tables", "tables: must be a mapping of table id -> metadata")
        tables = {}
    normalized = {}
    for tid, raw in tables.items():
        path = f"tables.{tid}"
        if re.fullmatch(TABLE_ID_REGEX, str(tid)) is None:
            _issue(issues, "error", "TBL_ID_INVALID", path, f"Invalid table id '{tid}': must match {TABLE_ID_REGEX}")
        if not isinstance(raw, dict):
            _issue(issues, "error", "TBL_NOT_MAPPING", path, "Table metadata must be a mapping")
            continue
        _check_columns(tid, raw, issues)
        normalized[tid] = normalize_table_meta(tid, raw)

    for tid, meta in normalized.items():
        path = f"tables.{tid}"
        names = {c["name"] for c in meta["columns"]}
        if not names:
            _issue(issues, "warning", "TBL_NO_COLUMNS", path, "No columns configured")
            continue
        if meta["primaryKey"] not in names:
            _issue(issues, "error", "TBL_PK_MISSING", f"{path}.primaryKey",
                   f"Primary key '{meta['primaryKey']}' is not a column")
        if meta["titleField"] not in names:
            _issue(issues, "warning", "TBL_TITLE_FIELD_UNKNOWN", f"{path}.titleField",
                   f"Title field '{meta['titleField']}' is not a column")
        if meta.get("subtitleField") and meta["subtitleField"] not in names:
            _issue(issues, "warning", "TBL_SUBTITLE_FIELD_UNKNOWN", f"{path}.subtitleField",
                   f"Subtitle field '{meta['subtitleField']}' is not a column")
        for c in meta["columns"]:
            if c["type"] == "relation" and c.get("relation") and c["relation"] not in normalized:
                _issue(issues, "warning", "COL_RELATION_TARGET_UNKNOWN", f"{path}.columns.{c['name']}",
                       f"Relation target '{c['relation']}' is not a configured table (schema will be detected)")
        for i, rel in enumerate(meta["relations"]):
            rpath = f"{path}.relations[{i}]"
            child = normalized.get(rel["table"])
            if child is None:
                _issue(issues, "warning", "REL_TABLE_UNKNOWN", rpath,
                       f"Related table '{rel['table']}' is not configured")
                continue
            if rel["foreignKey"] not in {c["name"] for c in child["columns"]}:
                _issue(issues, "error", "REL_FK_MISSING", rpath,
                       f"Foreign key '{rel['foreignKey']}' is not a column of '{rel['table']}'")

    errors = sum(1 for i in issues if i.get("severity") == "error")
    warnings = sum(1 for i in issues if i.get("severity") == "warning")
    return {"errors": errors, "warnings": warnings, "issues": issues}
