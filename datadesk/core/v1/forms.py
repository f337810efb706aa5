from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional

from .fieldtypes import REQUIRED_MESSAGE, get_field_type, is_blank
from .metadata import (
    column_display,
    form_columns,
    get_column,
    primary_key_value,
    record_title,
    visible_columns,
)
from .navigation import ParentLink

FORM_MODES = ("create", "edit")


# -------------------------------
# Metadata -> widget trees
#   Plain dicts, rendered by the Jinja templates and returned by the JSON API.
# -------------------------------

def form_value(col: dict, value):
    """Value as an HTML input expects it."""
    ftype = get_field_type(col.get("type"))
    if value is None:
        return False if ftype.name == "boolean" else ""
    if ftype.name == "boolean":
        return ftype.to_value(value)
    if ftype.name == "date":
        return ftype.to_value(value) or ""
    if ftype.name == "datetime":
        # datetime-local inputs take minutes precision and no zone
        s = ftype.to_value(value) or ""
        return s[:16]
    if ftype.name == "tags":
        return ftype.format(value)
    return str(value)


def _check_mode(mode: str) -> None:
    if mode not in FORM_MODES:
        raise ValueError(f"Unknown form mode '{mode}' (expected one of {', '.join(FORM_MODES)})")


def build_form(meta: dict, record: Optional[dict], mode: str, *,
               errors: Optional[Dict[str, str]] = None,
               options: Optional[Dict[str, List[dict]]] = None,
               parent: Optional[ParentLink] = None) -> dict:
    """One field per form column, with value, error text and relation options."""
    _check_mode(mode)
    record = record or {}
    errors = errors or {}
    options = options or {}
    fields = []
    for col in form_columns(meta):
        name = col["name"]
        ftype = get_field_type(col.get("type"))
        value = record.get(name)
        locked = bool(parent and mode == "create" and name == parent.foreign_key)
        if locked:
            value = parent.id
        fields.append({
            "name": name,
            "label": col.get("label") or name,
            "type": ftype.name,
            "widget": ftype.widget,
            "input_type": ftype.input_type,
            "value": form_value(col, value),
            "required": bool(col.get("required")),
            "error": errors.get(name),
            "options": options.get(name) if ftype.name == "relation" else None,
            "locked": locked,
            "locked_text": parent.locked_text() if locked else None,
        })
    return {
        "table": meta.get("id"),
        "mode": mode,
        "title": ("New " if mode == "create" else "Edit ") + str(meta.get("title") or meta.get("id")),
        "record_id": primary_key_value(meta, meta.get("id"), record) if mode == "edit" else None,
        "fields": fields,
        "parent": parent,
    }


def build_display(meta: dict, record: dict) -> dict:
    """Read-only label/text pairs for every visible column."""
    return {
        "table": meta.get("id"),
        "title": record_title(meta, record),
        "subtitle": (str(record.get(meta["subtitleField"]) or "") if meta.get("subtitleField") else ""),
        "record_id": primary_key_value(meta, meta.get("id"), record),
        "fields": [
            {
                "name": col["name"],
                "label": col.get("label") or col["name"],
                "type": col.get("type"),
                "text": column_display(col, record),
                "relation": col.get("relation") if col.get("type") == "relation" else None,
                "value": record.get(col["name"]),
            }
            for col in visible_columns(meta)
        ],
    }


def build_table(meta: dict, rows: List[dict], *, limit: Optional[int] = None) -> dict:
    cols = visible_columns(meta, limit)
    table_id = meta.get("id")
    return {
        "table": table_id,
        "columns": [{"name": c["name"], "label": c.get("label") or c["name"], "type": c.get("type")} for c in cols],
        "rows": [
            {
                "key": primary_key_value(meta, table_id, row),
                "title": record_title(meta, row),
                "cells": [column_display(c, row) for c in cols],
            }
            for row in rows
        ],
    }


# -------------------------------
# Validation and save shaping
# -------------------------------

def validate_form(meta: dict, values: Mapping, *, parent: Optional[ParentLink] = None,
                  partial: bool = False) -> Dict[str, str]:
    """Required and type checks over the form columns. Returns {field: message}.

    With partial=True, columns absent from values are not checked (API/CLI patches).
    """
    errors: Dict[str, str] = {}
    for col in form_columns(meta):
        name = col["name"]
        if parent is not None and name == parent.foreign_key:
            continue
        if partial and name not in values:
            continue
        ftype = get_field_type(col.get("type"))
        value = values.get(name)
        if ftype.name == "boolean":
            continue
        if ftype.name == "tags" and isinstance(value, (list, tuple)):
            blank = not ftype.to_value(value)
        else:
            blank = is_blank(value)
        if blank:
            if col.get("required"):
                errors[name] = REQUIRED_MESSAGE
            continue
        msg = ftype.check(value)
        if msg:
            errors[name] = msg
    return errors


def check_parent(meta: dict, parent: Optional[ParentLink]) -> None:
    """Reject a parent link whose foreign key is not a writable column of this table."""
    if parent is None:
        return
    if parent.foreign_key not in {c["name"] for c in form_columns(meta)}:
        raise ValueError(
            f"Invalid parent link: '{parent.foreign_key}' is not a writable column of {meta.get('id')}"
        )


def unknown_fields(meta: dict, values: Mapping) -> List[str]:
    """Keys of values that no form column accepts (primary key, read-only, unknown)."""
    writable = {c["name"] for c in form_columns(meta)}
    return sorted(str(k) for k in values if k not in writable)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def data_for_save(meta: dict, values: Mapping, mode: str, *,
                  parent: Optional[ParentLink] = None, partial: bool = False) -> dict:
    """Shape submitted values into the row sent to the backend.

    Drops the primary key, non-editable and timestamp columns, coerces the
    rest through the type registry (blank -> None). On create the parent's
    foreign key is forced; on edit updated_at is stamped when the table has it.
    """
    _check_mode(mode)
    data = {}
    for col in form_columns(meta):
        name = col["name"]
        if partial and name not in values:
            continue
        data[name] = get_field_type(col.get("type")).to_value(values.get(name))
    if mode == "create" and parent is not None:
        check_parent(meta, parent)
        col = get_column(meta, parent.foreign_key)
        data[parent.foreign_key] = get_field_type(col.get("type")).to_value(parent.id)
    if mode == "edit" and get_column(meta, "updated_at") is not None:
        data["updated_at"] = utc_now_iso()
    return data
