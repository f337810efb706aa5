from __future__ import annotations

from typing import Iterable, List, Optional
import logging
import re

from .fieldtypes import COLOR_RE, EMAIL_RE, TIME_RE
from .metadata import generic_table_meta, normalize_table_meta

log = logging.getLogger(__name__)

SAMPLE_SIZE = 10

PRIMARY_KEY_PATTERNS = ("id", "{table}_id", "uuid", "key", "code")
TITLE_PATTERNS = ("name", "title", "label", "description", "summary")
SUBTITLE_PATTERNS = ("description", "summary", "subtitle", "details", "status")

# Column name -> type. Checked in order against the underscore-separated
# words of the column name; first hit wins.
NAME_RULES = (
    (("created_at", "created", "creation_date"), {"type": "date", "editable": False}),
    (("updated_at", "modified", "modified_date"), {"type": "date", "editable": False}),
    (("name", "title"), {"type": "string", "required": True}),
    (("description", "details", "notes"), {"type": "text"}),
    (("email",), {"type": "email"}),
    (("url", "website", "link"), {"type": "url"}),
    (("phone", "telephone", "mobile"), {"type": "phone"}),
    (("password", "pwd"), {"type": "password"}),
    (("color", "colour"), {"type": "color"}),
    (("datetime", "timestamp"), {"type": "datetime"}),
    (("date", "day"), {"type": "date"}),
    (("time",), {"type": "time"}),
    (("enabled", "active"), {"type": "boolean"}),
    (("price", "amount", "total", "cost", "fee"), {"type": "number"}),
    (("quantity", "count", "number", "age", "duration"), {"type": "integer"}),
    (("tags", "categories", "keywords"), {"type": "tags"}),
)

DATE_RES = (
    re.compile(r"^\d{4}-\d{2}-\d{2}$"),
    re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$"),
    re.compile(r"^\d{1,2}\.\d{1,2}\.\d{4}$"),
    re.compile(r"^\d{4}/\d{1,2}/\d{1,2}$"),
)
DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}")
URL_PREFIX_RE = re.compile(r"^https?://", re.IGNORECASE)


def generate_label(field_name: str) -> str:
    """'fk_customer_id' -> 'Customer', 'orderDate' -> 'Order Date'."""
    s = re.sub(r"^(fk_|pk_|r_|tbl_|col_)", "", str(field_name), flags=re.IGNORECASE)
    s = re.sub(r"_id$", "", s, flags=re.IGNORECASE)
    s = " ".join(p[:1].upper() + p[1:] for p in s.split("_") if p)
    s = re.sub(r"([a-z])([A-Z])", r"\1 \2", s)
    return s or str(field_name)


def _words(field_name: str) -> List[str]:
    snake = re.sub(r"([a-z])([A-Z])", r"\1_\2", str(field_name)).lower()
    return [w for w in snake.split("_") if w]


def _name_matches(field_name: str, patterns: Iterable[str]) -> bool:
    name = str(field_name).lower()
    words = _words(field_name)
    for p in patterns:
        if name == p or p in words or ("_" in p and p in name):
            return True
    return False


def type_from_value(value) -> str:
    if value is None:
        return "string"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, (list, tuple)):
        return "tags"
    if not isinstance(value, str):
        return "string"
    s = value.strip()
    if any(r.match(s) for r in DATE_RES):
        return "date"
    if TIME_RE.fullmatch(s):
        return "time"
    if DATETIME_RE.match(s):
        return "datetime"
    if EMAIL_RE.fullmatch(s):
        return "email"
    if URL_PREFIX_RE.match(s):
        return "url"
    if COLOR_RE.fullmatch(s):
        return "color"
    if len(s) > 100:
        return "text"
    return "string"


def related_table(field_name: str, known_tables: Iterable[str] = ()) -> Optional[str]:
    """Target table for a foreign-key-looking column ('customer_id' -> 'customers' if known)."""
    name = str(field_name)
    if name.endswith("_id") and len(name) > 3:
        base = name[:-3]
    elif name.endswith("Id") and len(name) > 2:
        base = re.sub(r"([a-z])([A-Z])", r"\1_\2", name[:-2]).lower()
    elif name.startswith("fk_") and len(name) > 3:
        base = name[3:]
    else:
        return None
    known = set(known_tables or ())
    for candidate in (base, base + "s", base + "es"):
        if candidate in known:
            return candidate
    return base


def _first_match(fields: List[str], patterns: Iterable[str], *, exclude=None) -> Optional[str]:
    for p in patterns:
        if p in fields and p != exclude:
            return p
    return None


def detect_column(table_id: str, name: str, values: list, primary_key: str,
                  known_tables: Iterable[str] = ()) -> dict:
    col = {"name": name, "label": generate_label(name), "type": "string",
           "visible": True, "editable": True, "required": False}
    if name == primary_key or name in ("id", f"{table_id}_id", "uuid"):
        col["editable"] = False
        if name == "id":
            col["label"] = "ID"
    else:
        target = related_table(name, known_tables)
        if target and target != table_id:
            col.update({"type": "relation", "relation": target, "required": True})
            return col
        if name.startswith(("is_", "has_")):
            col["type"] = "boolean"
        else:
            for patterns, props in NAME_RULES:
                if _name_matches(name, patterns):
                    col.update(props)
                    break
    if col["type"] == "string":
        sample = next((v for v in values if v is not None), None)
        if sample is not None:
            col["type"] = type_from_value(sample)
    return col


def detect_from_rows(table_id: str, rows: List[dict], known_tables: Iterable[str] = ()) -> dict:
    """Build normalized metadata from sample rows. Empty input gives the generic structure."""
    rows = [r for r in rows or [] if isinstance(r, dict) and r]
    if not rows:
        return generic_table_meta(table_id)
    fields: List[str] = []
    for r in rows:
        for k in r:
            if k not in fields:
                fields.append(k)
    pk_patterns = [p.format(table=table_id) for p in PRIMARY_KEY_PATTERNS]
    pk = _first_match(fields, pk_patterns) or fields[0]
    title = _first_match(fields, TITLE_PATTERNS) or pk
    subtitle = _first_match(fields, SUBTITLE_PATTERNS, exclude=title)
    columns = []
    for name in fields:
        values = [r.get(name) for r in rows if r.get(name) is not None]
        columns.append(detect_column(table_id, name, values, pk, known_tables))
    return normalize_table_meta(table_id, {
        "primaryKey": pk,
        "titleField": title,
        "subtitleField": subtitle,
        "columns": columns,
        "relations": [],
        "detected": True,
    })


def detect_schema(backend, table_id: str, known_tables: Iterable[str] = ()) -> dict:
    """Fetch up to SAMPLE_SIZE rows of table_id and derive metadata from them."""
    rows = backend.select(table_id, limit=SAMPLE_SIZE)
    log.info("Detected schema for %s from %d sample rows", table_id, len(rows))
    return detect_from_rows(table_id, rows, known_tables)
