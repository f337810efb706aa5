from __future__ import annotations

import copy
import logging
import threading
from typing import Dict, List, Optional

from .config import table_title
from .fieldtypes import get_field_type

log = logging.getLogger(__name__)


# -------------------------------
# Table metadata dictionary
#   Each table is described as:
#     primaryKey: <column>
#     titleField: <column shown as the record's label>
#     subtitleField: <column>
#     columns: [ {name, label, type, visible, editable, required, relation} ]
#     relations: [ {table: <child table>, foreignKey: <child column -> our primary key>} ]
# -------------------------------

TIMESTAMP_COLUMNS = ("created_at", "updated_at")

COLUMN_DEFAULTS = {
    "type": "string",
    "visible": True,
    "editable": True,
    "required": False,
}


def column_label(name: str) -> str:
    """'contact_name' -> 'Contact Name'."""
    return " ".join(p[:1].upper() + p[1:] for p in str(name).split("_") if p)


def _as_bool(value, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def normalize_column(raw) -> Optional[dict]:
    if isinstance(raw, str):
        raw = {"name": raw}
    if not isinstance(raw, dict):
        return None
    name = str(raw.get("name") or "").strip()
    if not name:
        return None
    col = dict(raw)
    col["name"] = name
    col["label"] = str(raw.get("label") or column_label(name))
    col["type"] = str(raw.get("type") or COLUMN_DEFAULTS["type"]).strip().lower()
    for key in ("visible", "editable", "required"):
        col[key] = _as_bool(raw.get(key), COLUMN_DEFAULTS[key])
    if col["type"] == "relation":
        rel = raw.get("relation")
        col["relation"] = str(rel).strip() if rel else None
    return col


def normalize_table_meta(table_id: str, raw: dict | None) -> dict:
    """Fill defaults on a raw metadata record. Unknown keys are preserved."""
    raw = dict(raw or {})
    columns = []
    seen = set()
    for c in raw.get("columns") or []:
        col = normalize_column(c)
        if col is None or col["name"] in seen:
            continue
        seen.add(col["name"])
        columns.append(col)
    relations = []
    for r in raw.get("relations") or []:
        if not isinstance(r, dict):
            continue
        tbl = str(r.get("table") or "").strip()
        fk = str(r.get("foreignKey") or r.get("foreign_key") or "").strip()
        if tbl and fk:
            relations.append({"table": tbl, "foreignKey": fk})
    meta = dict(raw)
    meta["id"] = table_id
    meta["title"] = str(raw.get("title") or table_title(table_id))
    meta["primaryKey"] = str(raw.get("primaryKey") or raw.get("primary_key") or "id")
    meta["titleField"] = str(raw.get("titleField") or raw.get("title_field") or meta["primaryKey"])
    sub = raw.get("subtitleField") or raw.get("subtitle_field")
    meta["subtitleField"] = str(sub) if sub else None
    meta["columns"] = columns
    meta["relations"] = relations
    return meta


def generic_table_meta(table_id: str) -> dict:
    return normalize_table_meta(table_id, {
        "primaryKey": "id",
        "titleField": "name",
        "subtitleField": "description",
        "columns": [
            {"name": "id", "label": "ID", "editable": False},
            {"name": "name", "label": "Name", "required": True},
            {"name": "description", "label": "Description", "type": "text"},
            {"name": "created_at", "label": "Created At", "type": "date", "editable": False},
            {"name": "updated_at", "label": "Updated At", "type": "date", "editable": False},
        ],
        "relations": [],
    })


# -------------------------------
# Column selection helpers
# -------------------------------

def get_column(meta: dict, name: str) -> Optional[dict]:
    for col in meta.get("columns") or []:
        if col.get("name") == name:
            return col
    return None


def visible_columns(meta: dict, limit: int | None = None) -> List[dict]:
    cols = [c for c in meta.get("columns") or [] if c.get("visible", True)]
    if limit is not None and limit > 0:
        cols = cols[:limit]
    return cols


def form_columns(meta: dict) -> List[dict]:
    """Columns a user can type into: editable, not the primary key, not timestamps."""
    pk = meta.get("primaryKey")
    return [
        c for c in meta.get("columns") or []
        if c.get("editable", True) and c.get("name") != pk and c.get("name") not in TIMESTAMP_COLUMNS
    ]


def relation_columns(meta: dict) -> List[dict]:
    return [c for c in meta.get("columns") or [] if c.get("type") == "relation" and c.get("relation")]


def primary_key_value(meta: dict, table_id: str, row: dict):
    """Best-effort primary key value for a row.

    Tries the configured key, then '<table>_id', 'ID', 'key', 'uuid', and
    finally the first column of the row.
    """
    if not isinstance(row, dict) or not row:
        return None
    for key in (meta.get("primaryKey"), f"{table_id}_id", "ID", "key", "uuid"):
        if key and row.get(key) is not None:
            return row[key]
    first = next(iter(row))
    return row[first]


def record_title(meta: dict, row: dict) -> str:
    if not isinstance(row, dict):
        return ""
    pk = meta.get("primaryKey")
    title = row.get(meta.get("titleField")) if meta.get("titleField") else None
    if title is None or title == "":
        title = row.get(pk)
    return "" if title is None else str(title)


def column_display(col: dict, row: dict) -> str:
    """Display text for one cell; relation cells prefer the resolved '<name>_text'."""
    name = col.get("name")
    value = row.get(name) if isinstance(row, dict) else None
    if col.get("type") == "relation":
        text = row.get(f"{name}_text") if isinstance(row, dict) else None
        if text not in (None, ""):
            return str(text)
        return "" if value is None else str(value)
    return get_field_type(col.get("type")).format(value)


# -------------------------------
# Catalog
# -------------------------------

class Catalog:
    """Normalized metadata for every table the UI knows about.

    Configured tables come from the workspace dictionary. Anything else is
    detected from sample rows when a backend is available, else it gets the
    generic structure. Results are memoized for the life of the catalog.
    """

    def __init__(self, tables: Dict[str, dict] | None = None, *, backend=None, navigation=None):
        self._configured = {tid: normalize_table_meta(tid, raw) for tid, raw in (tables or {}).items()}
        self._backend = backend
        self._memo: Dict[str, dict] = {}
        self._lock = threading.Lock()
        self.navigation = list(navigation or [])

    def table_ids(self) -> List[str]:
        return list(self._configured.keys())

    def is_configured(self, table_id: str) -> bool:
        return table_id in self._configured

    def raw_tables(self) -> Dict[str, dict]:
        return copy.deepcopy(self._configured)

    def get(self, table_id: str) -> dict:
        """Return a copy of the metadata for table_id (callers may mutate it)."""
        if not table_id:
            raise ValueError("table id is required")
        if table_id in self._configured:
            return copy.deepcopy(self._configured[table_id])
        with self._lock:
            cached = self._memo.get(table_id)
        if cached is not None:
            return copy.deepcopy(cached)
        meta = self._fallback(table_id)
        with self._lock:
            self._memo[table_id] = meta
        return copy.deepcopy(meta)

    def _fallback(self, table_id: str) -> dict:
        if self._backend is not None:
            # Imported here; detect pulls in metadata helpers itself
            from .detect import detect_schema
            try:
                return detect_schema(self._backend, table_id, known_tables=self.table_ids())
            except Exception as e:
                log.warning("Schema detection failed for %s: %s", table_id, e)
        return generic_table_meta(table_id)

    def forget(self, table_id: str | None = None) -> None:
        with self._lock:
            if table_id is None:
                self._memo.clear()
            else:
                self._memo.pop(table_id, None)


# -------------------------------
# Sample dictionary (used by 'init --sample')
# -------------------------------

def _ts_columns() -> List[dict]:
    return [
        {"name": "created_at", "label": "Created At", "type": "date", "editable": False},
        {"name": "updated_at", "label": "Updated At", "type": "date", "editable": False},
    ]


SAMPLE_TABLES: Dict[str, dict] = {
    "suppliers": {
        "primaryKey": "supplier_id",
        "titleField": "company_name",
        "subtitleField": "contact_name",
        "columns": [
            {"name": "supplier_id", "label": "ID", "editable": False},
            {"name": "company_name", "label": "Company", "required": True},
            {"name": "contact_name", "label": "Contact Name"},
            {"name": "email", "label": "Contact Email", "type": "email"},
            {"name": "phone", "label": "Phone", "type": "phone"},
            {"name": "address", "label": "Address", "type": "text"},
            {"name": "city", "label": "City"},
            {"name": "country", "label": "Country"},
        ] + _ts_columns(),
        "relations": [{"table": "products", "foreignKey": "supplier_id"}],
    },
    "products": {
        "primaryKey": "product_id",
        "titleField": "product_name",
        "subtitleField": "description",
        "columns": [
            {"name": "product_id", "label": "ID", "editable": False},
            {"name": "product_name", "label": "Name", "required": True},
            {"name": "description", "label": "Description", "type": "text"},
            {"name": "unit_price", "label": "Price", "type": "number", "required": True},
            {"name": "category", "label": "Category"},
            {"name": "supplier_id", "label": "Supplier", "type": "relation", "relation": "suppliers", "required": True},
        ] + _ts_columns(),
        "relations": [{"table": "order_items", "foreignKey": "product_id"}],
    },
    "customers": {
        "primaryKey": "customer_id",
        "titleField": "name",
        "subtitleField": "email",
        "columns": [
            {"name": "customer_id", "label": "ID", "editable": False},
            {"name": "name", "label": "Name", "required": True},
            {"name": "email", "label": "Email", "type": "email", "required": True},
            {"name": "phone", "label": "Phone", "type": "phone"},
            {"name": "address", "label": "Address", "type": "text"},
            {"name": "city", "label": "City"},
            {"name": "country", "label": "Country"},
        ] + _ts_columns(),
        "relations": [{"table": "orders", "foreignKey": "customer_id"}],
    },
    "orders": {
        "primaryKey": "order_id",
        "titleField": "order_id",
        "subtitleField": "order_date",
        "columns": [
            {"name": "order_id", "label": "ID", "editable": False},
            {"name": "customer_id", "label": "Customer", "type": "relation", "relation": "customers", "required": True},
            {"name": "order_date", "label": "Order Date", "type": "date", "required": True},
            {"name": "total_amount", "label": "Total Amount", "type": "number", "required": True},
        ] + _ts_columns(),
        "relations": [{"table": "order_items", "foreignKey": "order_id"}],
    },
    "order_items": {
        "primaryKey": "order_item_id",
        "titleField": "order_item_id",
        "subtitleField": "quantity",
        "columns": [
            {"name": "order_item_id", "label": "ID", "editable": False},
            {"name": "order_id", "label": "Order", "type": "relation", "relation": "orders", "required": True},
            {"name": "product_id", "label": "Product", "type": "relation", "relation": "products", "required": True},
            {"name": "quantity", "label": "Quantity", "type": "integer", "required": True},
            {"name": "unit_price", "label": "Unit Price", "type": "number", "required": True},
        ] + _ts_columns(),
        "relations": [],
    },
}

SAMPLE_NAVIGATION = [
    {"id": "suppliers", "title": "Suppliers", "icon": "truck"},
    {"id": "products", "title": "Products", "icon": "box"},
    {"id": "customers", "title": "Customers", "icon": "person"},
    {"id": "orders", "title": "Orders", "icon": "receipt"},
    {"id": "order_items", "title": "Order Items", "icon": "list"},
]
