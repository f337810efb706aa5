from __future__ import annotations
from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from datadesk.core.v1.backends import BackendError, LocalBackend
from datadesk.core.v1.config import table_title
from datadesk.core.v1.detect import detect_from_rows, detect_schema, generate_label, type_from_value
from datadesk.core.v1.metadata import (
    SAMPLE_TABLES,
    Catalog,
    form_columns,
    generic_table_meta,
    normalize_table_meta,
    primary_key_value,
    visible_columns,
)


def test_normalize_fills_defaults_and_keeps_unknown_keys():
    meta = normalize_table_meta("order_items", {
        "columns": ["id", {"name": "unit_price", "type": "NUMBER", "visible": "false"}, {"name": "id"}],
        "relations": [{"table": "x", "foreignKey": "order_item_id"}, {"table": "broken"}],
        "icon": "list",
    })
    assert meta["title"] == "Order items"
    assert meta["primaryKey"] == "id"
    assert meta["titleField"] == "id"
    assert meta["subtitleField"] is None
    assert meta["icon"] == "list"
    assert [c["name"] for c in meta["columns"]] == ["id", "unit_price"]
    price = meta["columns"][1]
    assert price["label"] == "Unit Price"
    assert price["type"] == "number"
    assert price["visible"] is False
    assert price["editable"] is True and price["required"] is False
    assert meta["relations"] == [{"table": "x", "foreignKey": "order_item_id"}]


def test_table_title():
    assert table_title("order_items") == "Order items"
    assert table_title("suppliers") == "Suppliers"


def test_form_and_visible_columns():
    meta = normalize_table_meta("products", SAMPLE_TABLES["products"])
    names = [c["name"] for c in form_columns(meta)]
    assert names == ["product_name", "description", "unit_price", "category", "supplier_id"]
    assert len(visible_columns(meta, 3)) == 3
    assert len(visible_columns(meta)) == len(meta["columns"])


def test_primary_key_value_fallbacks():
    meta = normalize_table_meta("widgets", {"primaryKey": "widget_no"})
    assert primary_key_value(meta, "widgets", {"widget_no": 4, "id": 1}) == 4
    assert primary_key_value(meta, "widgets", {"widgets_id": 9}) == 9
    assert primary_key_value(meta, "widgets", {"uuid": "u-1"}) == "u-1"
    assert primary_key_value(meta, "widgets", {"name": "first"}) == "first"
    assert primary_key_value(meta, "widgets", {}) is None


def test_generate_label():
    assert generate_label("fk_customer_id") == "Customer"
    assert generate_label("total_amount") == "Total Amount"
    assert generate_label("orderDate") == "Order Date"


@pytest.mark.parametrize("value,expected", [
    (True, "boolean"),
    (3, "integer"),
    (0.5, "number"),
    ("2024-03-01", "date"),
    ("03/01/2024", "date"),
    ("09:30", "time"),
    ("2024-03-01T10:00:00", "datetime"),
    ("a@b.co", "email"),
    ("https://example.com", "url"),
    ("#ff0000", "color"),
    ("x" * 150, "text"),
    (["a"], "tags"),
    ("plain", "string"),
])
def test_type_from_value(value, expected):
    assert type_from_value(value) == expected


def test_detect_from_rows_uses_name_and_value_heuristics():
    rows = [
        {"order_id": 1, "customer_id": 2, "order_date": "2024-03-01", "total_amount": 7.5,
         "notes": "rush", "is_paid": True, "created_at": "2024-03-01T10:00:00+00:00",
         "contact_email": "a@b.co", "country": "US", "hex": "#ff0000", "score": 3},
        {"order_id": 2, "customer_id": None, "order_date": "2024-03-02", "total_amount": 1,
         "notes": None, "is_paid": False, "created_at": "2024-03-02T10:00:00+00:00",
         "contact_email": None, "country": "SE", "hex": "#00ff00", "score": 4},
    ]
    meta = detect_from_rows("orders", rows, known_tables=["customers"])
    cols = {c["name"]: c for c in meta["columns"]}
    assert meta["primaryKey"] == "order_id"
    assert meta["titleField"] == "order_id"
    assert meta["detected"] is True
    assert cols["order_id"]["editable"] is False
    assert cols["customer_id"]["type"] == "relation"
    assert cols["customer_id"]["relation"] == "customers"
    assert cols["customer_id"]["label"] == "Customer"
    assert cols["order_date"]["type"] == "date"
    assert cols["total_amount"]["type"] == "number"
    assert cols["notes"]["type"] == "text"
    assert cols["is_paid"]["type"] == "boolean"
    assert cols["created_at"]["type"] == "date" and cols["created_at"]["editable"] is False
    assert cols["contact_email"]["type"] == "email"
    assert cols["country"]["type"] == "string"
    assert cols["hex"]["type"] == "color"
    assert cols["score"]["type"] == "integer"


def test_detect_title_and_subtitle_patterns():
    meta = detect_from_rows("tickets", [{"id": "t1", "title": "Broken", "status": "open"}])
    assert meta["primaryKey"] == "id"
    assert meta["titleField"] == "title"
    assert meta["subtitleField"] == "status"
    assert {c["name"]: c for c in meta["columns"]}["id"]["label"] == "ID"


def test_detect_empty_table_gives_generic_structure(tmp_path: Path):
    meta = detect_schema(LocalBackend(tmp_path), "empty")
    assert meta == generic_table_meta("empty")


class _FailingBackend:
    def select(self, *a, **kw):
        raise BackendError("down", status=503)


class _CountingBackend(LocalBackend):
    selects = 0

    def select(self, *a, **kw):
        type(self).selects += 1
        return super().select(*a, **kw)


def test_catalog_returns_copies_of_configured_tables():
    cat = Catalog({"suppliers": SAMPLE_TABLES["suppliers"]})
    m = cat.get("suppliers")
    m["columns"].clear()
    assert cat.get("suppliers")["columns"]
    assert cat.table_ids() == ["suppliers"]
    assert cat.is_configured("suppliers") and not cat.is_configured("parts")


def test_catalog_detects_unknown_tables_once(tmp_path: Path):
    backend = _CountingBackend(tmp_path)
    backend.insert("parts", {"name": "Bolt", "price": 1.5})
    _CountingBackend.selects = 0
    cat = Catalog({}, backend=backend)
    meta = cat.get("parts")
    assert meta["titleField"] == "name"
    assert {c["name"]: c for c in meta["columns"]}["price"]["type"] == "number"
    cat.get("parts")
    assert _CountingBackend.selects == 1
    cat.forget("parts")
    cat.get("parts")
    assert _CountingBackend.selects == 2


def test_catalog_falls_back_to_generic_structure():
    assert Catalog({}).get("anything") == generic_table_meta("anything")
    assert Catalog({}, backend=_FailingBackend()).get("anything") == generic_table_meta("anything")
    with pytest.raises(ValueError):
        Catalog({}).get("")
