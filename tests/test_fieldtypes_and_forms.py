from __future__ import annotations
from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from datadesk.core.v1.fieldtypes import FieldType, get_field_type, known_type, register_field_type
from datadesk.core.v1.forms import (
    build_display,
    build_form,
    build_table,
    check_parent,
    data_for_save,
    unknown_fields,
    validate_form,
)
from datadesk.core.v1.metadata import SAMPLE_TABLES, normalize_table_meta
from datadesk.core.v1.navigation import ParentLink


def _meta(table_id: str) -> dict:
    return normalize_table_meta(table_id, SAMPLE_TABLES[table_id])


def _typed_meta() -> dict:
    return normalize_table_meta("things", {
        "columns": [
            {"name": "id", "editable": False},
            {"name": "n", "type": "number"},
            {"name": "i", "type": "integer"},
            {"name": "d", "type": "date"},
            {"name": "t", "type": "time"},
            {"name": "e", "type": "email"},
            {"name": "u", "type": "url"},
            {"name": "c", "type": "color"},
            {"name": "b", "type": "boolean", "required": True},
            {"name": "tags", "type": "tags"},
        ],
    })


def test_required_message():
    errors = validate_form(_meta("customers"), {"name": "  ", "email": ""})
    assert errors["name"] == "This field is required"
    assert errors["email"] == "This field is required"
    assert "phone" not in errors


def test_type_messages():
    errors = validate_form(_typed_meta(), {
        "n": "abc",
        "i": "1.5",
        "d": "2024-13-01",
        "t": "25h",
        "e": "not-an-email",
        "u": "ftp://example.com",
        "c": "red",
    })
    assert errors == {
        "n": "Please enter a valid number",
        "i": "Please enter a valid whole number",
        "d": "Please enter a valid date",
        "t": "Please enter a valid time",
        "e": "Please enter a valid email address",
        "u": "Please enter a valid URL (starting with http:// or https://)",
        "c": "Please enter a valid color (#RGB or #RRGGBB)",
    }


def test_valid_values_pass_and_required_boolean_is_not_flagged():
    errors = validate_form(_typed_meta(), {
        "n": "2.5",
        "i": "-3",
        "d": "2024-02-29",
        "t": "09:30",
        "e": "a@b.co",
        "u": "https://example.com/x",
        "c": "#ABC",
    })
    assert errors == {}


def test_partial_validation_only_checks_supplied_fields():
    meta = _meta("customers")
    assert validate_form(meta, {"phone": "123"}, partial=True) == {}
    assert validate_form(meta, {"email": "x"}, partial=True) == {"email": "Please enter a valid email address"}


def test_parent_foreign_key_is_skipped_in_validation():
    meta = _meta("products")
    parent = ParentLink(table="suppliers", id="1", foreign_key="supplier_id")
    errors = validate_form(meta, {"product_name": "Nut", "unit_price": "1"}, parent=parent)
    assert errors == {}
    errors = validate_form(meta, {"product_name": "Nut", "unit_price": "1"})
    assert errors == {"supplier_id": "This field is required"}


def test_data_for_save_create_forces_parent_and_drops_non_editable():
    meta = _meta("products")
    parent = ParentLink(table="suppliers", id="7", foreign_key="supplier_id")
    data = data_for_save(meta, {
        "product_id": "99",
        "product_name": " Nut ",
        "description": "",
        "unit_price": "2.50",
        "supplier_id": "3",
        "created_at": "2020-01-01",
    }, "create", parent=parent)
    assert "product_id" not in data
    assert "created_at" not in data and "updated_at" not in data
    assert data["product_name"] == "Nut"
    assert data["description"] is None
    assert data["unit_price"] == 2.5
    assert data["supplier_id"] == 7


def test_data_for_save_edit_stamps_updated_at():
    meta = _meta("customers")
    data = data_for_save(meta, {"name": "Globex", "email": "a@b.co"}, "edit")
    assert data["updated_at"].endswith("+00:00")
    partial = data_for_save(meta, {"city": "Austin"}, "edit", partial=True)
    assert set(partial) == {"city", "updated_at"}

    no_ts = normalize_table_meta("plain", {"columns": ["id", "name"]})
    assert "updated_at" not in data_for_save(no_ts, {"name": "x"}, "edit")


def test_data_for_save_coerces_booleans_tags_and_integers():
    data = data_for_save(_typed_meta(), {"i": "42", "tags": "a, b,,c", "n": "3"}, "create")
    assert data["i"] == 42
    assert data["tags"] == ["a", "b", "c"]
    assert data["n"] == 3
    # An unchecked checkbox is simply absent from the form
    assert data["b"] is False


def test_build_form_locks_parent_foreign_key():
    meta = _meta("order_items")
    parent = ParentLink(table="orders", id="5", foreign_key="order_id")
    form = build_form(meta, {}, "create", parent=parent,
                      options={"product_id": [{"key": "1", "text": "Screw"}]})
    fields = {f["name"]: f for f in form["fields"]}
    assert "order_item_id" not in fields
    assert fields["order_id"]["locked"] is True
    assert fields["order_id"]["value"] == "5"
    assert fields["order_id"]["locked_text"] == "Connected to parent orders (ID: 5)"
    assert fields["product_id"]["locked"] is False
    assert fields["product_id"]["widget"] == "select"
    assert fields["product_id"]["options"] == [{"key": "1", "text": "Screw"}]
    assert fields["quantity"]["input_type"] == "number"


def test_build_form_edit_carries_values_and_errors():
    meta = _meta("orders")
    record = {"order_id": 3, "customer_id": 1, "order_date": "2024-03-01T00:00:00", "total_amount": 7.5}
    form = build_form(meta, record, "edit", errors={"total_amount": "Please enter a valid number"})
    fields = {f["name"]: f for f in form["fields"]}
    assert form["record_id"] == 3
    assert form["title"] == "Edit Orders"
    assert fields["order_date"]["value"] == "2024-03-01"
    assert fields["total_amount"]["error"] == "Please enter a valid number"
    with pytest.raises(ValueError):
        build_form(meta, record, "bogus")


def test_build_display_uses_resolved_relation_text():
    meta = _meta("products")
    rec = {"product_id": 1, "product_name": "Screw", "unit_price": 0.05, "supplier_id": 2,
           "supplier_id_text": "Nordic Parts", "description": "M3"}
    disp = build_display(meta, rec)
    by_name = {f["name"]: f for f in disp["fields"]}
    assert disp["title"] == "Screw"
    assert disp["subtitle"] == "M3"
    assert by_name["supplier_id"]["text"] == "Nordic Parts"
    assert by_name["supplier_id"]["relation"] == "suppliers"
    assert by_name["unit_price"]["text"] == "0.05"
    # Unresolved relations fall back to the raw id
    rec.pop("supplier_id_text")
    assert {f["name"]: f for f in build_display(meta, rec)["fields"]}["supplier_id"]["text"] == "2"


def test_build_table_limits_columns_and_keys_rows():
    meta = _meta("customers")
    rows = [{"customer_id": 1, "name": "Globex", "email": "g@x.io"}]
    table = build_table(meta, rows, limit=3)
    assert [c["name"] for c in table["columns"]] == ["customer_id", "name", "email"]
    assert table["rows"][0]["key"] == 1
    assert table["rows"][0]["cells"] == ["1", "Globex", "g@x.io"]


def test_display_formatting():
    assert get_field_type("boolean").format(True) == "Yes"
    assert get_field_type("boolean").format("false") == "No"
    assert get_field_type("number").format("2.5") == "2.50"
    assert get_field_type("date").format("2024-03-01T10:00:00") == "2024-03-01"
    assert get_field_type("tags").format(["a", "b"]) == "a, b"
    assert get_field_type("string").format(None) == ""


def test_unknown_type_falls_back_to_string_and_registry_is_extensible():
    assert get_field_type("geometry").name == "string"
    assert not known_type("geometry")
    register_field_type(FieldType("geometry", widget="textarea"))
    try:
        assert known_type("geometry")
        assert get_field_type("geometry").widget == "textarea"
    finally:
        from datadesk.core.v1.fieldtypes import FIELD_TYPES
        FIELD_TYPES.pop("geometry", None)


def test_parent_link_round_trips_through_query_args():
    link = ParentLink(table="orders", id="5", foreign_key="order_id")
    assert ParentLink.from_args(link.to_args()) == link
    assert ParentLink.from_args({"parent_table": "orders", "parent_id": "5"}) is None


@pytest.mark.parametrize("raw,expected", [
    ("1", 1),
    (" 42 ", 42),
    (7, 7),
    ("007", "007"),
    ("a1b2", "a1b2"),
    ("", None),
    (None, None),
])
def test_relation_ids_keep_integer_keys_integer(raw, expected):
    assert get_field_type("relation").to_value(raw) == expected


def test_parent_link_must_name_a_writable_column():
    meta = _meta("customers")
    with pytest.raises(ValueError):
        check_parent(meta, ParentLink(table="x", id="yes", foreign_key="is_admin"))
    with pytest.raises(ValueError):
        check_parent(meta, ParentLink(table="x", id="1", foreign_key="customer_id"))
    with pytest.raises(ValueError):
        data_for_save(meta, {"name": "Hooli"}, "create",
                      parent=ParentLink(table="x", id="yes", foreign_key="is_admin"))
    check_parent(meta, None)
    check_parent(_meta("orders"), ParentLink(table="customers", id="1", foreign_key="customer_id"))


def test_unknown_fields_lists_keys_no_form_column_accepts():
    meta = _meta("customers")
    assert unknown_fields(meta, {"customer_id": "99", "bogus": "x", "city": "Oslo", "created_at": "x"}) == [
        "bogus", "created_at", "customer_id",
    ]
    assert unknown_fields(meta, {"name": "a", "email": "b"}) == []
