from __future__ import annotations
from pathlib import Path
import sys

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from datadesk.core.v1.backends import BackendError, LocalBackend, ilike_regex, make_backend


@pytest.fixture()
def store(tmp_path: Path) -> LocalBackend:
    s = LocalBackend(tmp_path / "data")
    s.insert("customers", {"name": "Globex Corp", "city": "Cypress Creek"}, primary_key="customer_id")
    s.insert("customers", {"name": "Initech", "city": "Austin"}, primary_key="customer_id")
    s.insert("customers", {"name": "Umbrella corp", "city": "Raccoon City"}, primary_key="customer_id")
    return s


def test_insert_allocates_incrementing_ids_and_writes_yaml(store: LocalBackend, tmp_path: Path):
    rows = store.select("customers", order="customer_id")
    assert [r["customer_id"] for r in rows] == [1, 2, 3]
    fp = tmp_path / "data" / "customers" / "2.yml"
    assert fp.exists()
    data = yaml.safe_load(fp.read_text())
    assert list(data)[0] == "customer_id"
    assert data["name"] == "Initech"


def test_insert_stamps_timestamps_as_iso_strings(store: LocalBackend):
    row = store.select("customers", [("customer_id", "eq", 1)])[0]
    assert isinstance(row["created_at"], str)
    assert row["created_at"] == row["updated_at"]
    kept = store.insert("notes", {"id": 5, "created_at": "2020-01-01"})
    assert kept["created_at"] == "2020-01-01"


def test_insert_duplicate_key_is_rejected(store: LocalBackend):
    with pytest.raises(BackendError) as ei:
        store.insert("customers", {"customer_id": 2, "name": "Dup"}, primary_key="customer_id")
    assert ei.value.status == 409


def test_eq_matches_string_form_of_ids(store: LocalBackend):
    assert store.select("customers", [("customer_id", "eq", "2")])[0]["name"] == "Initech"
    assert store.select("customers", [("customer_id", "in", ["1", 3])]) != []
    assert len(store.select("customers", [("customer_id", "in", ["1", 3])])) == 2


@pytest.mark.parametrize("pattern,expected", [
    ("%corp%", {"Globex Corp", "Umbrella corp"}),
    ("*CORP", {"Globex Corp", "Umbrella corp"}),
    ("init_ch", {"Initech"}),
    ("init", set()),
])
def test_ilike_wildcards_are_case_insensitive(store: LocalBackend, pattern, expected):
    rows = store.select("customers", [("name", "ilike", pattern)])
    assert {r["name"] for r in rows} == expected


def test_ilike_escapes_regex_characters():
    assert ilike_regex("a.b%").fullmatch("a.bc")
    assert not ilike_regex("a.b%").fullmatch("axbc")


def test_order_desc_and_limit(store: LocalBackend):
    rows = store.select("customers", order="name.desc", limit=2)
    assert [r["name"] for r in rows] == ["Umbrella corp", "Initech"]


def test_update_and_delete_by_filter(store: LocalBackend):
    updated = store.update("customers", [("customer_id", "eq", "2")], {"city": "Dallas"})
    assert len(updated) == 1 and updated[0]["city"] == "Dallas"
    assert store.select("customers", [("city", "eq", "Dallas")])[0]["customer_id"] == 2
    assert store.delete("customers", [("customer_id", "eq", 2)]) == 1
    assert store.count("customers") == 2
    # Next id keeps growing past deleted rows
    row = store.insert("customers", {"name": "New"}, primary_key="customer_id")
    assert row["customer_id"] == 4


def test_unfiltered_writes_are_refused(store: LocalBackend):
    with pytest.raises(ValueError):
        store.update("customers", [], {"city": "x"})
    with pytest.raises(ValueError):
        store.delete("customers", None)


def test_invalid_table_ids_and_operators(store: LocalBackend):
    with pytest.raises(ValueError):
        store.select("../etc")
    with pytest.raises(ValueError):
        store.select("customers", [("name", "like", "x")])


def test_missing_table_reads_empty(tmp_path: Path):
    s = LocalBackend(tmp_path / "nothing")
    assert s.select("ghosts") == []
    assert s.count("ghosts") == 0


def test_yaml_dates_are_returned_as_strings(tmp_path: Path):
    d = tmp_path / "data" / "events"
    d.mkdir(parents=True)
    (d / "1.yml").write_text("id: 1\nwhen: 2024-03-01\n")
    row = LocalBackend(tmp_path / "data").select("events")[0]
    assert row["when"] == "2024-03-01"


def test_make_backend_local_defaults_to_workspace_data(tmp_path: Path):
    b = make_backend({"type": "local"}, tmp_path)
    assert isinstance(b, LocalBackend)
    assert b.root == (tmp_path / "data").resolve()
    b2 = make_backend({"type": "local", "path": "store"}, tmp_path)
    assert b2.root == (tmp_path / "store").resolve()
    with pytest.raises(ValueError):
        make_backend({"type": "mongo"}, tmp_path)
