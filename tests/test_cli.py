from __future__ import annotations
from pathlib import Path
import json
import sys

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from datadesk.cli.desk_cli import main


@pytest.fixture()
def ws(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.delenv("DD_WORKSPACE", raising=False)
    monkeypatch.delenv("DD_FORMAT", raising=False)
    monkeypatch.delenv("DD_BACKEND_URL", raising=False)
    monkeypatch.setenv("DD_CONFIG_FILE", str(tmp_path / "home" / ".datadesk.yml"))
    main(["init", str(tmp_path / "ws"), "--sample"])
    return (tmp_path / "ws").resolve()


def _run_json(capsys, *argv):
    capsys.readouterr()
    main(["-F", "json", *argv])
    return json.loads(capsys.readouterr().out)


def _run_fail(capsys, *argv) -> str:
    capsys.readouterr()
    with pytest.raises(SystemExit) as ei:
        main(list(argv))
    assert ei.value.code != 0
    return capsys.readouterr().out


def test_init_sets_default_workspace(ws: Path, tmp_path: Path, capsys):
    cfg = yaml.safe_load((tmp_path / "home" / ".datadesk.yml").read_text())
    assert cfg["default_workspace"] == str(ws)
    out = _run_fail(capsys, "init", str(ws))
    assert "already exists" in out


def test_tables_ls_with_counts(ws: Path, capsys):
    rows = _run_json(capsys, "tables", "ls", "--counts")
    assert [r["id"] for r in rows][:2] == ["suppliers", "products"]
    assert {r["id"]: r["count"] for r in rows}["order_items"] == 2

    capsys.readouterr()
    main(["-W", str(ws), "tables", "list"])
    out = capsys.readouterr().out
    assert "Id" in out and "order_items" in out


def test_records_ls_filters_and_search(ws: Path, capsys):
    rows = _run_json(capsys, "records", "ls", "products", "category=eq.Fasteners")
    assert [r["product_name"] for r in rows] == ["M3 Screw"]
    assert rows[0]["supplier_id_text"] == "Acme Components"

    rows = _run_json(capsys, "records", "ls", "customers", "--search", "austin")
    assert [r["name"] for r in rows] == ["Initech"]

    rows = _run_json(capsys, "records", "ls", "products", "--order", "unit_price.desc")
    assert rows[0]["product_name"] == "Aluminium Bracket"

    out = _run_fail(capsys, "records", "ls", "products", "colour=eq.red")
    assert "Invalid filter" in out


def test_records_ls_human_output(ws: Path, capsys):
    capsys.readouterr()
    main(["records", "ls", "products"])
    out = capsys.readouterr().out
    assert "Name" in out and "Aluminium Bracket" in out


def test_records_add_set_show_rm(ws: Path, capsys):
    row = _run_json(capsys, "records", "add", "customers", "name=Hooli", "email=hi@hooli.example")
    assert row["customer_id"] == 3

    row = _run_json(capsys, "records", "set", "customers", "3", "city=Palo Alto")
    assert row["city"] == "Palo Alto"

    rec = _run_json(capsys, "records", "show", "customers", "3")
    assert rec["name"] == "Hooli" and rec["city"] == "Palo Alto"

    res = _run_json(capsys, "records", "rm", "customers", "3")
    assert res["deleted"] == 1
    out = _run_fail(capsys, "records", "show", "customers", "3")
    assert "not found" in out


def test_records_add_reports_validation_errors(ws: Path, capsys):
    out = _run_fail(capsys, "records", "add", "customers", "name=", "email=nope")
    assert "Please correct the errors in the form" in out
    assert "  - email: Please enter a valid email address" in out
    assert "  - name: This field is required" in out

    out = _run_fail(capsys, "records", "add", "customers", "name")
    assert "invalid key=value pair" in out


def test_records_add_with_parent(ws: Path, capsys):
    row = _run_json(capsys, "records", "add", "order_items", "product_id=2", "quantity=4",
                    "unit_price=0.01", "--parent", "orders:1:order_id")
    assert str(row["order_id"]) == "1"
    _run_fail(capsys, "records", "add", "order_items", "--parent", "orders:1")


def test_records_rm_refuses_referenced_parent(ws: Path, capsys):
    out = _run_fail(capsys, "records", "rm", "suppliers", "1")
    assert "still referenced by products" in out


def test_schema_show_and_detect(ws: Path, capsys):
    meta = _run_json(capsys, "schema", "show", "products")
    assert meta["primaryKey"] == "product_id"

    capsys.readouterr()
    main(["schema", "detect", "products"])
    detected = yaml.safe_load(capsys.readouterr().out)
    cols = {c["name"]: c for c in detected["products"]["columns"]}
    assert detected["products"]["primaryKey"] == "product_id"
    assert cols["supplier_id"]["type"] == "relation"
    assert cols["supplier_id"]["relation"] == "suppliers"


def test_validate_exit_codes(ws: Path, capsys):
    capsys.readouterr()
    main(["validate"])
    assert "Errors: 0, Warnings: 0" in capsys.readouterr().out

    (ws / "datadesk.yml").write_text(yaml.safe_dump({
        "tables": {"parts": {"primaryKey": "part_no", "columns": ["id"]}},
    }))
    out = _run_fail(capsys, "validate")
    assert "TBL_PK_MISSING" in out


def test_no_command_prints_help(ws: Path, capsys):
    capsys.readouterr()
    main([])
    assert "datadesk CLI" in capsys.readouterr().out


def test_records_set_refuses_fields_it_cannot_write(ws: Path, capsys):
    out = _run_fail(capsys, "records", "set", "customers", "1", "customer_id=99", "bogus=x")
    assert "not writable fields: bogus, customer_id" in out
    rec = _run_json(capsys, "records", "show", "customers", "1")
    assert rec["customer_id"] == 1
