from __future__ import annotations

from pathlib import Path
import copy

from .backends import LocalBackend
from .config import (
    BACKEND_DEFAULTS,
    DD_TOOL_VERSION,
    WORKSPACE_CONFIG_FILENAME,
    save_workspace_config,
    set_default_workspace,
)
from .metadata import SAMPLE_NAVIGATION, SAMPLE_TABLES

# Seed rows for 'init --sample'; foreign keys refer to the ids allocated in order
SAMPLE_ROWS = {
    "suppliers": [
        {"company_name": "Acme Components", "contact_name": "Ada Wong", "email": "ada@acme.example",
         "phone": "+1 555 0100", "city": "Springfield", "country": "US"},
        {"company_name": "Nordic Parts", "contact_name": "Lars Berg", "email": "lars@nordic.example",
         "phone": "+46 8 555 01", "city": "Stockholm", "country": "SE"},
    ],
    "products": [
        {"product_name": "M3 Screw", "description": "Stainless M3x8", "unit_price": 0.05,
         "category": "Fasteners", "supplier_id": 1},
        {"product_name": "10k Resistor", "description": "0603, 1%", "unit_price": 0.01,
         "category": "Passives", "supplier_id": 1},
        {"product_name": "Aluminium Bracket", "unit_price": 2.5, "category": "Mechanical",
         "supplier_id": 2},
    ],
    "customers": [
        {"name": "Globex", "email": "orders@globex.example", "city": "Cypress Creek", "country": "US"},
        {"name": "Initech", "email": "buying@initech.example", "city": "Austin", "country": "US"},
    ],
    "orders": [
        {"customer_id": 1, "order_date": "2024-03-01", "total_amount": 7.5},
    ],
    "order_items": [
        {"order_id": 1, "product_id": 1, "quantity": 100, "unit_price": 0.05},
        {"order_id": 1, "product_id": 3, "quantity": 1, "unit_price": 2.5},
    ],
}


def write_workspace_config(workspace_path: Path, *, sample: bool = False, backend: dict | None = None) -> Path:
    data = {
        "datadesk_version": DD_TOOL_VERSION,
        "backend": dict(backend or {"type": BACKEND_DEFAULTS["type"]}),
        "tables": copy.deepcopy(SAMPLE_TABLES) if sample else {},
    }
    if sample:
        data["navigation"] = copy.deepcopy(SAMPLE_NAVIGATION)
    return save_workspace_config(workspace_path, data)


def seed_sample_rows(workspace_path: Path) -> int:
    """Insert SAMPLE_ROWS into the workspace's local data directory. Returns rows written."""
    store = LocalBackend(workspace_path / "data")
    n = 0
    for table, rows in SAMPLE_ROWS.items():
        pk = SAMPLE_TABLES[table]["primaryKey"]
        if store.count(table):
            continue
        for row in rows:
            store.insert(table, dict(row), primary_key=pk)
            n += 1
    return n


def init_workspace(workspace_path: Path, *, sample: bool = False, force: bool = False,
                   backend: dict | None = None, make_default: bool = True) -> Path:
    """Scaffold a workspace directory and (by default) make it the default workspace.

    Refuses to overwrite an existing datadesk.yml unless force=True.
    """
    workspace_path = Path(workspace_path).expanduser().resolve()
    config_file = workspace_path / WORKSPACE_CONFIG_FILENAME
    if config_file.exists() and not force:
        raise FileExistsError(f"{config_file} already exists (use --force to overwrite)")
    workspace_path.mkdir(parents=True, exist_ok=True)
    write_workspace_config(workspace_path, sample=sample, backend=backend)
    (workspace_path / "data").mkdir(exist_ok=True)
    kind = str((backend or {}).get("type") or BACKEND_DEFAULTS["type"]).lower()
    if sample and kind == "local":
        seed_sample_rows(workspace_path)
    if make_default:
        set_default_workspace(workspace_path)
    return workspace_path
