import pathlib
import yaml
import os

DD_TOOL_VERSION = "1.0"
CONFIG_FILENAME = ".datadesk.yml"
WORKSPACE_CONFIG_FILENAME = "datadesk.yml"

# -------------------------------
# Backend configuration
# -------------------------------
# datadesk.yml (inside a workspace) selects the table backend:
# backend:
#   type: local | postgrest
#   url: https://<project>.supabase.co     # postgrest only
#   key: <anon key>                        # postgrest only
#   schema: public
#   timeout: 10
# DD_BACKEND_URL / DD_BACKEND_KEY override url/key so secrets stay out of YAML.
BACKEND_DEFAULTS = {
    "type": "local",
    "url": None,
    "key": None,
    "schema": "public",
    "timeout": 10,
}


def _resolve_config_path() -> pathlib.Path:
    """Resolve the path to .datadesk.yml with environment overrides.

    Precedence:
      1) DD_CONFIG_FILE = absolute or relative path to the config file
      2) DD_CONFIG_DIR = directory containing the config file
      3) DD_DATA_PATH  = parent data path (config at $DD_DATA_PATH/.datadesk.yml)
      4) Fallback to CWD: ./.datadesk.yml
    """
    env_file = os.environ.get("DD_CONFIG_FILE")
    if env_file:
        return pathlib.Path(env_file).expanduser().resolve()
    env_dir = os.environ.get("DD_CONFIG_DIR") or os.environ.get("DD_DATA_PATH")
    if env_dir:
        return pathlib.Path(env_dir).expanduser().resolve() / CONFIG_FILENAME
    return pathlib.Path(CONFIG_FILENAME).expanduser().resolve()


def ensure_config() -> pathlib.Path:
    """Ensure local .datadesk.yml exists; create with defaults if missing.

    Returns the path to the config file.
    """
    config_path = _resolve_config_path()
    if not config_path.exists():
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            pass
        config = {
            "default_workspace": None,
        }
        with open(config_path, "w") as f:
            yaml.safe_dump(config, f)
    return config_path


def load_config() -> dict:
    config_path = ensure_config()
    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def save_config(config: dict) -> None:
    config_path = _resolve_config_path()
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        pass
    with open(config_path, "w") as f:
        yaml.safe_dump(config, f)


def get_workspace_path() -> pathlib.Path:
    config = load_config()
    workspace = config.get("default_workspace")
    if not workspace:
        raise RuntimeError(
            f"[datadesk] Error: default_workspace not set in {CONFIG_FILENAME}. Run 'init' or set it manually."
        )
    return pathlib.Path(workspace).expanduser().resolve()


def set_default_workspace(workspace_path: pathlib.Path) -> None:
    cfg = load_config()
    cfg["default_workspace"] = str(workspace_path)
    save_config(cfg)


def load_workspace_config(workspace_path: pathlib.Path | None = None) -> dict:
    """Read workspace-level configuration from datadesk.yml."""
    if workspace_path is None:
        workspace_path = get_workspace_path()
    config_file = workspace_path / WORKSPACE_CONFIG_FILENAME
    if not config_file.exists():
        return {}
    with open(config_file) as f:
        return yaml.safe_load(f) or {}


def save_workspace_config(workspace_path: pathlib.Path, data: dict) -> pathlib.Path:
    config_file = workspace_path / WORKSPACE_CONFIG_FILENAME
    with open(config_file, "w") as f:
        f.write(
            "# This file is a generated scaffold by datadesk.\n"
            "# Edit the tables: block to describe your backend tables.\n"
        )
        yaml.safe_dump(data, f, sort_keys=False)
    return config_file


def get_backend_config(workspace_path: pathlib.Path | None = None) -> dict:
    """Return the backend block merged over defaults, with env overrides applied."""
    ws_cfg = load_workspace_config(workspace_path)
    raw = ws_cfg.get("backend")
    merged = dict(BACKEND_DEFAULTS)
    if isinstance(raw, dict):
        merged.update({k: v for k, v in raw.items() if v is not None})
    env_url = os.environ.get("DD_BACKEND_URL")
    if env_url:
        merged["url"] = env_url
        # An URL in the environment implies a remote backend unless stated otherwise
        if not (isinstance(raw, dict) and raw.get("type")):
            merged["type"] = "postgrest"
    env_key = os.environ.get("DD_BACKEND_KEY")
    if env_key:
        merged["key"] = env_key
    merged["type"] = str(merged.get("type") or "local").strip().lower()
    return merged


def get_table_specs(workspace_path: pathlib.Path | None = None) -> dict:
    """Return the raw metadata dictionary (tables: block) from datadesk.yml.

    Shape: { table_id: { primaryKey, titleField, subtitleField, columns: [...], relations: [...] } }
    Missing or malformed sections are returned as an empty dict.
    """
    ws_cfg = load_workspace_config(workspace_path)
    tables = ws_cfg.get("tables")
    if not isinstance(tables, dict):
        return {}
    return {str(k): v for k, v in tables.items() if isinstance(v, dict)}


def get_navigation(workspace_path: pathlib.Path | None = None) -> list[dict]:
    """Return the ordered navigation entries for the home page.

    Expected structure in the workspace config:

      navigation:
        - { id: suppliers, title: Suppliers, icon: truck }

    Falls back to one entry per configured table.
    """
    ws_cfg = load_workspace_config(workspace_path)
    nav = ws_cfg.get("navigation")
    out = []
    if isinstance(nav, list):
        for entry in nav:
            if isinstance(entry, str) and entry.strip():
                entry = {"id": entry.strip()}
            if not isinstance(entry, dict) or not entry.get("id"):
                continue
            tid = str(entry["id"]).strip()
            out.append({
                "id": tid,
                "title": str(entry.get("title") or table_title(tid)),
                "icon": entry.get("icon"),
            })
    if out:
        return out
    return [{"id": tid, "title": table_title(tid), "icon": None} for tid in get_table_specs(workspace_path)]


def table_title(table_id: str) -> str:
    """Human title for a table id: 'order_items' -> 'Order items'."""
    s = str(table_id or "").replace("_", " ").strip()
    return s[:1].upper() + s[1:]


def get_web_secret() -> str:
    return os.environ.get("DD_WEB_SECRET", "dev-only-insecure-secret")
