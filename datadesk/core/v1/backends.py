from __future__ import annotations

from datetime import date, datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote
import logging
import re

import requests
import yaml

log = logging.getLogger(__name__)


# -------------------------------
# Table backends
#   A narrow CRUD surface shared by the REST client and the local YAML store:
#     select(table, filters, order, limit) -> rows
#     insert(table, row, primary_key)      -> row
#     update(table, filters, changes)      -> rows
#     delete(table, filters)               -> count
#     count(table)                         -> int
#   Filters are (column, op, value) tuples with op in FILTER_OPS.
# -------------------------------

FILTER_OPS = ("eq", "ilike", "in")

TABLE_ID_REGEX = r"^[A-Za-z_][A-Za-z0-9_]{0,62}$"
RECORD_FILE_REGEX = r"^[A-Za-z0-9_-][A-Za-z0-9_.-]{0,127}$"

Filter = Tuple[str, str, object]


class BackendError(RuntimeError):
    """A backend call failed. 'status' carries the HTTP status when there is one."""

    def __init__(self, message: str, *, status: int | None = None, code: str | None = None):
        super().__init__(message)
        self.status = status
        self.code = code


def validate_table_id(table_id: str) -> None:
    """Table ids end up in URLs and directory names; keep them to identifiers.

    Raises ValueError if invalid.
    """
    if not isinstance(table_id, str) or not table_id:
        raise ValueError("table id is required")
    if re.fullmatch(TABLE_ID_REGEX, table_id) is None:
        raise ValueError(f"Invalid table id '{table_id}': must match {TABLE_ID_REGEX}")


def check_filters(filters: Iterable[Filter] | None) -> List[Filter]:
    out = []
    for f in filters or []:
        try:
            col, op, value = f
        except (TypeError, ValueError):
            raise ValueError(f"Invalid filter {f!r}: expected (column, op, value)")
        if op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter operator '{op}'")
        if not col:
            raise ValueError("Filter column is required")
        out.append((str(col), op, value))
    return out


def _parse_order(order: str | None) -> Optional[Tuple[str, bool]]:
    """'created_at.desc' -> ('created_at', True). None/empty -> None."""
    if not order:
        return None
    s = str(order).strip()
    desc = False
    if s.endswith(".desc"):
        s, desc = s[:-5], True
    elif s.endswith(".asc"):
        s = s[:-4]
    return (s, desc) if s else None


# -------------------------------
# PostgREST (Supabase) client
# -------------------------------

def _pg_quote(value) -> str:
    s = str(value)
    return '"' + s.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _pg_filter_value(op: str, value) -> str:
    if op == "in":
        vals = value if isinstance(value, (list, tuple, set)) else [value]
        return "in.(" + ",".join(_pg_quote(v) for v in vals) + ")"
    if op == "ilike":
        # PostgREST accepts '*' for '%' so patterns survive URL encoding
        return "ilike." + str(value).replace("%", "*")
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return "eq." + ("true" if value else "false")
    return f"eq.{value}"


class PostgrestBackend:
    """REST client for a PostgREST endpoint (Supabase: <url>/rest/v1/<table>)."""

    def __init__(self, url: str, key: str | None = None, *, schema: str = "public",
                 timeout: float = 10, session: requests.Session | None = None):
        if not url:
            raise ValueError("backend url is required for the postgrest backend")
        base = str(url).rstrip("/")
        if not base.endswith("/rest/v1"):
            base = base + "/rest/v1"
        self.base_url = base
        self.key = key
        self.schema = schema or "public"
        self.timeout = timeout
        self.session = session or requests.Session()

    def __repr__(self) -> str:
        return f"PostgrestBackend({self.base_url!r})"

    def _headers(self, *, write: bool = False, prefer: str | None = None) -> Dict[str, str]:
        h = {"Accept": "application/json"}
        if self.key:
            h["apikey"] = self.key
            h["Authorization"] = f"Bearer {self.key}"
        if write:
            h["Content-Type"] = "application/json"
            h["Content-Profile"] = self.schema
        else:
            h["Accept-Profile"] = self.schema
        if prefer:
            h["Prefer"] = prefer
        return h

    def _params(self, filters: Iterable[Filter] | None) -> List[Tuple[str, str]]:
        return [(col, _pg_filter_value(op, value)) for col, op, value in check_filters(filters)]

    def _request(self, method: str, table: str, *, params=None, json=None,
                 write: bool = False, prefer: str | None = None) -> requests.Response:
        validate_table_id(table)
        url = f"{self.base_url}/{quote(table)}"
        log.debug("%s %s params=%s", method, url, params)
        try:
            resp = self.session.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(write=write, prefer=prefer),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise BackendError(f"Backend request failed: {e}") from e
        if resp.status_code >= 400:
            message = resp.text.strip() or resp.reason or "request failed"
            code = None
            try:
                body = resp.json()
                if isinstance(body, dict):
                    message = body.get("message") or body.get("error") or message
                    code = body.get("code")
            except ValueError:
                pass
            raise BackendError(f"{method} {table} failed ({resp.status_code}): {message}",
                               status=resp.status_code, code=code)
        return resp

    @staticmethod
    def _rows(resp: requests.Response) -> List[dict]:
        if resp.status_code == 204 or not (resp.content or b"").strip():
            return []
        try:
            data = resp.json()
        except ValueError as e:
            raise BackendError(f"Backend returned invalid JSON: {e}") from e
        if isinstance(data, dict):
            return [data]
        return [r for r in (data or []) if isinstance(r, dict)]

    def select(self, table: str, filters: Sequence[Filter] | None = None, *,
               order: str | None = None, limit: int | None = None) -> List[dict]:
        params = [("select", "*")] + self._params(filters)
        parsed = _parse_order(order)
        if parsed:
            col, desc = parsed
            params.append(("order", f"{col}.{'desc' if desc else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(int(limit))))
        return self._rows(self._request("GET", table, params=params))

    def insert(self, table: str, row: dict, *, primary_key: str = "id") -> dict:
        resp = self._request("POST", table, params=[("select", "*")], json=row,
                             write=True, prefer="return=representation")
        rows = self._rows(resp)
        return rows[0] if rows else dict(row)

    def update(self, table: str, filters: Sequence[Filter], changes: dict) -> List[dict]:
        params = self._params(filters)
        if not params:
            raise ValueError("Refusing to update without filters")
        resp = self._request("PATCH", table, params=params + [("select", "*")], json=changes,
                             write=True, prefer="return=representation")
        return self._rows(resp)

    def delete(self, table: str, filters: Sequence[Filter]) -> int:
        params = self._params(filters)
        if not params:
            raise ValueError("Refusing to delete without filters")
        resp = self._request("DELETE", table, params=params + [("select", "*")],
                             write=True, prefer="return=representation")
        return len(self._rows(resp))

    def count(self, table: str) -> int:
        resp = self._request("HEAD", table, params=[("select", "*")], prefer="count=exact")
        rng = resp.headers.get("Content-Range") or ""
        # Content-Range: 0-24/3573  or  */0
        total = rng.rsplit("/", 1)[-1].strip() if "/" in rng else ""
        if total.isdigit():
            return int(total)
        return len(self.select(table))


# -------------------------------
# Local YAML store
#   <root>/<table>/<id>.yml, one record per file
# -------------------------------

def _plain(value):
    """YAML loads dates as date objects; the UI and JSON API want ISO strings."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


def _same(a, b) -> bool:
    if a == b:
        return True
    if a is None or b is None:
        return False
    if isinstance(a, bool) or isinstance(b, bool):
        return str(a).lower() == str(b).lower()
    return str(a) == str(b)


def ilike_regex(pattern: str) -> re.Pattern:
    """SQL ILIKE pattern ('%' any run, '_' one char; '*' accepted for '%')."""
    out = []
    for ch in str(pattern):
        if ch in ("%", "*"):
            out.append(".*")
        elif ch == "_":
            out.append(".")
        else:
            out.append(re.escape(ch))
    return re.compile("".join(out), re.IGNORECASE | re.DOTALL)


def row_matches(row: dict, filters: Iterable[Filter]) -> bool:
    for col, op, value in filters:
        cell = row.get(col)
        if op == "eq":
            if not _same(cell, value):
                return False
        elif op == "in":
            vals = value if isinstance(value, (list, tuple, set)) else [value]
            if not any(_same(cell, v) for v in vals):
                return False
        elif op == "ilike":
            if cell is None or ilike_regex(value).fullmatch(str(cell)) is None:
                return False
    return True


def _sort_key(value):
    # None sorts first; mixed types compare by string
    if value is None:
        return (0, 0, "")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, value, "")
    return (2, 0, str(value))


class LocalBackend:
    """Tables stored as YAML files in a workspace directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"LocalBackend({str(self.root)!r})"

    def _table_dir(self, table: str) -> Path:
        validate_table_id(table)
        return self.root / table

    @staticmethod
    def _read_yaml(p: Path) -> dict:
        with open(p) as f:
            data = yaml.safe_load(f) or {}
        return _plain(data) if isinstance(data, dict) else {}

    @staticmethod
    def _write_yaml(p: Path, data: dict) -> None:
        with open(p, "w") as f:
            yaml.safe_dump(data, f, sort_keys=False)

    def _entries(self, table: str) -> List[Tuple[Path, dict]]:
        d = self._table_dir(table)
        if not d.exists():
            return []
        out = []
        for fp in sorted(d.glob("*.yml")):
            try:
                out.append((fp, self._read_yaml(fp)))
            except (OSError, yaml.YAMLError) as e:
                # Skip unreadable files
                log.warning("Skipping unreadable record %s: %s", fp, e)
        return out

    def select(self, table: str, filters: Sequence[Filter] | None = None, *,
               order: str | None = None, limit: int | None = None) -> List[dict]:
        flt = check_filters(filters)
        rows = [row for _, row in self._entries(table) if row_matches(row, flt)]
        parsed = _parse_order(order)
        if parsed:
            col, desc = parsed
            rows.sort(key=lambda r: _sort_key(r.get(col)), reverse=desc)
        if limit is not None:
            rows = rows[: max(0, int(limit))]
        return rows

    def _next_id(self, table: str, primary_key: str) -> int:
        highest = 0
        for _, row in self._entries(table):
            try:
                highest = max(highest, int(str(row.get(primary_key))))
            except (TypeError, ValueError):
                continue
        return highest + 1

    def insert(self, table: str, row: dict, *, primary_key: str = "id") -> dict:
        d = self._table_dir(table)
        data = dict(row or {})
        rid = data.get(primary_key)
        if rid is None or str(rid).strip() == "":
            rid = self._next_id(table, primary_key)
            data[primary_key] = rid
        name = str(rid)
        if re.fullmatch(RECORD_FILE_REGEX, name) is None:
            raise BackendError(f"Invalid record id '{name}' for local storage", status=400)
        fp = d / f"{name}.yml"
        if fp.exists() or self.select(table, [(primary_key, "eq", rid)]):
            raise BackendError(f"Duplicate key: {table}.{primary_key}={name} already exists", status=409)
        d.mkdir(parents=True, exist_ok=True)
        # Primary key first so files read naturally
        ordered = {primary_key: data.pop(primary_key)}
        ordered.update(data)
        # Stand in for database column defaults
        now = datetime.now(timezone.utc).isoformat()
        for col in ("created_at", "updated_at"):
            if ordered.get(col) in (None, ""):
                ordered[col] = now
        self._write_yaml(fp, ordered)
        return _plain(ordered)

    def update(self, table: str, filters: Sequence[Filter], changes: dict) -> List[dict]:
        flt = check_filters(filters)
        if not flt:
            raise ValueError("Refusing to update without filters")
        updated = []
        for fp, row in self._entries(table):
            if not row_matches(row, flt):
                continue
            row.update(changes or {})
            self._write_yaml(fp, row)
            updated.append(_plain(row))
        return updated

    def delete(self, table: str, filters: Sequence[Filter]) -> int:
        flt = check_filters(filters)
        if not flt:
            raise ValueError("Refusing to delete without filters")
        n = 0
        for fp, row in self._entries(table):
            if row_matches(row, flt):
                fp.unlink()
                n += 1
        return n

    def count(self, table: str) -> int:
        return len(self._entries(table))


def make_backend(backend_cfg: dict, workspace_path: Path | None = None):
    """Build a backend from the (already env-merged) workspace backend block."""
    kind = str((backend_cfg or {}).get("type") or "local").lower()
    if kind in ("postgrest", "supabase", "rest"):
        return PostgrestBackend(
            backend_cfg.get("url"),
            backend_cfg.get("key"),
            schema=backend_cfg.get("schema") or "public",
            timeout=float(backend_cfg.get("timeout") or 10),
        )
    if kind == "local":
        path = backend_cfg.get("path")
        if path:
            root = Path(path).expanduser()
            if not root.is_absolute() and workspace_path is not None:
                root = workspace_path / root
        elif workspace_path is not None:
            root = workspace_path / "data"
        else:
            raise ValueError("local backend needs a workspace or an explicit path")
        return LocalBackend(root.resolve())
    raise ValueError(f"Unknown backend type '{kind}'")
