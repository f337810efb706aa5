from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional
import logging

from .backends import BackendError, check_filters
from .cache import list_key, record_key
from .forms import check_parent, data_for_save, unknown_fields, validate_form
from .metadata import get_column
from .navigation import ParentLink
from .relations import resolve_labels

log = logging.getLogger(__name__)


class RecordNotFound(LookupError):
    def __init__(self, table_id: str, record_id):
        super().__init__(f"Record '{record_id}' not found in {table_id}")
        self.table_id = table_id
        self.record_id = record_id


class ValidationError(ValueError):
    """Submitted values failed validation; 'errors' maps field -> message."""

    def __init__(self, errors: Dict[str, str]):
        fields = ", ".join(sorted(errors))
        super().__init__(f"Please correct the errors in the form ({fields})")
        self.errors = dict(errors)


class RecordInUse(RuntimeError):
    def __init__(self, table_id: str, record_id, children: List[str]):
        super().__init__(
            f"Cannot delete {table_id} '{record_id}': still referenced by {', '.join(children)}"
        )
        self.table_id = table_id
        self.record_id = record_id
        self.children = list(children)


# -------------------------------
# Filters and search
# -------------------------------

def _split_in(value: str) -> List[str]:
    s = value.strip()
    if s.startswith("(") and s.endswith(")"):
        s = s[1:-1]
    return [p.strip().strip('"') for p in s.split(",") if p.strip()]


def parse_filter_args(args: Mapping, meta: dict) -> List[tuple]:
    """Query args 'col=eq.v', 'col=ilike.p' or 'col=in.(a,b)' for known columns only.

    Anything else (q, refresh, parent_* ...) is ignored.
    """
    filters = []
    for key in args:
        if get_column(meta, key) is None and key != meta.get("primaryKey"):
            continue
        raw = args.get(key)
        if raw is None:
            continue
        raw = str(raw)
        op, sep, value = raw.partition(".")
        if not sep or op not in ("eq", "ilike", "in"):
            continue
        filters.append((key, op, _split_in(value) if op == "in" else value))
    return filters


def parse_filter_expressions(exprs: Iterable[str], meta: dict) -> List[tuple]:
    """CLI form of parse_filter_args: ['status=eq.open', ...]."""
    args = {}
    for e in exprs or []:
        k, sep, v = str(e).partition("=")
        if not sep or not k.strip():
            raise ValueError(f"Invalid filter '{e}': expected column=op.value")
        args[k.strip()] = v
    filters = parse_filter_args(args, meta)
    if len(filters) != len(args):
        known = {f[0] for f in filters}
        bad = [k for k in args if k not in known]
        raise ValueError(f"Invalid filter(s) for {meta.get('id')}: {', '.join(bad)}")
    return filters


def search_rows(rows: List[dict], query: Optional[str]) -> List[dict]:
    """Case-insensitive substring match over every value of each row."""
    q = (query or "").strip().lower()
    if not q:
        return rows
    out = []
    for row in rows:
        for v in row.values():
            if v is not None and q in str(v).lower():
                out.append(row)
                break
    return out


# -------------------------------
# Read
# -------------------------------

def list_records(ctx, table_id: str, *, filters: Optional[List[tuple]] = None,
                 search: Optional[str] = None, order: Optional[str] = None,
                 ignore_cache: bool = False) -> List[dict]:
    flt = check_filters(filters)
    key = list_key(table_id, flt, order)
    rows = ctx.cache.get_or_load(
        key,
        lambda: ctx.backend.select(table_id, flt, order=order),
        ignore_cache=ignore_cache,
    )
    # Labels go on copies; cached rows stay raw so label changes show up
    rows = resolve_labels(ctx, table_id, [dict(r) for r in rows])
    return search_rows(rows, search)


def get_record(ctx, table_id: str, record_id, *, ignore_cache: bool = False) -> dict:
    meta = ctx.catalog.get(table_id)
    pk = meta["primaryKey"]

    def load():
        rows = ctx.backend.select(table_id, [(pk, "eq", record_id)], limit=1)
        if not rows:
            raise RecordNotFound(table_id, record_id)
        return rows[0]

    row = ctx.cache.get_or_load(record_key(table_id, record_id), load, ignore_cache=ignore_cache)
    return resolve_labels(ctx, table_id, [dict(row)], meta=meta)[0]


def table_counts(ctx, table_ids: Optional[Iterable[str]] = None) -> Dict[str, Optional[int]]:
    """Row counts per table; None where the backend could not answer."""
    out = {}
    for tid in table_ids if table_ids is not None else ctx.catalog.table_ids():
        try:
            out[tid] = ctx.backend.count(tid)
        except (BackendError, ValueError) as e:
            log.warning("Could not count %s: %s", tid, e)
            out[tid] = None
    return out


# -------------------------------
# Write
# -------------------------------

def _invalidate(ctx, table_id: str) -> None:
    ctx.cache.invalidate_table(table_id)


def create_record(ctx, table_id: str, values: Mapping, *, parent: Optional[ParentLink] = None) -> dict:
    meta = ctx.catalog.get(table_id)
    check_parent(meta, parent)
    errors = validate_form(meta, values, parent=parent)
    if errors:
        raise ValidationError(errors)
    data = data_for_save(meta, values, "create", parent=parent)
    row = ctx.backend.insert(table_id, data, primary_key=meta["primaryKey"])
    _invalidate(ctx, table_id)
    log.info("Created %s %s", table_id, row.get(meta["primaryKey"]))
    return row


def update_record(ctx, table_id: str, record_id, values: Mapping, *, partial: bool = False) -> dict:
    meta = ctx.catalog.get(table_id)
    pk = meta["primaryKey"]
    current = get_record(ctx, table_id, record_id, ignore_cache=True)
    if partial:
        rejected = unknown_fields(meta, values)
        if rejected:
            raise ValueError(f"Cannot update {table_id}: not writable fields: {', '.join(rejected)}")
        if not values:
            raise ValueError(f"Cannot update {table_id}: no fields given")
    errors = validate_form(meta, values, partial=partial)
    if errors:
        raise ValidationError(errors)
    data = data_for_save(meta, values, "edit", partial=partial)
    rows = ctx.backend.update(table_id, [(pk, "eq", record_id)], data)
    _invalidate(ctx, table_id)
    log.info("Updated %s %s (%s)", table_id, record_id, ", ".join(sorted(data)))
    if rows:
        return rows[0]
    merged = {k: v for k, v in current.items() if not k.endswith("_text")}
    merged.update(data)
    return merged


def delete_record(ctx, table_id: str, record_id) -> int:
    """Delete one record. Refuses while child tables still reference it."""
    meta = ctx.catalog.get(table_id)
    pk = meta["primaryKey"]
    current = get_record(ctx, table_id, record_id, ignore_cache=True)
    pkv = current.get(pk, record_id)
    in_use = []
    for rel in meta.get("relations") or []:
        if ctx.backend.select(rel["table"], [(rel["foreignKey"], "eq", pkv)], limit=1):
            in_use.append(rel["table"])
    if in_use:
        raise RecordInUse(table_id, record_id, in_use)
    n = ctx.backend.delete(table_id, [(pk, "eq", record_id)])
    _invalidate(ctx, table_id)
    log.info("Deleted %s %s", table_id, record_id)
    return n
