from __future__ import annotations

from typing import Dict, List, Optional
import logging

from .backends import BackendError
from .cache import list_key, options_key
from .metadata import primary_key_value, record_title, relation_columns
from .navigation import ParentLink

log = logging.getLogger(__name__)

NONE_OPTION = {"key": "", "text": "- None -"}


def _labels_for(ctx, target: str, ids: List) -> Dict[str, str]:
    """{str(id): title} for the given ids of target, in one lookup."""
    meta = ctx.catalog.get(target)
    pk = meta["primaryKey"]
    cached = ctx.cache.get(list_key(target))
    if cached is not None:
        rows = cached
    else:
        rows = ctx.backend.select(target, [(pk, "in", ids)])
    wanted = {str(i) for i in ids}
    out = {}
    for row in rows:
        key = primary_key_value(meta, target, row)
        if key is not None and str(key) in wanted:
            out[str(key)] = record_title(meta, row)
    return out


def resolve_labels(ctx, table_id: str, rows: List[dict], *, meta: Optional[dict] = None) -> List[dict]:
    """Write '<column>_text' into each row for every relation column.

    One query per target table (none when the target's full list is cached).
    A failed lookup leaves the raw id as the label.
    """
    meta = meta or ctx.catalog.get(table_id)
    for col in relation_columns(meta):
        name = col["name"]
        target = col["relation"]
        ids = []
        seen = set()
        for row in rows:
            v = row.get(name)
            if v is None or v == "" or str(v) in seen:
                continue
            seen.add(str(v))
            ids.append(v)
        labels: Dict[str, str] = {}
        if ids:
            try:
                labels = _labels_for(ctx, target, ids)
            except (BackendError, ValueError) as e:
                log.warning("Could not resolve %s.%s labels from %s: %s", table_id, name, target, e)
        for row in rows:
            v = row.get(name)
            if v is None or v == "":
                row[f"{name}_text"] = ""
            else:
                row[f"{name}_text"] = labels.get(str(v)) or str(v)
    return rows


def relation_options(ctx, table_id: str, required: bool = False, *, ignore_cache: bool = False) -> List[dict]:
    """Picker options {key, text} from the rows of table_id (the relation target)."""
    meta = ctx.catalog.get(table_id)

    def load():
        rows = ctx.backend.select(table_id)
        opts = []
        for row in rows:
            key = primary_key_value(meta, table_id, row)
            if key is None:
                continue
            opts.append({"key": str(key), "text": record_title(meta, row) or str(key)})
        opts.sort(key=lambda o: o["text"].lower())
        return opts

    options = list(ctx.cache.get_or_load(options_key(table_id), load, ignore_cache=ignore_cache))
    if not required:
        options.insert(0, dict(NONE_OPTION))
    return options


def form_options(ctx, meta: dict) -> Dict[str, List[dict]]:
    """Options for every relation column of a form. A failing target yields an empty picker."""
    out = {}
    for col in relation_columns(meta):
        if not col.get("editable", True):
            continue
        try:
            out[col["name"]] = relation_options(ctx, col["relation"], bool(col.get("required")))
        except (BackendError, ValueError) as e:
            log.warning("Could not load options for %s.%s: %s", meta.get("id"), col["name"], e)
            out[col["name"]] = [] if col.get("required") else [dict(NONE_OPTION)]
    return out


def related_items(ctx, table_id: str, record: dict, *, ignore_cache: bool = False) -> List[dict]:
    """Child rows for every relation in the parent's metadata, labels resolved."""
    meta = ctx.catalog.get(table_id)
    pkv = primary_key_value(meta, table_id, record)
    groups = []
    for rel in meta.get("relations") or []:
        child, fk = rel["table"], rel["foreignKey"]
        child_meta = ctx.catalog.get(child)
        filters = [(fk, "eq", pkv)]
        try:
            rows = ctx.cache.get_or_load(
                list_key(child, filters),
                lambda: ctx.backend.select(child, filters),
                ignore_cache=ignore_cache,
            )
            rows = resolve_labels(ctx, child, [dict(r) for r in rows], meta=child_meta)
            error = None
        except (BackendError, ValueError) as e:
            log.warning("Could not load related %s for %s %s: %s", child, table_id, pkv, e)
            rows, error = [], str(e)
        groups.append({
            "table": child,
            "title": child_meta.get("title") or child,
            "foreign_key": fk,
            "meta": child_meta,
            "rows": rows,
            "error": error,
            "parent": ParentLink(table=table_id, id=str(pkv), foreign_key=fk),
        })
    return groups
