from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import logging

from .backends import make_backend
from .cache import EntityCache
from .config import get_backend_config, get_navigation, get_table_specs, get_workspace_path
from .metadata import Catalog

log = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything a list/detail/write operation needs, wired once at startup."""

    backend: object
    catalog: Catalog
    cache: EntityCache = field(default_factory=EntityCache)
    workspace: Optional[Path] = None


def bootstrap(workspace: Path | str | None = None) -> AppContext:
    ws = Path(workspace).expanduser().resolve() if workspace else get_workspace_path()
    backend_cfg = get_backend_config(ws)
    backend = make_backend(backend_cfg, ws)
    catalog = Catalog(get_table_specs(ws), backend=backend, navigation=get_navigation(ws))
    log.info("Bootstrapped %s with %d configured tables", backend, len(catalog.table_ids()))
    return AppContext(backend=backend, catalog=catalog, cache=EntityCache(), workspace=ws)
