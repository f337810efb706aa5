from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional

PARENT_TABLE_ARG = "parent_table"
PARENT_ID_ARG = "parent_id"
PARENT_FK_ARG = "parent_fk"


@dataclass(frozen=True)
class ParentLink:
    """A child record being created from a parent's detail page.

    Travels in the URL (parent_table, parent_id, parent_fk) so a create form
    knows which foreign key to lock and where to return afterwards.
    """

    table: str
    id: str
    foreign_key: str

    @classmethod
    def from_args(cls, args: Mapping) -> Optional["ParentLink"]:
        table = str(args.get(PARENT_TABLE_ARG) or "").strip()
        rid = str(args.get(PARENT_ID_ARG) or "").strip()
        fk = str(args.get(PARENT_FK_ARG) or "").strip()
        if not (table and rid and fk):
            return None
        return cls(table=table, id=rid, foreign_key=fk)

    def to_args(self) -> Dict[str, str]:
        return {PARENT_TABLE_ARG: self.table, PARENT_ID_ARG: self.id, PARENT_FK_ARG: self.foreign_key}

    def locked_text(self) -> str:
        return f"Connected to parent {self.table} (ID: {self.id})"
