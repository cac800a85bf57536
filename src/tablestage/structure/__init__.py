"""Structure module - column editing and DDL generation.

- models.py → schema metadata and editable structure columns
- diff.py   → classification, validation and ALTER statement compilation
- editor.py → editor state with the mandatory preview gate
"""

from tablestage.structure.models import (
    ColumnChanges,
    ColumnStatus,
    SchemaColumn,
    SchemaForeignKey,
    SchemaIndex,
    StructureColumn,
    TableStructure,
)

__all__ = [
    "ColumnChanges",
    "ColumnStatus",
    "SchemaColumn",
    "SchemaForeignKey",
    "SchemaIndex",
    "StructureColumn",
    "TableStructure",
]
