"""
Schema snapshot models.

A SchemaSnapshot is built from one introspection payload and is never
mutated afterwards; a refresh replaces the whole object.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class ForeignKeyRef(BaseModel):
    """Target of a foreign key column."""

    model_config = ConfigDict(frozen=True)

    table: str
    column: str


class ColumnSchema(BaseModel):
    """One column of a table, in ordinal order."""

    model_config = ConfigDict(frozen=True)

    name: str
    data_type: str
    nullable: bool = True
    references: Optional[ForeignKeyRef] = None

    def describe(self) -> str:
        line = f"  - {self.name} ({self.data_type})"
        if not self.nullable:
            line += " NOT NULL"
        if self.references:
            line += f" -> {self.references.table}.{self.references.column}"
        return line


class TableSchema(BaseModel):
    """A base table and its columns."""

    model_config = ConfigDict(frozen=True)

    name: str
    columns: Tuple[ColumnSchema, ...] = ()

    def column(self, name: str) -> Optional[ColumnSchema]:
        for column in self.columns:
            if column.name == name:
                return column
        return None


class SchemaSnapshot(BaseModel):
    """
    Immutable view of the relational schema used to build prompts.

    Attributes:
        tables: Table name to table, in introspection order
        loaded_at: When the snapshot was built (informational)
    """

    model_config = ConfigDict(frozen=True)

    tables: Dict[str, TableSchema] = Field(default_factory=dict)
    loaded_at: Optional[datetime] = None

    @classmethod
    def from_introspection(
        cls,
        payload: Dict[str, Any],
        loaded_at: Optional[datetime] = None,
    ) -> "SchemaSnapshot":
        """
        Build a snapshot from ``{"tables": [{name, columns: [{name, type, nullable, references?}]}]}``.
        """
        tables: Dict[str, TableSchema] = {}
        for raw_table in payload.get("tables", []):
            columns: List[ColumnSchema] = []
            for raw_column in raw_table.get("columns", []):
                references = raw_column.get("references")
                columns.append(ColumnSchema(
                    name=raw_column["name"],
                    data_type=raw_column.get("type", "unknown"),
                    nullable=raw_column.get("nullable", True),
                    references=ForeignKeyRef(**references) if references else None,
                ))
            tables[raw_table["name"]] = TableSchema(name=raw_table["name"], columns=tuple(columns))
        return cls(tables=tables, loaded_at=loaded_at)

    def table_names(self) -> List[str]:
        return list(self.tables.keys())

    def has_table(self, name: str) -> bool:
        return name.lower() in {t.lower() for t in self.tables}

    def describe(self) -> str:
        """
        Render the snapshot as prompt text.

        Example:
            Table: students
            Columns:
              - id (integer) NOT NULL
              - seat_number (integer) -> seats.seat_number
        """
        lines: List[str] = []
        for table in self.tables.values():
            lines.append(f"Table: {table.name}")
            lines.append("Columns:")
            lines.extend(column.describe() for column in table.columns)
            lines.append("")
        return "\n".join(lines)
