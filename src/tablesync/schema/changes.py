"""
Structural changes produced by the reconciler.

A StructuralChange is one step needed to bring an existing table in line
with its declaration. Changes are consumed by the DDL emitter and never
persisted.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .model import FieldDefinition


class ChangeType(str, Enum):
    """Types of structural changes."""

    ADD_COLUMN = "add_column"
    DROP_COLUMN = "drop_column"
    RENAME_COLUMN = "rename_column"
    RETYPE_COLUMN = "retype_column"
    RENAME_AND_RETYPE_COLUMN = "rename_and_retype_column"
    SET_PRIMARY_KEY = "set_primary_key"
    DROP_PRIMARY_KEY = "drop_primary_key"
    ADD_INDEX = "add_index"
    DROP_INDEX = "drop_index"


COLUMN_CHANGES = frozenset(
    {
        ChangeType.ADD_COLUMN,
        ChangeType.DROP_COLUMN,
        ChangeType.RENAME_COLUMN,
        ChangeType.RETYPE_COLUMN,
        ChangeType.RENAME_AND_RETYPE_COLUMN,
    }
)

DESTRUCTIVE_CHANGES = frozenset(
    {ChangeType.DROP_COLUMN, ChangeType.DROP_PRIMARY_KEY, ChangeType.DROP_INDEX}
)


@dataclass(frozen=True)
class StructuralChange:
    """One structural change to a table."""

    change_type: ChangeType
    field: Optional[FieldDefinition] = None
    previous: Optional[FieldDefinition] = None
    key: Optional[str] = None
    name: Optional[str] = None  # physical constraint or index name

    @classmethod
    def add_column(cls, field: FieldDefinition) -> "StructuralChange":
        return cls(ChangeType.ADD_COLUMN, field=field)

    @classmethod
    def drop_column(cls, previous: FieldDefinition) -> "StructuralChange":
        return cls(ChangeType.DROP_COLUMN, previous=previous)

    @classmethod
    def rename_column(cls, previous: FieldDefinition, field: FieldDefinition) -> "StructuralChange":
        return cls(ChangeType.RENAME_COLUMN, field=field, previous=previous)

    @classmethod
    def retype_column(cls, previous: FieldDefinition, field: FieldDefinition) -> "StructuralChange":
        return cls(ChangeType.RETYPE_COLUMN, field=field, previous=previous)

    @classmethod
    def rename_and_retype_column(
        cls, previous: FieldDefinition, field: FieldDefinition
    ) -> "StructuralChange":
        return cls(ChangeType.RENAME_AND_RETYPE_COLUMN, field=field, previous=previous)

    @classmethod
    def set_primary_key(cls, key: str) -> "StructuralChange":
        return cls(ChangeType.SET_PRIMARY_KEY, key=key)

    @classmethod
    def drop_primary_key(cls, key: str, name: Optional[str] = None) -> "StructuralChange":
        return cls(ChangeType.DROP_PRIMARY_KEY, key=key, name=name)

    @classmethod
    def add_index(cls, key: str) -> "StructuralChange":
        return cls(ChangeType.ADD_INDEX, key=key)

    @classmethod
    def drop_index(cls, key: str, name: Optional[str] = None) -> "StructuralChange":
        return cls(ChangeType.DROP_INDEX, key=key, name=name)

    @property
    def is_destructive(self) -> bool:
        return self.change_type in DESTRUCTIVE_CHANGES

    @property
    def is_column_change(self) -> bool:
        return self.change_type in COLUMN_CHANGES

    @property
    def description(self) -> str:
        """One-line human readable summary."""
        ct = self.change_type
        if ct == ChangeType.ADD_COLUMN:
            return f"add column {self.field.name} {self.field.column_type}"
        if ct == ChangeType.DROP_COLUMN:
            return f"drop column {self.previous.name}"
        if ct == ChangeType.RENAME_COLUMN:
            return f"rename column {self.previous.name} to {self.field.name}"
        if ct == ChangeType.RETYPE_COLUMN:
            return (
                f"retype column {self.field.name} "
                f"{self.previous.column_type} -> {self.field.column_type}"
            )
        if ct == ChangeType.RENAME_AND_RETYPE_COLUMN:
            return (
                f"rename column {self.previous.name} to {self.field.name} "
                f"as {self.field.column_type}"
            )
        if ct == ChangeType.SET_PRIMARY_KEY:
            return f"set primary key ({self.key})"
        if ct == ChangeType.DROP_PRIMARY_KEY:
            return f"drop primary key ({self.key})"
        if ct == ChangeType.ADD_INDEX:
            return f"add index ({self.key})"
        if self.name:
            return f"drop index {self.name} ({self.key})"
        return f"drop index ({self.key})"

    def __str__(self) -> str:
        return self.description
