"""
DDL generation for tablesync.

Turns table descriptors and structural changes into PostgreSQL
statements. Output is deterministic for a given input.
"""

import datetime
import math
from decimal import Decimal
from typing import Any, Callable, List, Optional, Sequence

from .changes import ChangeType, StructuralChange
from ..exceptions import ValidationError
from .model import FieldDefinition, TableDescriptor, default_value, key_parts, needs_backfill_default


def quote_ident(name: str) -> str:
    """Quote an SQL identifier."""
    return '"' + str(name).replace('"', '""') + '"'


def quote_literal(value: Any) -> str:
    """Render a Python value as a PostgreSQL literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and not math.isfinite(value):
        return f"'{value}'"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "'\\x" + bytes(value).hex() + "'"
    if isinstance(value, (datetime.date, datetime.time)):
        value = value.isoformat()
    return "'" + str(value).replace("'", "''") + "'"


def index_name(table: str, key: str) -> str:
    """Derived physical name for an index on key."""
    return f"{table}_{'_'.join(key_parts(key))}"


class DDLEmitter:
    """Renders CREATE TABLE and ALTER TABLE statements."""

    def __init__(
        self,
        namespace: Optional[str] = None,
        quote: Callable[[Any], str] = quote_literal,
    ):
        self.namespace = namespace
        self.quote = quote

    def table_ref(self, table: str) -> str:
        if self.namespace:
            return f"{quote_ident(self.namespace)}.{quote_ident(table)}"
        return quote_ident(table)

    def _index_ref(self, name: str) -> str:
        if self.namespace:
            return f"{quote_ident(self.namespace)}.{quote_ident(name)}"
        return quote_ident(name)

    def _key_columns(self, key: str) -> str:
        return ", ".join(quote_ident(part) for part in key_parts(key))

    def column_definition(self, field: FieldDefinition) -> str:
        return f"{quote_ident(field.name)} {field.column_type}"

    def emit_create(self, descriptor: TableDescriptor, drop_existing: bool = False) -> List[str]:
        """Statements that create the table and its indexes."""
        table = self.table_ref(descriptor.name)
        statements: List[str] = []

        if drop_existing:
            statements.append(f"DROP TABLE IF EXISTS {table}")

        entries = [self.column_definition(f) for f in descriptor.physical_fields]
        primary_key = descriptor.effective_primary_key
        if primary_key:
            entries.append(f"PRIMARY KEY ({self._key_columns(primary_key)})")
        body = ",\n    ".join(entries)
        statements.append(f"CREATE TABLE {table} (\n    {body}\n)")

        for key in descriptor.indexes:
            statements.append(self._create_index(descriptor.name, key))

        return statements

    def emit(self, change: StructuralChange, table: str) -> List[str]:
        """Statements for one structural change."""
        ct = change.change_type
        ref = self.table_ref(table)

        if ct == ChangeType.ADD_COLUMN:
            field = change.field
            if needs_backfill_default(field):
                raise ValidationError(
                    f"Cannot add column {table}.{field.name} ({field.sql_type}) to existing rows: "
                    f"declare a default_value to backfill it with",
                    details={"table": table, "field": field.name, "type": field.sql_type},
                )
            statements = [f"ALTER TABLE {ref} ADD COLUMN {self.column_definition(field)}"]
            if not field.auto_increment:
                value = self.quote(default_value(field))
                statements.append(f"UPDATE {ref} SET {quote_ident(field.name)} = {value}")
            return statements

        if ct == ChangeType.DROP_COLUMN:
            return [f"ALTER TABLE {ref} DROP COLUMN {quote_ident(change.previous.name)}"]

        if ct == ChangeType.RENAME_COLUMN:
            return [self._rename(ref, change.previous.name, change.field.name)]

        if ct == ChangeType.RETYPE_COLUMN:
            return self._retype(ref, change.previous, change.field)

        if ct == ChangeType.RENAME_AND_RETYPE_COLUMN:
            statements = [self._rename(ref, change.previous.name, change.field.name)]
            statements.extend(self._retype(ref, change.previous, change.field))
            return statements

        if ct == ChangeType.SET_PRIMARY_KEY:
            return [f"ALTER TABLE {ref} ADD PRIMARY KEY ({self._key_columns(change.key)})"]

        if ct == ChangeType.DROP_PRIMARY_KEY:
            name = change.name or f"{table}_pkey"
            return [f"ALTER TABLE {ref} DROP CONSTRAINT IF EXISTS {quote_ident(name)}"]

        if ct == ChangeType.ADD_INDEX:
            return [self._create_index(table, change.key)]

        if ct == ChangeType.DROP_INDEX:
            name = change.name or index_name(table, change.key)
            return [f"DROP INDEX IF EXISTS {self._index_ref(name)}"]

        raise ValueError(f"Unsupported change type: {ct}")

    def emit_all(self, changes: Sequence[StructuralChange], table: str) -> List[str]:
        statements: List[str] = []
        for change in changes:
            statements.extend(self.emit(change, table))
        return statements

    def _create_index(self, table: str, key: str) -> str:
        return (
            f"CREATE INDEX {quote_ident(index_name(table, key))} "
            f"ON {self.table_ref(table)} ({self._key_columns(key)})"
        )

    def _rename(self, ref: str, old: str, new: str) -> str:
        return f"ALTER TABLE {ref} RENAME COLUMN {quote_ident(old)} TO {quote_ident(new)}"

    def _retype(self, ref: str, previous: FieldDefinition, field: FieldDefinition) -> List[str]:
        column = f"ALTER TABLE {ref} ALTER COLUMN {quote_ident(field.name)}"
        statements: List[str] = []

        if previous.auto_increment and not field.auto_increment:
            statements.append(f"{column} DROP IDENTITY IF EXISTS")
            statements.append(f"{column} DROP DEFAULT")

        sql_type = field.sql_type
        statements.append(
            f"{column} SET DATA TYPE {sql_type} USING {quote_ident(field.name)}::{sql_type}"
        )

        if field.auto_increment and not previous.auto_increment:
            statements.append(f"{column} SET NOT NULL")
            statements.append(f"{column} ADD GENERATED BY DEFAULT AS IDENTITY")

        return statements
