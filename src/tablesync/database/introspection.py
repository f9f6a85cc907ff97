"""
Database schema introspection for tablesync.

Reads the live structure of a PostgreSQL table (columns, primary key and
indexes) from the system catalogs and turns it into a TableDescriptor
that can be compared with a declared one.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import asyncpg
from pydantic import ValidationError as PydanticValidationError

from .connection import ConnectionPool
from ..exceptions import DatabaseError, SchemaError, TableNotFoundError
from ..schema.model import FieldDefinition, FieldType, TableDescriptor


logger = logging.getLogger(__name__)

# $1 is the namespace; NULL means the session's current schema
NAMESPACE_FILTER = "COALESCE($1::text, current_schema())"


@dataclass
class ColumnInfo:
    """Information about a database column."""

    name: str
    udt_name: str
    default: Optional[str] = None
    max_length: Optional[int] = None
    is_identity: bool = False
    ordinal_position: int = 0
    formatted_type: Optional[str] = None  # format_type() spelling, modifiers included

    @property
    def is_auto_increment(self) -> bool:
        """Sequence-backed (serial) or identity column."""
        return self.is_identity or "nextval(" in (self.default or "")

    def to_field(self) -> FieldDefinition:
        field_type, raw_type = FieldType.from_catalog(self.udt_name)
        size = None
        if field_type == FieldType.VARCHAR:
            if self.max_length is None:
                # varchar without a length modifier
                field_type, raw_type = FieldType.OTHER, "varchar"
            else:
                size = self.max_length
        if field_type == FieldType.OTHER and self.formatted_type:
            raw_type = self.formatted_type

        return FieldDefinition(
            name=self.name,
            type=field_type,
            raw_type=raw_type,
            size=size,
            auto_increment=self.is_auto_increment,
        )


@dataclass
class IndexInfo:
    """Information about a database index."""

    name: str
    columns: List[str] = field(default_factory=list)
    is_unique: bool = False

    @property
    def key(self) -> str:
        return ",".join(self.columns)


class SchemaIntrospector:
    """Reads table structure from the PostgreSQL catalogs."""

    def __init__(self, pool: ConnectionPool, namespace: Optional[str] = None):
        self.pool = pool
        self.namespace = namespace

    def _full_name(self, table: str) -> str:
        return f"{self.namespace}.{table}" if self.namespace else table

    async def table_exists(self, table: str) -> bool:
        """Check if a table exists."""
        query = f"""
            SELECT EXISTS (
                SELECT 1 FROM information_schema.tables
                WHERE table_schema = {NAMESPACE_FILTER}
                AND table_name = $2
                AND table_type = 'BASE TABLE'
            )
        """

        try:
            result = await self.pool.get_scalar(query, self.namespace, table)
            return bool(result)
        except (asyncpg.UndefinedTableError, asyncpg.InvalidSchemaNameError) as e:
            logger.debug(f"Catalog reports no such object for {self._full_name(table)}: {e}")
            return False
        except Exception as e:
            logger.error(f"Error checking table existence for {self._full_name(table)}: {e}")
            raise DatabaseError(f"Failed to check table existence: {e}", cause=e) from e

    async def read(self, table: str) -> TableDescriptor:
        """Introspect a table into a descriptor."""
        if not await self.table_exists(table):
            raise TableNotFoundError(table, self.namespace)

        columns = await self.get_columns(table)
        primary_key, constraint = await self.get_primary_key(table)
        indexes = await self.get_indexes(table)

        index_names: Dict[str, str] = {}
        duplicate_indexes: Dict[str, List[str]] = {}
        for index in indexes:
            if index.key in index_names:
                duplicate_indexes.setdefault(index.key, []).append(index.name)
            else:
                index_names[index.key] = index.name

        try:
            return TableDescriptor(
                name=table,
                fields=[c.to_field() for c in columns],
                primary_key=primary_key,
                indexes=[index.key for index in indexes],
                primary_key_constraint=constraint,
                index_names=index_names,
                duplicate_indexes=duplicate_indexes,
            )
        except PydanticValidationError as e:
            raise SchemaError(
                f"Table {self._full_name(table)} cannot be represented as a descriptor: {e}",
                cause=e,
            ) from e

    async def get_columns(self, table: str) -> List[ColumnInfo]:
        """Get all columns for a table, in ordinal order."""
        query = f"""
            SELECT
                c.column_name,
                c.udt_name,
                c.column_default,
                c.character_maximum_length,
                c.is_identity,
                c.ordinal_position,
                format_type(a.atttypid, a.atttypmod) AS formatted_type
            FROM information_schema.columns c
            JOIN pg_namespace n ON n.nspname = c.table_schema
            JOIN pg_class t ON t.relnamespace = n.oid AND t.relname = c.table_name
            JOIN pg_attribute a ON a.attrelid = t.oid AND a.attname = c.column_name
            WHERE c.table_schema = {NAMESPACE_FILTER} AND c.table_name = $2
            ORDER BY c.ordinal_position
        """

        try:
            rows = await self.pool.execute_query(query, self.namespace, table)
            return [
                ColumnInfo(
                    name=row["column_name"],
                    udt_name=row["udt_name"],
                    default=row["column_default"],
                    max_length=row["character_maximum_length"],
                    is_identity=row["is_identity"] == "YES",
                    ordinal_position=row["ordinal_position"],
                    formatted_type=row.get("formatted_type"),
                )
                for row in rows
            ]
        except Exception as e:
            logger.error(f"Error getting columns for {self._full_name(table)}: {e}")
            raise SchemaError(f"Failed to get columns: {e}", cause=e) from e

    async def get_primary_key(self, table: str) -> Tuple[Optional[str], Optional[str]]:
        """
        Get the primary key of a table.

        Returns the comma-joined key columns in key order and the
        constraint name, or (None, None) when the table has no primary key.
        """
        query = f"""
            SELECT tc.constraint_name, kcu.column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON kcu.constraint_name = tc.constraint_name
                AND kcu.constraint_schema = tc.constraint_schema
                AND kcu.table_name = tc.table_name
            WHERE tc.constraint_type = 'PRIMARY KEY'
            AND tc.table_schema = {NAMESPACE_FILTER}
            AND tc.table_name = $2
            ORDER BY kcu.ordinal_position
        """

        try:
            rows = await self.pool.execute_query(query, self.namespace, table)
        except Exception as e:
            logger.error(f"Error getting primary key for {self._full_name(table)}: {e}")
            raise SchemaError(f"Failed to get primary key: {e}", cause=e) from e

        if not rows:
            return None, None
        return ",".join(row["column_name"] for row in rows), rows[0]["constraint_name"]

    async def get_indexes(self, table: str) -> List[IndexInfo]:
        """
        Get the plain indexes of a table, in creation order.

        Indexes backing a constraint (the primary key, unique constraints)
        are left out.
        """
        query = f"""
            SELECT
                ic.relname AS index_name,
                ix.indisunique AS is_unique,
                a.attname AS column_name
            FROM pg_index ix
            JOIN pg_class tc ON tc.oid = ix.indrelid
            JOIN pg_class ic ON ic.oid = ix.indexrelid
            JOIN pg_namespace n ON n.oid = tc.relnamespace
            JOIN pg_attribute a ON a.attrelid = ix.indrelid AND a.attnum = ANY(ix.indkey)
            WHERE n.nspname = {NAMESPACE_FILTER}
            AND tc.relname = $2
            AND NOT ix.indisprimary
            AND NOT EXISTS (
                SELECT 1 FROM pg_constraint con WHERE con.conindid = ix.indexrelid
            )
            ORDER BY ix.indexrelid, array_position(ix.indkey::int2[], a.attnum)
        """

        try:
            rows = await self.pool.execute_query(query, self.namespace, table)
        except Exception as e:
            logger.error(f"Error getting indexes for {self._full_name(table)}: {e}")
            raise SchemaError(f"Failed to get indexes: {e}", cause=e) from e

        indexes: Dict[str, IndexInfo] = {}
        for row in rows:
            index = indexes.get(row["index_name"])
            if index is None:
                index = indexes[row["index_name"]] = IndexInfo(
                    name=row["index_name"], is_unique=row["is_unique"]
                )
            index.columns.append(row["column_name"])
        return list(indexes.values())

    async def list_tables(self) -> List[str]:
        """List base tables in the namespace."""
        query = f"""
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = {NAMESPACE_FILTER}
            AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """
        rows = await self.pool.execute_query(query, self.namespace)
        return [row["table_name"] for row in rows]
