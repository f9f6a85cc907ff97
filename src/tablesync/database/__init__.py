"""
Database integration package for tablesync.

This package provides:
- Async PostgreSQL connection pooling
- Table structure introspection
"""

from .connection import ConnectionConfig, ConnectionPool
from .introspection import SchemaIntrospector, ColumnInfo, IndexInfo

__all__ = [
    "ConnectionConfig",
    "ConnectionPool",
    "SchemaIntrospector",
    "ColumnInfo",
    "IndexInfo",
]
