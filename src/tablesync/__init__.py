"""
tablesync: declarative table schemas kept in sync with PostgreSQL.

Tables are declared as data; tablesync creates missing tables and
reconciles existing ones (adding, dropping, renaming and retyping
columns, primary keys and indexes) without hand-written migrations.
"""

__version__ = "0.1.0"

from .config import TablesyncConfig, ReconciliationConfig
from .exceptions import (
    TablesyncError,
    ConfigurationError,
    ValidationError,
    DatabaseError,
    SchemaError,
    SchemaNotFoundError,
    TableNotFoundError,
    StatementError,
    AmbiguousRenameError,
    SeedingError,
)
from .registry import SchemaRegistry
from .schema.model import FieldDefinition, FieldType, TableDescriptor

__all__ = [
    "__version__",
    "TablesyncConfig",
    "ReconciliationConfig",
    "SchemaRegistry",
    "FieldDefinition",
    "FieldType",
    "TableDescriptor",
    "TablesyncError",
    "ConfigurationError",
    "ValidationError",
    "DatabaseError",
    "SchemaError",
    "SchemaNotFoundError",
    "TableNotFoundError",
    "StatementError",
    "AmbiguousRenameError",
    "SeedingError",
]
