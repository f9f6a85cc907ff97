"""
Exception classes for tablesync.
"""

from typing import Any, Dict, List, Optional


class TablesyncError(Exception):
    """Base exception for all tablesync errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class ConfigurationError(TablesyncError):
    """Raised when there's an error in configuration."""

    pass


class ValidationError(TablesyncError):
    """Raised when a schema declaration is invalid."""

    pass


class DatabaseError(TablesyncError):
    """Raised when there's an error with database operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when there's an error establishing or maintaining database connections."""

    pass


class DatabaseConfigurationError(DatabaseError):
    """Raised when there's an error in database configuration."""

    pass


class SchemaError(DatabaseError):
    """Raised when there's an error with database schema operations."""

    pass


class SchemaNotFoundError(SchemaError):
    """Raised when a schema name has not been registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"No such schema '{name}'")
        self.name = name


class TableNotFoundError(SchemaError):
    """Raised when introspecting a table that does not exist."""

    def __init__(self, table: str, namespace: Optional[str] = None) -> None:
        full_name = f"{namespace}.{table}" if namespace else table
        super().__init__(f"Table {full_name} does not exist")
        self.table = table
        self.namespace = namespace


class StatementError(SchemaError):
    """Raised when the database rejects a generated statement."""

    def __init__(
        self,
        table: str,
        statement: str,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(
            f"Statement failed for table '{table}': {statement}",
            cause=cause,
        )
        self.table = table
        self.statement = statement


class AmbiguousRenameError(SchemaError):
    """Raised in strict mode when a rename has more than one candidate column."""

    def __init__(self, table: str, field: str, candidates: List[str]) -> None:
        super().__init__(
            f"Ambiguous rename in table '{table}': "
            f"field '{field}' matches {', '.join(candidates)}",
            {"candidates": candidates},
        )
        self.table = table
        self.field = field
        self.candidates = candidates


class SeedingError(TablesyncError):
    """Raised when an on_create seeding hook fails."""

    def __init__(self, table: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"Seeding hook failed for table '{table}'", cause=cause)
        self.table = table
