"""
Database connection management for tablesync.

Wraps an asyncpg pool and exposes the small driver surface the schema
engine needs: queries returning rows, updates returning affected-row
counts, scalar lookups and literal quoting.
"""

import asyncio
import logging
import ssl
from contextlib import asynccontextmanager
from typing import Dict, Optional, Any, AsyncIterator, List
from urllib.parse import urlparse, parse_qs, unquote

import asyncpg
from pydantic import BaseModel, Field, field_validator

from ..exceptions import DatabaseConnectionError, DatabaseConfigurationError
from ..schema.ddl import quote_literal


logger = logging.getLogger(__name__)


class ConnectionConfig(BaseModel):
    """Database connection configuration."""

    host: str = Field("localhost", description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field(..., description="Database name")
    user: str = Field("postgres", description="Database user")
    password: str = Field("", description="Database password")

    # Connection pool settings
    min_size: int = Field(1, description="Minimum connections in pool")
    max_size: int = Field(5, description="Maximum connections in pool")

    # Connection settings
    command_timeout: float = Field(60.0, description="Command timeout in seconds")
    server_settings: Dict[str, str] = Field(
        default_factory=lambda: {"application_name": "tablesync"},
        description="PostgreSQL server settings"
    )

    # SSL settings
    ssl_mode: Optional[str] = Field(None, description="SSL mode")
    ssl_ca: Optional[str] = Field(None, description="SSL CA certificate path")
    ssl_cert: Optional[str] = Field(None, description="SSL certificate path")
    ssl_key: Optional[str] = Field(None, description="SSL key path")

    @field_validator('database')
    @classmethod
    def validate_database(cls, v):
        if not v or not v.strip():
            raise ValueError("Database name is required")
        return v

    @field_validator('max_size')
    @classmethod
    def validate_pool_size(cls, v, info):
        min_size = info.data.get('min_size', 1)
        if v < min_size:
            raise ValueError(f"max_size ({v}) must be >= min_size ({min_size})")
        return v

    @classmethod
    def from_url(cls, url: str) -> "ConnectionConfig":
        """Create configuration from database URL."""
        parsed = urlparse(url)

        if parsed.scheme not in ("postgresql", "postgres"):
            raise DatabaseConfigurationError(f"Invalid database URL scheme: {parsed.scheme}")

        if not parsed.path or parsed.path == "/":
            raise DatabaseConfigurationError("Database name is required")

        query_params = parse_qs(parsed.query) if parsed.query else {}

        config_data = {
            "host": parsed.hostname or "localhost",
            "port": parsed.port or 5432,
            "database": parsed.path.lstrip("/"),
            "user": unquote(parsed.username) if parsed.username else "postgres",
            "password": unquote(parsed.password) if parsed.password else "",
        }

        if "sslmode" in query_params:
            config_data["ssl_mode"] = query_params["sslmode"][0]
        else:
            config_data["ssl_mode"] = "prefer"
        if "sslcert" in query_params:
            config_data["ssl_cert"] = query_params["sslcert"][0]
        if "sslkey" in query_params:
            config_data["ssl_key"] = query_params["sslkey"][0]
        if "sslrootcert" in query_params:
            config_data["ssl_ca"] = query_params["sslrootcert"][0]

        return cls(**config_data)

    def _ssl_argument(self) -> Any:
        """asyncpg ssl argument: a mode string, or a context when files are set."""
        if not (self.ssl_ca or self.ssl_cert):
            return self.ssl_mode

        context = ssl.create_default_context(cafile=self.ssl_ca)
        if self.ssl_cert:
            context.load_cert_chain(self.ssl_cert, keyfile=self.ssl_key)
        if self.ssl_mode in ("require", "prefer", "allow"):
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE if not self.ssl_ca else ssl.CERT_REQUIRED
        return context

    def to_connection_kwargs(self) -> Dict[str, Any]:
        """Convert to asyncpg connection kwargs."""
        kwargs = {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
            "command_timeout": self.command_timeout,
            "server_settings": self.server_settings,
        }

        ssl_argument = self._ssl_argument()
        if ssl_argument is not None:
            kwargs["ssl"] = ssl_argument

        return kwargs


def parse_command_tag(status: Optional[str]) -> int:
    """
    Affected-row count from an asyncpg command status.

    "UPDATE 3" gives 3, "INSERT 0 1" gives 1; DDL tags such as
    "ALTER TABLE" give 0.
    """
    if not status:
        return 0
    last = status.rsplit(" ", 1)[-1]
    return int(last) if last.isdigit() else 0


class ConnectionPool:
    """Async PostgreSQL connection pool wrapper."""

    def __init__(self, config: ConnectionConfig):
        self.config = config
        self._pool: Optional[asyncpg.Pool] = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize the connection pool."""
        async with self._lock:
            if self._pool is not None:
                return

            try:
                logger.info(
                    f"Initializing connection pool to {self.config.host}:{self.config.port}"
                    f"/{self.config.database} (min={self.config.min_size}, max={self.config.max_size})"
                )

                self._pool = await asyncpg.create_pool(
                    **self.config.to_connection_kwargs(),
                    min_size=self.config.min_size,
                    max_size=self.config.max_size,
                )

                logger.info("Connection pool initialized successfully")

            except Exception as e:
                logger.error(f"Failed to initialize connection pool: {e}")
                raise DatabaseConnectionError(f"Failed to initialize connection pool: {e}", cause=e) from e

    async def close(self) -> None:
        """Close the connection pool."""
        async with self._lock:
            if self._pool is not None:
                logger.info("Closing connection pool")
                await self._pool.close()
                self._pool = None

    async def __aenter__(self) -> "ConnectionPool":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a connection from the pool."""
        if self._pool is None:
            raise DatabaseConnectionError("Pool is not connected")

        async with self._pool.acquire() as connection:
            yield connection

    async def execute(self, query: str, *args) -> str:
        """Execute a query and return status."""
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args) -> List[asyncpg.Record]:
        """Fetch all results from a query."""
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args) -> Optional[asyncpg.Record]:
        """Fetch a single row from a query."""
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args, column: int = 0) -> Any:
        """Fetch a single value from a query."""
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args, column=column)

    async def execute_query(self, query: str, *args) -> List[Dict[str, Any]]:
        """Run a query and return its rows as dicts, in result order."""
        return [dict(row) for row in await self.fetch(query, *args)]

    async def execute_update(
        self, query: str, *args, connection: Optional[asyncpg.Connection] = None
    ) -> int:
        """
        Run a statement and return the affected-row count (0 for DDL).

        When a connection is given the statement runs on it (inside any
        transaction open there) instead of on a pooled connection.
        """
        if connection is not None:
            return parse_command_tag(await connection.execute(query, *args))
        return parse_command_tag(await self.execute(query, *args))

    async def get_scalar(self, query: str, *args) -> Any:
        """First column of the first row, or None when there are no rows."""
        return await self.fetchval(query, *args)

    @staticmethod
    def quote(value: Any) -> str:
        """Dialect-safe literal for embedding in generated SQL."""
        return quote_literal(value)

    async def test_connection(self) -> Dict[str, Any]:
        """Test the connection and return server info."""
        try:
            async with self.acquire() as conn:
                result = await conn.fetchrow(
                    "SELECT version(), current_database(), current_user, current_schema()"
                )
                return {
                    "status": "connected",
                    "database": result["current_database"],
                    "user": result["current_user"],
                    "schema": result["current_schema"],
                    "version": result["version"],
                }
        except Exception as e:
            logger.error(f"Connection test failed: {e}")
            return {
                "status": "failed",
                "error": str(e),
            }

    def get_stats(self) -> Dict[str, Any]:
        """Get connection pool statistics."""
        if self._pool is None:
            return {
                "size": 0,
                "free": 0,
                "acquired": 0,
                "initialized": False
            }

        return {
            "size": self._pool.get_size(),
            "free": self._pool.get_idle_size(),
            "acquired": self._pool.get_size() - self._pool.get_idle_size(),
            "initialized": True
        }

    @property
    def is_initialized(self) -> bool:
        """Check if pool is initialized."""
        return self._pool is not None
