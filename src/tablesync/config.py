"""
Configuration system for tablesync using Pydantic.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, ConfigDict, field_validator
from pydantic_settings import BaseSettings

from .database.connection import ConnectionConfig
from .exceptions import ConfigurationError, TablesyncError
from .schema.model import TableDescriptor
from .schema.operations import OperationMode


class ReconciliationConfig(BaseModel):
    """How declared schemas are applied to the database."""

    namespace: Optional[str] = Field(
        None, description="PostgreSQL schema holding the tables (default: current schema)"
    )
    mode: OperationMode = Field(OperationMode.APPLY, description="apply or dry_run")
    transactional: bool = Field(
        False, description="Wrap each table's statements in one transaction"
    )
    strict_renames: bool = Field(
        False, description="Fail instead of guessing when a rename is ambiguous"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")
    max_size: int = Field(10485760, description="Max log file size in bytes")  # 10MB
    backup_count: int = Field(5, description="Number of backup log files")

    def configure(self, debug: bool = False) -> None:
        """Install root logging handlers."""
        handlers: List[logging.Handler] = [logging.StreamHandler()]
        if self.file:
            handlers.append(
                RotatingFileHandler(
                    self.file, maxBytes=self.max_size, backupCount=self.backup_count
                )
            )
        logging.basicConfig(
            level=logging.DEBUG if debug else getattr(logging, self.level),
            format=self.format,
            handlers=handlers,
            force=True,
        )


class TablesyncConfig(BaseSettings):
    """Main tablesync configuration."""

    # Service configuration
    service_name: str = Field("tablesync", description="Service name")
    debug: bool = Field(False, description="Enable debug mode")

    # Database
    database: Optional[ConnectionConfig] = Field(
        None, description="Database connection details"
    )
    database_url: Optional[str] = Field(
        None, description="Database URL, used when 'database' is not set"
    )

    # Schema management
    reconciliation: ReconciliationConfig = Field(
        default_factory=ReconciliationConfig,
        description="Reconciliation settings",
    )
    schemas: List[TableDescriptor] = Field(
        default_factory=list, description="Declared table schemas, in registration order"
    )

    # System configuration
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    model_config = ConfigDict(
        env_file=".env",
        env_prefix="TABLESYNC_",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("schemas", mode="before")
    @classmethod
    def _none_schemas(cls, v: Any) -> Any:
        return [] if v is None else v

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "TablesyncConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            # Expand environment variables in the data
            data = cls._expand_env_vars(data)

            return cls(**data)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in configuration data."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            return os.path.expandvars(data)
        else:
            return data

    def get_connection_config(self) -> ConnectionConfig:
        """Connection settings from 'database', else parsed from 'database_url'."""
        if self.database is not None:
            return self.database
        if self.database_url:
            try:
                return ConnectionConfig.from_url(self.database_url)
            except TablesyncError as e:
                raise ConfigurationError(f"Invalid database_url: {e}", cause=e) from e
        raise ConfigurationError("No database configured: set 'database' or 'database_url'")

    def get_schema(self, name: str) -> TableDescriptor:
        """Get a declared schema by name."""
        for schema in self.schemas:
            if schema.name == name:
                return schema
        raise ConfigurationError(f"Schema '{name}' not found in configuration")

    def validate_config(self) -> None:
        """Validate the entire configuration for consistency."""
        self.get_connection_config()

        seen = set()
        for schema in self.schemas:
            if schema.name in seen:
                raise ConfigurationError(f"Schema '{schema.name}' is declared more than once")
            seen.add(schema.name)

            if not schema.physical_fields:
                raise ConfigurationError(f"Schema '{schema.name}' has no physical fields")

            schema.resolve_on_create()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "service_name": self.service_name,
            "debug": self.debug,
        }
        if self.database is not None:
            data["database"] = self.database.model_dump(exclude_none=True)
        if self.database_url:
            data["database_url"] = self.database_url
        data["reconciliation"] = self.reconciliation.model_dump(mode="json", exclude_none=True)
        data["logging"] = self.logging.model_dump(exclude_none=True)

        schemas = []
        for schema in self.schemas:
            entry = schema.to_dict()
            if isinstance(schema.on_create, str):
                entry["on_create"] = schema.on_create
            schemas.append(entry)
        data["schemas"] = schemas
        return data

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(
                self.to_dict(), f, default_flow_style=False, indent=2, sort_keys=False
            )
