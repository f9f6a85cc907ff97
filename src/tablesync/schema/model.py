"""
Table descriptor model for tablesync.

A TableDescriptor describes one table: its ordered fields, primary key
and indexes. Declared descriptors are authored by the application (as
Python objects or YAML data); introspected descriptors are built from the
live catalog by the SchemaIntrospector. Both share this shape so the
reconciler can compare them directly.
"""

import importlib
import re
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from ..exceptions import ConfigurationError, ValidationError


class TypeFamily(str, Enum):
    """Families of logical field types."""

    INTEGER = "integer"
    REAL = "real"
    CHARACTER = "character"
    BINARY = "binary"
    BOOLEAN = "boolean"
    TEMPORAL = "temporal"
    OTHER = "other"


class FieldType(str, Enum):
    """Closed set of logical field types."""

    INT = "int"
    SMALLINT = "smallint"
    BIGINT = "bigint"
    VARCHAR = "varchar"
    TEXT = "text"
    BYTEA = "bytea"
    BOOLEAN = "boolean"
    REAL = "real"
    FLOAT = "float"
    DATE = "date"
    TIME = "time"
    TIMESTAMP = "timestamp"
    TIMESTAMPTZ = "timestamptz"
    OTHER = "other"

    @property
    def family(self) -> TypeFamily:
        return TYPE_FAMILIES[self]

    @property
    def sql_name(self) -> Optional[str]:
        """PostgreSQL type name, None for OTHER (which carries its own)."""
        return SQL_TYPE_NAMES[self]

    @classmethod
    def from_catalog(cls, udt_name: str) -> Tuple["FieldType", Optional[str]]:
        """
        Map a catalog udt_name to a field type.

        Unrecognised types map to OTHER and keep their catalog name as the
        raw type.
        """
        key = (udt_name or "").lower()
        if key in CATALOG_TYPE_MAP:
            return CATALOG_TYPE_MAP[key], None
        return cls.OTHER, key

    @classmethod
    def parse(cls, value: Union[str, "FieldType"]) -> Tuple["FieldType", bool]:
        """
        Resolve a declared type name.

        Returns the field type and whether the name implies an
        auto-incrementing column (serial and friends).
        """
        if isinstance(value, FieldType):
            return value, False
        key = " ".join(str(value).strip().lower().split())
        if key in DECLARED_TYPE_ALIASES:
            return DECLARED_TYPE_ALIASES[key]
        return cls.OTHER, False


TYPE_FAMILIES: Dict[FieldType, TypeFamily] = {
    FieldType.INT: TypeFamily.INTEGER,
    FieldType.SMALLINT: TypeFamily.INTEGER,
    FieldType.BIGINT: TypeFamily.INTEGER,
    FieldType.VARCHAR: TypeFamily.CHARACTER,
    FieldType.TEXT: TypeFamily.CHARACTER,
    FieldType.BYTEA: TypeFamily.BINARY,
    FieldType.BOOLEAN: TypeFamily.BOOLEAN,
    FieldType.REAL: TypeFamily.REAL,
    FieldType.FLOAT: TypeFamily.REAL,
    FieldType.DATE: TypeFamily.TEMPORAL,
    FieldType.TIME: TypeFamily.TEMPORAL,
    FieldType.TIMESTAMP: TypeFamily.TEMPORAL,
    FieldType.TIMESTAMPTZ: TypeFamily.TEMPORAL,
    FieldType.OTHER: TypeFamily.OTHER,
}

SQL_TYPE_NAMES: Dict[FieldType, Optional[str]] = {
    FieldType.INT: "integer",
    FieldType.SMALLINT: "smallint",
    FieldType.BIGINT: "bigint",
    FieldType.VARCHAR: "varchar",
    FieldType.TEXT: "text",
    FieldType.BYTEA: "bytea",
    FieldType.BOOLEAN: "boolean",
    FieldType.REAL: "real",
    FieldType.FLOAT: "double precision",
    FieldType.DATE: "date",
    FieldType.TIME: "time",
    FieldType.TIMESTAMP: "timestamp",
    FieldType.TIMESTAMPTZ: "timestamptz",
    FieldType.OTHER: None,
}

# Auto-increment rendering per integer width
SERIAL_TYPE_NAMES: Dict[FieldType, str] = {
    FieldType.INT: "serial",
    FieldType.SMALLINT: "smallserial",
    FieldType.BIGINT: "bigserial",
}

# pg_catalog udt_name -> field type
CATALOG_TYPE_MAP: Dict[str, FieldType] = {
    "int2": FieldType.SMALLINT,
    "int4": FieldType.INT,
    "int8": FieldType.BIGINT,
    "float4": FieldType.REAL,
    "float8": FieldType.FLOAT,
    "varchar": FieldType.VARCHAR,
    "text": FieldType.TEXT,
    "bytea": FieldType.BYTEA,
    "bool": FieldType.BOOLEAN,
    "date": FieldType.DATE,
    "time": FieldType.TIME,
    "timestamp": FieldType.TIMESTAMP,
    "timestamptz": FieldType.TIMESTAMPTZ,
}

# Declared type name -> (field type, implies auto-increment)
DECLARED_TYPE_ALIASES: Dict[str, Tuple[FieldType, bool]] = {
    "int": (FieldType.INT, False),
    "integer": (FieldType.INT, False),
    "int4": (FieldType.INT, False),
    "tinyint": (FieldType.SMALLINT, False),
    "smallint": (FieldType.SMALLINT, False),
    "int2": (FieldType.SMALLINT, False),
    "bigint": (FieldType.BIGINT, False),
    "int8": (FieldType.BIGINT, False),
    "serial": (FieldType.INT, True),
    "serial4": (FieldType.INT, True),
    "smallserial": (FieldType.SMALLINT, True),
    "serial2": (FieldType.SMALLINT, True),
    "bigserial": (FieldType.BIGINT, True),
    "serial8": (FieldType.BIGINT, True),
    "varchar": (FieldType.VARCHAR, False),
    "character varying": (FieldType.VARCHAR, False),
    "text": (FieldType.TEXT, False),
    "blob": (FieldType.BYTEA, False),
    "bytea": (FieldType.BYTEA, False),
    "bool": (FieldType.BOOLEAN, False),
    "boolean": (FieldType.BOOLEAN, False),
    "real": (FieldType.REAL, False),
    "float4": (FieldType.REAL, False),
    "float": (FieldType.FLOAT, False),
    "float8": (FieldType.FLOAT, False),
    "double": (FieldType.FLOAT, False),
    "double precision": (FieldType.FLOAT, False),
    "date": (FieldType.DATE, False),
    "time": (FieldType.TIME, False),
    "datetime": (FieldType.TIMESTAMP, False),
    "timestamp": (FieldType.TIMESTAMP, False),
    "timestamptz": (FieldType.TIMESTAMPTZ, False),
    "timestamp without time zone": (FieldType.TIMESTAMP, False),
    "timestamp with time zone": (FieldType.TIMESTAMPTZ, False),
    "time without time zone": (FieldType.TIME, False),
}

# Base names of other types -> the spelling format_type() reports
OTHER_TYPE_CANONICAL_NAMES: Dict[str, str] = {
    "int": "integer",
    "int4": "integer",
    "int2": "smallint",
    "int8": "bigint",
    "float4": "real",
    "float8": "double precision",
    "float": "double precision",
    "bool": "boolean",
    "decimal": "numeric",
    "char": "character",
    "varchar": "character varying",
    "timestamp": "timestamp without time zone",
    "timestamptz": "timestamp with time zone",
    "time": "time without time zone",
    "timetz": "time with time zone",
    "varbit": "bit varying",
}

_SIZED_TYPE = re.compile(r"^\s*([A-Za-z][\w ]*?)\s*\(\s*(\d+)\s*\)\s*$")

# timestamp(3) with time zone and friends; precision is not compared
_TEMPORAL_PRECISION = re.compile(r"^\s*(timestamp|time)\s*\(\s*\d+\s*\)([^\[]*)$", re.IGNORECASE)

_OTHER_TYPE = re.compile(r"^([a-z_][a-z0-9_ ]*?)\s*(?:\(([^()]*)\))?\s*((?:\[\d*\]\s*)*)$")


def canonical_type_name(value: str) -> str:
    """
    Spell an other-type SQL name the way PostgreSQL's format_type() does.

    "DECIMAL(10, 2)" gives "numeric(10,2)", "char(3)" gives "character(3)",
    "int[]" and the catalog name "_int4" both give "integer[]". Names the
    pattern does not understand are only lowercased and whitespace-collapsed.
    """
    text = " ".join(str(value).strip().lower().split())
    dimensions = 0
    if text.startswith("_") and "[" not in text:
        # catalog array type names
        text, dimensions = text[1:], 1

    match = _OTHER_TYPE.match(text)
    if not match:
        return text

    base, args, brackets = match.groups()
    base = OTHER_TYPE_CANONICAL_NAMES.get(base.strip(), base.strip())
    dimensions += brackets.count("[")
    if base == "character" and args is None:
        args = "1"

    rendered = base
    if args is not None:
        args = ",".join(part.strip() for part in args.split(","))
        head, _, tail = base.partition(" ")
        if tail and head in ("timestamp", "time"):
            # precision goes before the zone clause
            rendered = f"{head}({args}) {tail}"
        else:
            rendered = f"{base}({args})"
    return rendered + "[]" * dimensions


def normalize_key(key: Any) -> Optional[str]:
    """Normalise a primary-key or index key to "a,b" form."""
    if key is None:
        return None
    if isinstance(key, (list, tuple)):
        parts = [str(part).strip() for part in key]
    else:
        parts = [part.strip() for part in str(key).split(",")]
    parts = [part for part in parts if part]
    return ",".join(parts) if parts else None


def key_parts(key: str) -> List[str]:
    """Split a normalised key into its field names."""
    return [part for part in key.split(",") if part]


class FieldDefinition(BaseModel):
    """One declared or introspected column."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        arbitrary_types_allowed=True,
        extra="ignore",
    )

    name: str = Field(..., min_length=1, description="Column name")
    type: FieldType = Field(..., description="Logical field type")
    raw_type: Optional[str] = Field(
        None, alias="rawType", description="SQL type name for OTHER fields"
    )
    size: Optional[int] = Field(None, description="Size, varchar only")
    auto_increment: bool = Field(
        False, alias="autoIncrement", description="Identity-generating column"
    )
    primary_key: bool = Field(
        False, alias="primaryKey", description="Advisory primary key marker"
    )
    default_value: Any = Field(
        None, alias="defaultValue", description="Literal or zero-argument callable"
    )
    reserved: bool = Field(False, description="Not materialised as a column")
    client_only: bool = Field(
        False, alias="clientOnly", description="Client-side only, not materialised"
    )
    server_only: bool = Field(
        False, alias="serverOnly", description="Stripped from cleaned records"
    )

    @model_validator(mode="before")
    @classmethod
    def _resolve_declared_type(cls, data: Any) -> Any:
        if not isinstance(data, Mapping) or "type" not in data:
            return data

        data = dict(data)
        declared = data["type"]
        if isinstance(declared, str) and not isinstance(declared, FieldType):
            temporal = _TEMPORAL_PRECISION.match(declared)
            if temporal:
                stripped = temporal.group(1) + temporal.group(2)
                if FieldType.parse(stripped)[0] != FieldType.OTHER:
                    declared = stripped
            sized = _SIZED_TYPE.match(declared)
            if sized:
                base_type = FieldType.parse(sized.group(1))[0]
                if base_type == FieldType.VARCHAR:
                    data.setdefault("size", int(sized.group(2)))
                if base_type != FieldType.OTHER:
                    # precision of known types is not compared
                    declared = sized.group(1)

        field_type, implies_serial = FieldType.parse(declared)
        data["type"] = field_type

        if field_type == FieldType.OTHER and not (data.get("raw_type") or data.get("rawType")):
            if str(declared).strip().lower() != FieldType.OTHER.value:
                data["raw_type"] = str(declared)

        if implies_serial:
            data.pop("autoIncrement", None)
            data["auto_increment"] = True

        if field_type != FieldType.VARCHAR:
            data.pop("size", None)

        return data

    @field_validator("raw_type")
    @classmethod
    def _canonical_raw_type(cls, v: Optional[str]) -> Optional[str]:
        return canonical_type_name(v) if v and v.strip() else None

    @model_validator(mode="after")
    def _check_invariants(self) -> "FieldDefinition":
        if self.type == FieldType.VARCHAR:
            if self.size is None:
                raise ValueError(f"varchar field '{self.name}' requires a size")
            if self.size <= 0:
                raise ValueError(f"field '{self.name}' has invalid size {self.size}")
        if self.type == FieldType.OTHER and not self.raw_type:
            raise ValueError(f"field '{self.name}' of type other requires raw_type")
        return self

    @property
    def family(self) -> TypeFamily:
        return self.type.family

    @property
    def type_tag(self) -> str:
        """Type identity used by compatibility checks."""
        if self.type == FieldType.OTHER:
            return self.raw_type or ""
        return self.type.value

    @property
    def sql_type(self) -> str:
        """Rendered SQL data type, ignoring auto-increment."""
        if self.type == FieldType.VARCHAR:
            return f"varchar({self.size})"
        if self.type == FieldType.OTHER:
            return self.raw_type or ""
        return self.type.sql_name or self.type.value

    @property
    def column_type(self) -> str:
        """Rendered column type for CREATE TABLE / ADD COLUMN."""
        if self.auto_increment and self.type in SERIAL_TYPE_NAMES:
            return SERIAL_TYPE_NAMES[self.type]
        return self.sql_type

    @property
    def is_physical(self) -> bool:
        """Whether this field exists as a database column."""
        return not (self.reserved or self.client_only)

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data rendering, suitable for YAML output."""
        data: Dict[str, Any] = {"name": self.name, "type": self.type.value}
        if self.raw_type:
            data["raw_type"] = self.raw_type
        if self.size is not None:
            data["size"] = self.size
        for flag in ("auto_increment", "primary_key", "reserved", "client_only", "server_only"):
            if getattr(self, flag):
                data[flag] = True
        if self.default_value is not None and not callable(self.default_value):
            data["default_value"] = self.default_value
        return data


def default_value(field: FieldDefinition) -> Any:
    """
    Compute the value a new record (or a backfilled row) gets for a field.

    A declared literal wins, a declared callable is invoked with no
    arguments, otherwise integer-family fields get 0 and everything else
    the empty string.
    """
    if field.default_value is not None:
        if callable(field.default_value):
            return field.default_value()
        return field.default_value
    if field.family == TypeFamily.INTEGER:
        return 0
    return ""


# Other types that accept '' as a value
_TEXTUAL_OTHER_TYPE = re.compile(r"^(character|bpchar|citext|text|name)\b[^\[]*$")


def needs_backfill_default(field: FieldDefinition) -> bool:
    """
    Whether backfilling existing rows requires a declared default.

    The fallback '' is only valid for character, binary and textual other
    types; boolean, real, temporal and the remaining other types reject it.
    """
    if field.auto_increment or field.default_value is not None:
        return False
    if field.family in (TypeFamily.INTEGER, TypeFamily.CHARACTER, TypeFamily.BINARY):
        return False
    if field.family == TypeFamily.OTHER:
        return not _TEXTUAL_OTHER_TYPE.match(field.raw_type or "")
    return True


SeedHook = Callable[..., Any]


class TableDescriptor(BaseModel):
    """Shape of one table: fields, primary key and indexes."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        arbitrary_types_allowed=True,
        extra="ignore",
    )

    name: str = Field(..., min_length=1, description="Table name")
    fields: List[FieldDefinition] = Field(
        default_factory=list, description="Ordered field definitions"
    )
    primary_key: Optional[str] = Field(
        None, alias="primaryKey", description="Field name or comma-joined composite"
    )
    indexes: List[str] = Field(
        default_factory=list, description="Index keys, field name or composite"
    )
    on_create: Optional[Union[str, Callable[..., Any]]] = Field(
        None, alias="onCreate", description="Seeding hook or 'module:function' path"
    )

    # Populated by introspection only
    primary_key_constraint: Optional[str] = Field(
        None, description="Physical primary key constraint name"
    )
    index_names: Dict[str, str] = Field(
        default_factory=dict, description="Index key -> physical index name"
    )
    duplicate_indexes: Dict[str, List[str]] = Field(
        default_factory=dict, description="Index key -> further physical indexes on the same key"
    )

    @field_validator("primary_key", mode="before")
    @classmethod
    def _normalize_primary_key(cls, v: Any) -> Optional[str]:
        return normalize_key(v)

    @field_validator("indexes", mode="before")
    @classmethod
    def _normalize_indexes(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        keys: List[str] = []
        for index in v:
            key = normalize_key(index)
            if key and key not in keys:
                keys.append(key)
        return keys

    @model_validator(mode="after")
    def _check_invariants(self) -> "TableDescriptor":
        seen = set()
        for field in self.fields:
            if field.name in seen:
                raise ValueError(f"duplicate field '{field.name}' in table '{self.name}'")
            seen.add(field.name)

        auto_fields = [f.name for f in self.fields if f.auto_increment]
        if len(auto_fields) > 1:
            raise ValueError(
                f"table '{self.name}' has more than one autoIncrement field: "
                f"{', '.join(auto_fields)}"
            )

        keys = list(self.indexes)
        if self.primary_key:
            keys.append(self.primary_key)
        for key in keys:
            for part in key_parts(key):
                if part not in seen:
                    raise ValueError(
                        f"key '{key}' in table '{self.name}' names unknown field '{part}'"
                    )
        return self

    @classmethod
    def from_declaration(cls, declaration: Union["TableDescriptor", Mapping[str, Any]]) -> "TableDescriptor":
        """Build a descriptor from plain data, wrapping validation errors."""
        if isinstance(declaration, TableDescriptor):
            return declaration
        try:
            return cls.model_validate(declaration)
        except PydanticValidationError as e:
            name = declaration.get("name", "<unnamed>") if isinstance(declaration, Mapping) else "<unnamed>"
            raise ValidationError(f"Invalid schema declaration '{name}': {e}", cause=e) from e

    @property
    def physical_fields(self) -> List[FieldDefinition]:
        """Fields that exist as database columns."""
        return [f for f in self.fields if f.is_physical]

    @property
    def auto_increment_field(self) -> Optional[FieldDefinition]:
        for field in self.physical_fields:
            if field.auto_increment:
                return field
        return None

    @property
    def effective_primary_key(self) -> Optional[str]:
        """Declared primary key, else the auto-increment field."""
        if self.primary_key:
            return self.primary_key
        auto_field = self.auto_increment_field
        return auto_field.name if auto_field else None

    def field(self, name: str) -> Optional[FieldDefinition]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def has_field(self, name: str) -> bool:
        return self.field(name) is not None

    def new_record(self, example: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Record with every physical field at its default, merged with example."""
        record = {f.name: default_value(f) for f in self.physical_fields}
        record.update(example or {})
        return record

    def clean(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        """Copy of record without serverOnly fields."""
        server_only = {f.name for f in self.fields if f.server_only}
        return {k: v for k, v in record.items() if k not in server_only}

    def resolve_on_create(self) -> Optional[SeedHook]:
        """Return the seeding hook, importing it when declared as a path."""
        if self.on_create is None or callable(self.on_create):
            return self.on_create

        module_name, _, attr = self.on_create.partition(":")
        if not module_name or not attr:
            raise ConfigurationError(
                f"Invalid on_create path '{self.on_create}' for table '{self.name}', "
                f"expected 'package.module:function'"
            )
        try:
            hook = getattr(importlib.import_module(module_name), attr)
        except (ImportError, AttributeError) as e:
            raise ConfigurationError(
                f"Cannot import on_create hook '{self.on_create}' for table '{self.name}'",
                cause=e,
            ) from e
        if not callable(hook):
            raise ConfigurationError(f"on_create hook '{self.on_create}' is not callable")
        return hook

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data rendering, suitable for YAML output."""
        data: Dict[str, Any] = {
            "name": self.name,
            "fields": [f.to_dict() for f in self.fields],
        }
        if self.primary_key:
            data["primary_key"] = self.primary_key
        if self.indexes:
            data["indexes"] = list(self.indexes)
        return data
