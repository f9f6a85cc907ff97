"""
Schema registry for tablesync.

The registry owns the declared schemas of one application and keeps the
database in line with them: registering a schema checks for the table
and either creates it or reconciles it. Seeding hooks of newly created
tables are queued and run once, in registration order, when the
application reports it is ready.
"""

import asyncio
import inspect
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .config import ReconciliationConfig
from .database.connection import ConnectionPool
from .database.introspection import SchemaIntrospector
from .exceptions import SchemaNotFoundError, SeedingError
from .schema.changes import StructuralChange
from .schema.ddl import DDLEmitter
from .schema.model import SeedHook, TableDescriptor
from .schema.operations import OperationMode, SchemaOperations
from .schema.reconciler import ReconciliationResult, ReconciliationStatus, SchemaReconciler


logger = logging.getLogger(__name__)

Declaration = Union[TableDescriptor, Mapping[str, Any]]


class SchemaRegistry:
    """Declared schemas of one application and their materialisation."""

    def __init__(self, pool: ConnectionPool, config: Optional[ReconciliationConfig] = None):
        self.pool = pool
        self.config = config or ReconciliationConfig()

        self.introspector = SchemaIntrospector(pool, namespace=self.config.namespace)
        self.reconciler = SchemaReconciler(strict_renames=self.config.strict_renames)
        self.emitter = DDLEmitter(namespace=self.config.namespace, quote=pool.quote)
        self.operations = SchemaOperations(
            pool,
            mode=self.config.mode,
            transactional=self.config.transactional,
        )

        self._schemas: Dict[str, TableDescriptor] = {}
        self._seed_queue: List[Tuple[str, SeedHook]] = []

    @property
    def dry_run(self) -> bool:
        return self.config.mode == OperationMode.DRY_RUN

    @property
    def pending_seed_hooks(self) -> List[str]:
        """Tables whose seeding hooks are queued, in run order."""
        return [table for table, _ in self._seed_queue]

    def names(self) -> List[str]:
        return list(self._schemas)

    def get(self, name: str) -> TableDescriptor:
        """Get a registered or defined schema."""
        try:
            return self._schemas[name]
        except KeyError:
            raise SchemaNotFoundError(name) from None

    def exists(self, name: str) -> bool:
        """Whether a schema of that name has been registered or defined."""
        return name in self._schemas

    def define(self, schema: Declaration) -> TableDescriptor:
        """Store a schema without touching the database, e.g. as a base for extend()."""
        descriptor = TableDescriptor.from_declaration(schema)
        self._schemas[descriptor.name] = descriptor
        logger.debug(f"Defined schema {descriptor.name}")
        return descriptor

    async def register(self, schema: Declaration) -> ReconciliationResult:
        """
        Register a schema and materialise it.

        The table is created when it does not exist, otherwise it is
        reconciled with the declaration. A later registration under the
        same name replaces the earlier one.
        """
        descriptor = self.define(schema)
        return await self.reconcile(descriptor.name)

    async def extend(self, base: Union[str, Declaration], child: Declaration) -> ReconciliationResult:
        """
        Register a schema built on top of another one.

        The new schema has the base fields followed by the child fields,
        the base primary key and the base indexes followed by the child's.
        """
        if isinstance(base, str):
            base_schema = self.get(base)
        else:
            base_schema = TableDescriptor.from_declaration(base)

        if isinstance(child, TableDescriptor):
            name, fields = child.name, list(child.fields)
            indexes, on_create = list(child.indexes), child.on_create
        else:
            name = child.get("name")
            fields = list(child.get("fields") or [])
            indexes = child.get("indexes") or []
            if isinstance(indexes, str):
                indexes = [indexes]
            on_create = child.get("on_create", child.get("onCreate"))

        return await self.register(
            {
                "name": name,
                "fields": list(base_schema.fields) + fields,
                "primary_key": base_schema.primary_key,
                "indexes": list(base_schema.indexes) + list(indexes),
                "on_create": on_create,
            }
        )

    async def table_exists(self, name: str) -> bool:
        return await self.introspector.table_exists(name)

    async def create(self, name: str, drop_existing: bool = False) -> ReconciliationResult:
        """Create the table for a schema and queue its seeding hook."""
        descriptor = self.get(name)
        start_time = asyncio.get_running_loop().time()

        statements = self.emitter.emit_create(descriptor, drop_existing=drop_existing)
        hook = descriptor.resolve_on_create()
        await self.operations.execute(descriptor.name, statements)

        if self.dry_run:
            status = ReconciliationStatus.PLANNED
        else:
            status = ReconciliationStatus.CREATED
            if hook is not None:
                self._seed_queue.append((descriptor.name, hook))
            logger.info(f"Created table {descriptor.name}")

        return ReconciliationResult(
            table=descriptor.name,
            status=status,
            statements=statements,
            execution_time_ms=(asyncio.get_running_loop().time() - start_time) * 1000,
        )

    async def reconcile(self, name: str) -> ReconciliationResult:
        """
        Bring a table in line with its registered schema.

        A table that does not exist (yet, or any more) is created instead.
        """
        descriptor = self.get(name)
        if not await self.table_exists(descriptor.name):
            logger.info(f"Table {descriptor.name} does not exist, creating it")
            return await self.create(descriptor.name)

        start_time = asyncio.get_running_loop().time()

        changes, statements = await self._changes_for(descriptor)
        for change in changes:
            if change.is_destructive:
                logger.warning(f"Destructive change on {descriptor.name}: {change.description}")

        await self.operations.execute(descriptor.name, statements)

        if not changes:
            status = ReconciliationStatus.UNCHANGED
            logger.info(f"Table {descriptor.name} is up to date")
        elif self.dry_run:
            status = ReconciliationStatus.PLANNED
        else:
            status = ReconciliationStatus.ALTERED
            logger.info(f"Altered table {descriptor.name}: {len(changes)} change(s)")

        return ReconciliationResult(
            table=descriptor.name,
            status=status,
            changes=changes,
            statements=statements,
            execution_time_ms=(asyncio.get_running_loop().time() - start_time) * 1000,
        )

    async def plan(self, name: str) -> ReconciliationResult:
        """Compute what register() would do for a schema, executing nothing."""
        descriptor = self.get(name)

        if not await self.table_exists(descriptor.name):
            return ReconciliationResult(
                table=descriptor.name,
                status=ReconciliationStatus.PLANNED,
                statements=self.emitter.emit_create(descriptor),
            )

        changes, statements = await self._changes_for(descriptor)
        return ReconciliationResult(
            table=descriptor.name,
            status=ReconciliationStatus.PLANNED if changes else ReconciliationStatus.UNCHANGED,
            changes=changes,
            statements=statements,
        )

    async def _changes_for(
        self, descriptor: TableDescriptor
    ) -> Tuple[List[StructuralChange], List[str]]:
        existing = await self.introspector.read(descriptor.name)
        changes = self.reconciler.diff(descriptor, existing)
        return changes, self.emitter.emit_all(changes, descriptor.name)

    async def run_seed_hooks(self) -> List[str]:
        """
        Run queued seeding hooks once, in registration order.

        Each hook is called with this registry and may be a coroutine
        function. Returns the tables whose hooks ran.
        """
        queue, self._seed_queue = self._seed_queue, []
        ran: List[str] = []

        for table, hook in queue:
            logger.info(f"Running seeding hook for {table}")
            try:
                result = hook(self)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Seeding hook failed for {table}: {e}")
                raise SeedingError(table, cause=e) from e
            ran.append(table)

        return ran

    async def startup(self, schemas: Sequence[Declaration]) -> List[ReconciliationResult]:
        """Register every schema in order, then run the seeding hooks."""
        results = []
        for schema in schemas:
            results.append(await self.register(schema))
        await self.run_seed_hooks()
        return results

    def new_record(self, name: str, example: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """New record for a schema, see TableDescriptor.new_record()."""
        return self.get(name).new_record(example)

    def clean(self, name: str, record: Mapping[str, Any]) -> Dict[str, Any]:
        """Record without the schema's serverOnly fields."""
        return self.get(name).clean(record)
