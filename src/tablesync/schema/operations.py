"""
Statement execution for tablesync.

Runs the statements produced by the DDL emitter strictly in order on a
single pooled connection, optionally inside one transaction.
"""

import logging
from enum import Enum
from typing import List, Sequence

from ..database.connection import ConnectionPool
from ..exceptions import StatementError


logger = logging.getLogger(__name__)


class OperationMode(str, Enum):
    """Schema operation modes."""

    APPLY = "apply"
    DRY_RUN = "dry_run"  # Log statements, execute nothing


class SchemaOperations:
    """
    Executes DDL and backfill statements for one table at a time.

    Without a transaction each statement commits on its own, so a failure
    leaves earlier statements applied. PostgreSQL supports transactional
    DDL, and transactional=True wraps the batch so a failure rolls it back.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        mode: OperationMode = OperationMode.APPLY,
        transactional: bool = False,
    ):
        self.pool = pool
        self.mode = mode
        self.transactional = transactional

    async def execute(self, table: str, statements: Sequence[str]) -> List[str]:
        """
        Run statements in order.

        Raises StatementError for the first statement the database rejects;
        the remaining statements are not run.
        """
        statements = list(statements)
        if not statements:
            return []

        if self.mode == OperationMode.DRY_RUN:
            logger.info(f"DRY RUN: Would execute {len(statements)} statement(s) for {table}")
            for sql in statements:
                logger.info(f"SQL: {sql}")
            return statements

        async with self.pool.acquire() as conn:
            if self.transactional:
                async with conn.transaction():
                    await self._run(conn, table, statements)
            else:
                await self._run(conn, table, statements)

        return statements

    async def _run(self, conn, table: str, statements: List[str]) -> None:
        for sql in statements:
            logger.debug(f"Executing on {table}: {sql}")
            try:
                affected = await self.pool.execute_update(sql, connection=conn)
            except Exception as e:
                logger.error(f"Statement failed for {table}: {sql}: {e}")
                raise StatementError(table, sql, cause=e) from e
            if affected:
                logger.debug(f"{affected} row(s) affected on {table}")
