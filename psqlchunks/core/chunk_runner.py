"""
Chunk Runner

Executes chunks one after another inside a single outer transaction. Every
chunk gets its own savepoint, so a chunk rejected by the server is rolled
back on its own while the work of earlier chunks stays in place. Whether
the outer transaction is committed is decided once, in ``finalize``.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from asyncpg.exceptions import PostgresError

from psqlchunks.connectors.postgres_session import PostgresSession
from psqlchunks.core.errors import ConnectionLost, DbError
from psqlchunks.core.filters import FilterChain
from psqlchunks.core.timing import elapsed_between, now_ns
from psqlchunks.models import (
    LINE_NUMBER_NOT_AVAILABLE,
    Chunk,
    ChunkStatus,
    Diagnostics,
    RunOutcome,
    TransactionOutcome,
)

logger = logging.getLogger(__name__)

BEGIN_SQL = "begin;"
COMMIT_SQL = "commit;"
ROLLBACK_SQL = "rollback;"
SAVEPOINT_SQL = "savepoint chunk;"
RELEASE_SAVEPOINT_SQL = "release savepoint chunk;"
ROLLBACK_TO_SAVEPOINT_SQL = "rollback to savepoint chunk;"


def error_line_for_position(
    sql: str, start_line: int, position: Optional[str]
) -> Optional[int]:
    """
    Map a server-reported statement position onto an absolute source line.

    Postgres reports a 1-based character position into the submitted text.
    Errors at the end of input are reported one past the last character and
    map to the line holding that character.

    Returns:
        The absolute line, ``LINE_NUMBER_NOT_AVAILABLE`` if no position was
        reported, or None if the position lies outside of ``sql``.
    """
    if not position:
        logger.debug("got an empty statement position")
        return LINE_NUMBER_NOT_AVAILABLE

    try:
        pos = int(position)
    except ValueError:
        logger.error(f"statement position {position!r} is not a number")
        return None

    if sql and pos == len(sql) + 1:
        # "at end of input" points just past the last character
        logger.debug(f"statement position {pos} is at the end of the sql string")
        pos = len(sql)

    if pos < 1 or pos > len(sql):
        logger.error(
            f"statement position {pos} is beyond the length of sql string "
            f"({len(sql)})"
        )
        return None

    return start_line + sql.count("\n", 0, pos - 1)


class ChunkRunner:
    """
    Runs chunks against one Postgres session.

    Not safe for concurrent ``run_chunk``/``finalize`` calls; ``cancel`` is
    the only method meant to be called while a chunk is running.

    Usage:
        async with ChunkRunner(session, do_commit=True) as runner:
            for chunk in chain.select(chunks):
                await runner.run_chunk(chunk)
            outcome = await runner.finalize()
    """

    def __init__(self, session: PostgresSession, do_commit: bool = False):
        self.session = session
        self.do_commit = do_commit
        self.failed_count = 0
        self.in_transaction = False

    async def connect(self) -> None:
        await self.session.connect()

    def is_connected(self) -> bool:
        return self.session.is_connected()

    async def set_encoding(self, encoding: Optional[str]) -> bool:
        return await self.session.set_encoding(encoding)

    def get_error_message(self) -> str:
        return self.session.last_error

    async def disconnect(self) -> None:
        """Finalize any open transaction, then release the connection."""
        try:
            if self.in_transaction and self.is_connected():
                await self.finalize()
        finally:
            await self._release()

    async def run_chunk(self, chunk: Chunk) -> bool:
        """
        Execute one chunk and record its diagnostics.

        Returns:
            True if the server accepted the chunk's SQL.

        Raises:
            ConnectionLost: if there is no usable connection
            DbError: if the session itself failed (not the chunk's SQL)
        """
        if not self.is_connected():
            raise ConnectionLost()

        await self._begin()

        diagnostics = Diagnostics(status=ChunkStatus.OK)

        start_ns = now_ns()
        await self.session.execute(SAVEPOINT_SQL)
        error = await self.session.execute_batch(chunk.sql)
        diagnostics.runtime = elapsed_between(start_ns, now_ns())

        if error is not None:
            self._record_failure(chunk, diagnostics, error)
        chunk.diagnostics = diagnostics

        if diagnostics.status != ChunkStatus.OK:
            await self.session.execute(ROLLBACK_TO_SAVEPOINT_SQL)
            self.failed_count += 1
        else:
            await self.session.execute(RELEASE_SAVEPOINT_SQL)

        logger.debug(
            f"chunk {chunk.line_range}: {diagnostics.status.value} "
            f"in {diagnostics.runtime_seconds:.3f}s"
        )
        return diagnostics.status == ChunkStatus.OK

    async def run_selected(
        self, chunks: Iterable[Chunk], chain: Optional[FilterChain] = None
    ) -> list[Chunk]:
        """Run the chunks matching ``chain`` in order. Returns the chunks run."""
        selected = list(chunks) if chain is None else chain.select(chunks)
        for chunk in selected:
            await self.run_chunk(chunk)
        return selected

    async def finalize(self) -> RunOutcome:
        """
        Close the outer transaction.

        A run with a failed chunk is always rolled back. A clean run is
        committed only when ``do_commit`` is set.
        """
        failed = self.failed_count
        if failed > 0:
            logger.info(f"{failed} chunk(s) failed, rolling back")
            transaction = await self._rollback()
        else:
            transaction = await self._commit()
        self.failed_count = 0
        return RunOutcome(transaction=transaction, failed_count=failed)

    async def cancel(self) -> tuple[bool, str]:
        """
        Request cancellation of the statement currently running.

        Returns:
            (delivered, error message). Succeeds trivially when there is no
            connection.
        """
        if not self.is_connected():
            logger.debug("not connected - no query to cancel")
            return True, ""

        handle = self.session.cancel_handle()
        if handle is None:
            logger.error("could not get a cancel handle")
            return False, "could not get a cancel handle"
        return await handle.cancel()

    def _record_failure(
        self, chunk: Chunk, diagnostics: Diagnostics, error: PostgresError
    ) -> None:
        diagnostics.status = ChunkStatus.FAIL
        diagnostics.error_line = error_line_for_position(
            chunk.sql, chunk.start_line, getattr(error, "position", None)
        )
        diagnostics.sqlstate = getattr(error, "sqlstate", None) or ""
        diagnostics.msg_primary = getattr(error, "message", None) or ""
        diagnostics.msg_detail = getattr(error, "detail", None) or ""
        diagnostics.msg_hint = getattr(error, "hint", None) or ""

    async def _begin(self) -> None:
        if not self.in_transaction:
            await self.session.execute(BEGIN_SQL)
            self.in_transaction = True

    async def _commit(self) -> TransactionOutcome:
        if not self.do_commit:
            return await self._rollback()

        if not self.in_transaction:
            return TransactionOutcome.NO_TRANSACTION
        await self.session.execute(COMMIT_SQL)
        self.in_transaction = False
        return TransactionOutcome.COMMITTED

    async def _rollback(self) -> TransactionOutcome:
        if not self.in_transaction:
            return TransactionOutcome.NO_TRANSACTION
        await self.session.execute(ROLLBACK_SQL)
        self.in_transaction = False
        return TransactionOutcome.ROLLED_BACK

    async def _release(self) -> None:
        await self.session.close()
        self.in_transaction = False
        self.failed_count = 0

    async def __aenter__(self) -> "ChunkRunner":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            await self.disconnect()
            return

        # never commit on an abnormal exit
        try:
            if self.in_transaction and self.is_connected():
                await self._rollback()
        except DbError as e:
            logger.warning(f"rollback during abnormal exit failed: {e}")
        finally:
            await self._release()
