"""
Postgres Session

A single owned asyncpg connection with retrying connection setup, plain
statement execution and out-of-band query cancellation.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

import asyncpg
from asyncpg.exceptions import (
    CannotConnectNowError,
    InterfaceError,
    PostgresError,
    TooManyConnectionsError,
)

from psqlchunks.config import settings
from psqlchunks.core.errors import ConnectionLost, StatementDispatchError

logger = logging.getLogger(__name__)


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


@dataclass(frozen=True)
class CancelHandle:
    """
    Everything needed to cancel the statement running on one backend.

    The handle does not touch the connection it was derived from, so it can
    be used from another task, or from another thread with its own event
    loop, while that connection is blocked waiting for a reply.
    """

    host: Optional[str]
    port: int
    database: Optional[str]
    user: Optional[str]
    password: Optional[str]
    backend_pid: int
    timeout: float = 10.0

    async def cancel(self) -> tuple[bool, str]:
        """
        Ask the server to cancel whatever the backend is running.

        Returns:
            (delivered, error message). A delivered request does not mean
            the statement has stopped yet.
        """
        conn = None
        try:
            conn = await asyncpg.connect(
                host=self.host,
                port=self.port,
                database=self.database,
                user=self.user,
                password=self.password,
                timeout=self.timeout,
            )
            signalled = await conn.fetchval(
                "SELECT pg_cancel_backend($1)", self.backend_pid
            )
        except (PostgresError, InterfaceError, OSError, asyncio.TimeoutError) as e:
            logger.debug(f"could not cancel running query: {e}")
            return False, str(e)
        finally:
            if conn is not None:
                await conn.close()

        if not signalled:
            msg = f"backend {self.backend_pid} could not be signalled"
            logger.debug(f"could not cancel running query: {msg}")
            return False, msg

        logger.debug(f"cancel request delivered to backend {self.backend_pid}")
        return True, ""


class PostgresSession:
    """
    One dedicated Postgres connection with an explicit open/close lifecycle.

    Usage:
        async with PostgresSession(host, 5432, "db", "user", "pw") as session:
            await session.execute("select 1")
    """

    def __init__(
        self,
        host: Optional[str],
        port: int,
        database: Optional[str],
        user: Optional[str],
        password: Optional[str],
        connect_timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        """
        Initialize the session (does not connect yet).

        Args:
            host: Database host, None for the libpq default
            port: Database port
            database: Database name
            user: Username
            password: Password
            connect_timeout: Connection establishment timeout in seconds
            max_retries: Max attempts for transient connection failures
            retry_delay: Base delay between attempts in seconds
        """
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.connect_timeout = connect_timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay

        self._conn: Optional[asyncpg.Connection] = None
        self.last_error = ""

    @property
    def dsn_label(self) -> str:
        return f"{self.user or ''}@{self.host or 'localhost'}:{self.port}/{self.database or ''}"

    async def connect(self) -> None:
        """
        Open the connection.

        Raises:
            ConnectionLost: if no connection could be established
        """
        if self.is_connected():
            return

        logger.info(f"Connecting to Postgres {self.dsn_label}")

        for attempt in range(self.max_retries):
            try:
                self._conn = await asyncpg.connect(
                    host=self.host,
                    port=self.port,
                    database=self.database,
                    user=self.user,
                    password=self.password,
                    timeout=self.connect_timeout,
                )
                logger.debug("got a working db connection")
                return

            except (CannotConnectNowError, TooManyConnectionsError) as e:
                self.last_error = str(e)
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"Connection attempt {attempt + 1} failed, retrying: {e}"
                    )
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
                else:
                    logger.error(
                        f"Failed to connect after {self.max_retries} attempts"
                    )
                    raise ConnectionLost(f"could not connect: {e}") from e
            except (PostgresError, InterfaceError, OSError, asyncio.TimeoutError) as e:
                self.last_error = str(e)
                logger.error(f"Could not connect to {self.dsn_label}: {e}")
                raise ConnectionLost(f"could not connect: {e}") from e

    def is_connected(self) -> bool:
        return self._conn is not None and not self._conn.is_closed()

    async def execute(self, sql: str, *, silent: bool = False) -> str:
        """
        Run an engine-issued statement (transaction and savepoint control).

        Any failure, including one reported by the server, is fatal for the
        session here.

        Raises:
            ConnectionLost: if there is no usable connection
            StatementDispatchError: if the statement failed
        """
        conn = self._require_connection()
        logger.debug(f"executing sql: {sql}")
        try:
            return await conn.execute(sql)
        except PostgresError as e:
            self.last_error = str(e)
            err = StatementDispatchError(sql, getattr(e, "message", None) or str(e))
            if not silent:
                logger.error(str(err))
            raise err from e
        except (InterfaceError, OSError) as e:
            self.last_error = str(e)
            logger.error(f"dispatching {sql!r} failed: {e}")
            raise StatementDispatchError(sql, str(e)) from e

    async def execute_batch(self, sql: str) -> Optional[PostgresError]:
        """
        Run user SQL (possibly several statements) as one batch.

        Returns:
            The error reported by the server, or None on success.

        Raises:
            ConnectionLost: if there is no usable connection
            StatementDispatchError: if the batch could not be sent or its
                result could not be read
        """
        conn = self._require_connection()
        try:
            await conn.execute(sql)
        except PostgresError as e:
            self.last_error = str(e)
            return e
        except (InterfaceError, OSError) as e:
            self.last_error = str(e)
            logger.error(f"could not dispatch chunk sql: {e}")
            raise StatementDispatchError(sql, str(e)) from e
        return None

    async def set_encoding(self, encoding: Optional[str]) -> bool:
        """Set the client encoding. Returns False if the server rejects it."""
        if not encoding:
            return False
        try:
            await self.execute(
                f"SET client_encoding TO {_quote_literal(encoding)}", silent=True
            )
        except StatementDispatchError as e:
            logger.warning(f"could not set client encoding {encoding!r}: {e}")
            return False
        return True

    def cancel_handle(self) -> Optional[CancelHandle]:
        """Build a cancellation handle for the live backend, if any."""
        if not self.is_connected():
            return None
        return CancelHandle(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            backend_pid=self._conn.get_server_pid(),
            timeout=self.connect_timeout,
        )

    async def close(self) -> None:
        """Close the connection. Failures are logged, never raised."""
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            await conn.close()
        except (PostgresError, InterfaceError, OSError) as e:
            logger.warning(f"error while closing connection: {e}")
        else:
            logger.debug("Postgres connection closed")

    def _require_connection(self) -> asyncpg.Connection:
        if not self.is_connected():
            logger.warning("no db connection")
            raise ConnectionLost()
        return self._conn

    async def __aenter__(self) -> "PostgresSession":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


def session_from_settings(**overrides: Any) -> PostgresSession:
    """
    Build a session from application settings.

    Keyword overrides with a value of None are ignored so that unset
    command line flags fall back to the configured values.
    """
    params: dict[str, Any] = {
        "host": settings.POSTGRES_HOST,
        "port": settings.POSTGRES_PORT,
        "database": settings.POSTGRES_DATABASE,
        "user": settings.POSTGRES_USER,
        "password": settings.POSTGRES_PASSWORD,
        "connect_timeout": settings.POSTGRES_CONNECT_TIMEOUT,
        "max_retries": settings.POSTGRES_CONNECT_RETRIES,
        "retry_delay": settings.POSTGRES_RETRY_DELAY,
    }
    params.update({k: v for k, v in overrides.items() if v is not None})
    return PostgresSession(**params)
