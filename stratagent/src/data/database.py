"""
Database Connection Pool - Async PostgreSQL connection management.

This module provides:
- Connection pool creation and management
- Transactions for compare-and-set updates
- Query helpers that retry on connection loss with exponential backoff
- Health checks
"""

import asyncio
import logging
import random
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

import asyncpg

from ..errors import PersistenceError

logger = logging.getLogger(__name__)


DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 0.5  # seconds
DEFAULT_MAX_DELAY = 30.0  # seconds

_OPERATIONS = ('fetch', 'fetchrow', 'fetchval', 'execute')


@dataclass
class DatabaseConfig:
    """Database connection configuration."""
    host: str = 'localhost'
    port: int = 5432
    database: str = 'stratagent'
    user: str = 'postgres'
    password: str = ''
    min_connections: int = 2
    max_connections: int = 10
    command_timeout: int = 30
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_base_delay: float = DEFAULT_BASE_DELAY
    retry_max_delay: float = DEFAULT_MAX_DELAY


class DatabasePool:
    """
    Async PostgreSQL connection pool.

    Used by the Postgres-backed strategy store and approval queue.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool: Optional[asyncpg.Pool] = None
        self._connected = False

    async def connect(self) -> None:
        """Create the connection pool."""
        if self._pool is not None:
            return

        try:
            self._pool = await asyncpg.create_pool(
                host=self.config.host,
                port=self.config.port,
                database=self.config.database,
                user=self.config.user,
                password=self.config.password,
                min_size=self.config.min_connections,
                max_size=self.config.max_connections,
                command_timeout=self.config.command_timeout,
            )
            self._connected = True
            logger.info(f"Database pool created: {self.config.host}:{self.config.port}/{self.config.database}")
        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"Failed to create database pool: {e}")
            raise PersistenceError(f"Cannot connect to database: {e}") from e

    async def disconnect(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            self._connected = False
            logger.info("Database pool closed")

    @property
    def is_connected(self) -> bool:
        return self._connected and self._pool is not None

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a connection from the pool."""
        if not self._pool:
            raise PersistenceError("Database pool not connected")

        async with self._pool.acquire() as connection:
            yield connection

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Run statements in one atomic transaction.

        Usage:
            async with db.transaction() as conn:
                row = await conn.fetchrow("SELECT ... FOR UPDATE", key)
                await conn.execute("UPDATE ...")
        """
        if not self._pool:
            raise PersistenceError("Database pool not connected")

        async with self._pool.acquire() as connection:
            async with connection.transaction():
                yield connection

    def _backoff_delay(self, attempt: int) -> float:
        delay = min(
            self.config.retry_base_delay * (2 ** (attempt - 1)),
            self.config.retry_max_delay,
        )
        # 0-25% jitter
        return delay + delay * random.uniform(0, 0.25)

    async def reconnect(self) -> None:
        """
        Drop the current pool and reconnect with exponential backoff.

        Raises:
            PersistenceError: If every attempt fails
        """
        if self._pool is not None:
            try:
                await self._pool.close()
            except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
                logger.warning(f"Error closing pool during reconnect: {e}")
            finally:
                self._pool = None
                self._connected = False

        last_error = None
        for attempt in range(1, self.config.max_retries + 1):
            try:
                await self.connect()
                logger.info(f"Reconnected to database on attempt {attempt}")
                return
            except PersistenceError as e:
                last_error = e
                if attempt < self.config.max_retries:
                    delay = self._backoff_delay(attempt)
                    logger.warning(
                        f"Reconnect attempt {attempt}/{self.config.max_retries} failed: {e}. "
                        f"Retrying in {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)

        raise PersistenceError(
            f"Failed to reconnect after {self.config.max_retries} attempts: {last_error}"
        )

    async def fetch(self, query: str, *args) -> list:
        return await self.execute_with_retry('fetch', query, *args)

    async def fetchrow(self, query: str, *args) -> Optional[asyncpg.Record]:
        return await self.execute_with_retry('fetchrow', query, *args)

    async def fetchval(self, query: str, *args) -> Any:
        return await self.execute_with_retry('fetchval', query, *args)

    async def execute(self, query: str, *args) -> str:
        return await self.execute_with_retry('execute', query, *args)

    async def execute_with_retry(
        self,
        operation: str,
        query: str,
        *args,
        max_retries: Optional[int] = None
    ) -> Any:
        """
        Run a single statement, retrying on connection errors only.

        Args:
            operation: 'fetch', 'fetchrow', 'fetchval' or 'execute'
            query: SQL statement
            *args: Statement arguments
            max_retries: Override the configured retry count

        Returns:
            Statement result

        Raises:
            PersistenceError: If all retries fail or the statement errors
        """
        if operation not in _OPERATIONS:
            raise ValueError(f"Unknown operation: {operation}")

        retries = max_retries if max_retries is not None else self.config.max_retries
        last_error = None

        for attempt in range(1, retries + 1):
            try:
                async with self.acquire() as conn:
                    return await getattr(conn, operation)(query, *args)

            except (asyncpg.PostgresConnectionError, asyncpg.InterfaceError) as e:
                last_error = e
                logger.warning(f"Database connection error on attempt {attempt}/{retries}: {e}")
                if attempt < retries:
                    try:
                        await self.reconnect()
                    except PersistenceError as reconnect_error:
                        logger.error(f"Reconnection failed: {reconnect_error}")
            except asyncpg.PostgresError as e:
                # Statement errors are not retried
                raise PersistenceError(f"Database {operation} failed: {e}") from e

        raise PersistenceError(f"Database operation failed after {retries} attempts: {last_error}")

    async def check_health(self) -> dict:
        if not self.is_connected:
            return {'status': 'unhealthy', 'connected': False, 'error': 'Pool not connected'}

        try:
            async with self.acquire() as conn:
                version = await conn.fetchval("SELECT version()")
            return {
                'status': 'healthy',
                'connected': True,
                'version': version,
                'pool_size': self._pool.get_size() if self._pool else 0,
            }
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            return {'status': 'unhealthy', 'connected': False, 'error': str(e)}


def create_pool_from_config(config: dict) -> DatabasePool:
    """
    Create a DatabasePool from the database config file.

    Returns:
        DatabasePool instance (not yet connected)
    """
    conn_config = config.get('connection', {})
    retry_config = config.get('retry', {})

    db_config = DatabaseConfig(
        host=conn_config.get('host', 'localhost'),
        port=int(conn_config.get('port', 5432)),
        database=conn_config.get('database', 'stratagent'),
        user=conn_config.get('user', 'postgres'),
        password=conn_config.get('password', ''),
        min_connections=int(conn_config.get('min_connections', 2)),
        max_connections=int(conn_config.get('max_connections', 10)),
        command_timeout=int(conn_config.get('command_timeout', 30)),
        max_retries=int(retry_config.get('max_retries', DEFAULT_MAX_RETRIES)),
        retry_base_delay=float(retry_config.get('base_delay', DEFAULT_BASE_DELAY)),
        retry_max_delay=float(retry_config.get('max_delay', DEFAULT_MAX_DELAY)),
    )

    return DatabasePool(db_config)
