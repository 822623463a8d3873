"""Database connection pool management.

This module provides the PoolManager, which owns one asyncpg connection pool
for the target database. The pool is created lazily on first use and can be
shared by any number of executors; connections are always borrowed through
``acquire()`` so they return to the pool on every exit path.
"""

import asyncio
import logging
import ssl
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg
from asyncpg import Connection, Pool

from sequelae_mcp.config.settings import DatabaseConfig
from sequelae_mcp.models.errors import ConfigurationError, DatabaseConnectionError
from sequelae_mcp.observability.metrics import metrics

logger = logging.getLogger(__name__)

# Failures that mean "could not get a working connection".
_CONNECT_ERRORS = (
    OSError,
    ssl.SSLError,
    TimeoutError,
    asyncpg.InterfaceError,
    asyncpg.InvalidAuthorizationSpecificationError,
    asyncpg.InvalidPasswordError,
    asyncpg.InvalidCatalogNameError,
    asyncpg.CannotConnectNowError,
    asyncpg.TooManyConnectionsError,
    asyncpg.PostgresConnectionError,
)


async def create_pool(config: DatabaseConfig) -> Pool:
    """Create a connection pool for the configured database.

    Args:
        config: Database configuration containing the connection URI and
            pool settings.

    Returns:
        Pool: An asyncpg connection pool instance.

    Raises:
        ConfigurationError: If no connection URI is configured.
        DatabaseConnectionError: If connecting to the database fails.

    Example:
        >>> config = DatabaseConfig(url="postgresql://app@localhost/mydb")
        >>> pool = await create_pool(config)
        >>> async with pool.acquire() as conn:
        ...     result = await conn.fetch("SELECT 1")
    """
    if not config.url:
        raise ConfigurationError("DATABASE_URL environment variable is not set")

    try:
        pool = await asyncpg.create_pool(
            dsn=config.url,
            min_size=min(config.min_pool_size, config.max_pool_size),
            max_size=config.max_pool_size,
            ssl=config.ssl_mode,
            statement_cache_size=config.statement_cache_size,
            timeout=config.pool_timeout,
        )
    except _CONNECT_ERRORS as e:
        raise DatabaseConnectionError(
            message=f"Failed to connect to database: {e!s}",
            details={"url": config.safe_url, "error_type": type(e).__name__},
        ) from e

    if pool is None:
        raise DatabaseConnectionError(
            message="Failed to create connection pool",
            details={"url": config.safe_url},
        )

    return pool


class PoolManager:
    """Owns the connection pool for one database.

    The pool is created on the first ``acquire()`` call. Concurrent first
    borrowers share a single creation. After ``close()`` the manager rejects
    further acquisitions.

    Example:
        >>> manager = PoolManager(DatabaseConfig(url="postgresql://localhost/app"))
        >>> async with manager.acquire() as conn:
        ...     await conn.fetchval("SELECT 1")
        >>> await manager.close()
    """

    def __init__(self, config: DatabaseConfig) -> None:
        """Initialize pool manager.

        Args:
            config: Database configuration used to build the pool.
        """
        self.config = config
        self._pool: Pool | None = None
        self._lock = asyncio.Lock()
        self._closed = False
        self._in_use = 0

    @property
    def closed(self) -> bool:
        """Whether ``close()`` has been called."""
        return self._closed

    @property
    def in_use(self) -> int:
        """Number of connections currently borrowed through this manager."""
        return self._in_use

    async def get_pool(self) -> Pool:
        """Get or lazily create the connection pool.

        Returns:
            Pool: asyncpg connection pool.

        Raises:
            DatabaseConnectionError: If the manager is closed or the pool
                cannot be created.
        """
        if self._closed:
            raise DatabaseConnectionError("Connection pool is closed")

        if self._pool is None:
            async with self._lock:
                if self._closed:
                    raise DatabaseConnectionError("Connection pool is closed")
                if self._pool is None:
                    logger.info(
                        "Initializing connection pool",
                        extra={"database_url": self.config.safe_url},
                    )
                    self._pool = await create_pool(self.config)

        return self._pool

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Connection]:
        """Borrow a connection for the duration of the ``async with`` block.

        Blocks until a connection is free, up to ``pool_timeout`` seconds.

        Yields:
            Connection: A leased asyncpg connection.

        Raises:
            DatabaseConnectionError: If no connection can be obtained.
        """
        pool = await self.get_pool()
        try:
            connection = await pool.acquire(timeout=self.config.pool_timeout)
        except _CONNECT_ERRORS as e:
            raise DatabaseConnectionError(
                message=f"Failed to acquire database connection: {e!s}",
                details={"url": self.config.safe_url, "error_type": type(e).__name__},
            ) from e

        self._in_use += 1
        metrics.set_pool_connections_in_use(self._in_use)
        try:
            yield connection
        finally:
            self._in_use -= 1
            metrics.set_pool_connections_in_use(self._in_use)
            await pool.release(connection)

    async def close(self, timeout: float | None = None) -> None:  # noqa: ASYNC109
        """Close the pool gracefully, terminating it if that takes too long.

        Safe to call more than once.

        Args:
            timeout: Seconds to wait for in-flight connections before forcing
                termination. Defaults to ``config.close_timeout``.
        """
        if self._closed:
            return
        self._closed = True

        async with self._lock:
            pool, self._pool = self._pool, None

        if pool is None:
            return

        timeout = timeout if timeout is not None else self.config.close_timeout
        try:
            # Try graceful close with timeout
            await asyncio.wait_for(pool.close(), timeout=timeout)
            logger.info("Connection pool closed gracefully")
        except TimeoutError:
            logger.warning("Graceful pool close timed out, forcing termination")
            pool.terminate()
        except Exception as e:
            logger.error(f"Error closing connection pool: {e!s}")
            pool.terminate()


# Process-wide shared manager
_shared_manager: PoolManager | None = None


def get_pool_manager(config: DatabaseConfig) -> PoolManager:
    """Get or create the process-wide pool manager.

    Args:
        config: Database configuration used when the manager is first created.

    Returns:
        PoolManager: The shared manager instance.
    """
    global _shared_manager
    if _shared_manager is None or _shared_manager.closed:
        _shared_manager = PoolManager(config)
    return _shared_manager


async def close_pool_manager() -> None:
    """Close and forget the process-wide pool manager."""
    global _shared_manager
    manager, _shared_manager = _shared_manager, None
    if manager is not None:
        await manager.close()
