"""Connection pooling for a single cluster master."""

import asyncio
import contextlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from redisclusterclient.connection import NodeConnection
from redisclusterclient.exceptions import ConnectionError
from redisclusterclient.node_store import SeedEndpoint

# Errors after which a connection is not handed out again.
_BROKEN_CONNECTION_ERRORS = (RedisConnectionError, RedisTimeoutError, ConnectionError, OSError)


class NodePool:
    """Bounded pool of connections to one node."""

    def __init__(
        self,
        endpoint: SeedEndpoint,
        *,
        max_size: int = 10,
        timeout: float = 10.0,
    ) -> None:
        """Initialize connection pool.

        Args:
            endpoint: Node address and optional password
            max_size: Maximum connections allowed
            timeout: Connection timeout, also the wait limit in acquire()
        """
        self._endpoint = endpoint
        self._max_size = max_size
        self._timeout = timeout

        self._pool: asyncio.Queue[NodeConnection] = asyncio.Queue(maxsize=max_size)
        self._size = 0
        self._condition = asyncio.Condition()
        self._closed = False

    @property
    def endpoint(self) -> SeedEndpoint:
        return self._endpoint

    @property
    def identity_key(self) -> str:
        return self._endpoint.identity_key

    @property
    def size(self) -> int:
        """Number of open connections, idle or in use."""
        return self._size

    @property
    def closed(self) -> bool:
        return self._closed

    async def _create_connection(self) -> NodeConnection:
        """Open a new connection to the node."""
        conn = NodeConnection(self._endpoint, timeout=self._timeout)
        await conn.connect()
        return conn

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[NodeConnection]:
        """Acquire a connection from the pool."""
        conn = await self._checkout()

        try:
            if not conn.is_connected:
                await conn.connect()

            yield conn
        except _BROKEN_CONNECTION_ERRORS:
            await self._discard(conn)
            raise
        except BaseException:
            await self._release(conn)
            raise
        else:
            await self._release(conn)

    async def _checkout(self) -> NodeConnection:
        """Take an idle connection, open a new one, or wait for either."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout

        async with self._condition:
            while True:
                if self._closed:
                    raise ConnectionError("Pool is closed")
                if not self._pool.empty():
                    return self._pool.get_nowait()
                if self._size < self._max_size:
                    # Reserve the slot; the connection is opened outside the lock.
                    self._size += 1
                    break

                remaining = deadline - loop.time()
                try:
                    if remaining <= 0:
                        raise TimeoutError
                    await asyncio.wait_for(self._condition.wait(), timeout=remaining)
                except TimeoutError as e:
                    raise ConnectionError(
                        f"Timed out waiting for a connection to {self._endpoint.address}"
                    ) from e

        try:
            return await self._create_connection()
        except BaseException:
            await self._forget()
            raise

    async def _forget(self) -> None:
        """Give back a reserved slot and wake one waiter."""
        async with self._condition:
            self._size -= 1
            self._condition.notify()

    async def _discard(self, conn: NodeConnection) -> None:
        with contextlib.suppress(Exception):
            await conn.close()
        await self._forget()

    async def _release(self, conn: NodeConnection) -> None:
        async with self._condition:
            if not self._closed and not self._pool.full():
                self._pool.put_nowait(conn)
                self._condition.notify()
                return
        await self._discard(conn)

    async def close(self) -> None:
        """Close all idle connections; in-use ones are closed on release.

        Tasks waiting in acquire() fail with ConnectionError.
        """
        if self._closed:
            return
        self._closed = True

        idle: list[NodeConnection] = []
        async with self._condition:
            while not self._pool.empty():
                idle.append(self._pool.get_nowait())
            self._size -= len(idle)
            self._condition.notify_all()

        for conn in idle:
            with contextlib.suppress(Exception):
                await conn.close()

    def __repr__(self) -> str:
        return f"<NodePool {self._endpoint.address} size={self._size}/{self._max_size}>"
