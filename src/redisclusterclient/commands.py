"""Redis commands routed through the cluster client.

Keyed commands go to the master owning the key's slot. Server commands
(``FLUSHALL``, ``CONFIG SET``, ``KEYS`` ...) run on every master, or on one
master when ``node`` is given.
"""

import builtins
import random
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, TypeVar

from redis.asyncio import Redis

from redisclusterclient.exceptions import ClusterError
from redisclusterclient.node_store import SeedEndpoint
from redisclusterclient.topology import NodeDescriptor

T = TypeVar("T")


class ClusterCommands(ABC):
    """Command surface on top of ``execute`` and ``execute_on_slot``."""

    @abstractmethod
    async def execute(
        self,
        keys: str | Sequence[str],
        operation: Callable[[Redis], Awaitable[T]],
        *,
        retries: int | None = None,
    ) -> T: ...

    @abstractmethod
    async def execute_on_slot(
        self,
        slot: int,
        operation: Callable[[Redis], Awaitable[T]],
        *,
        retries: int | None = None,
    ) -> T: ...

    @property
    @abstractmethod
    def masters(self) -> tuple[NodeDescriptor, ...]: ...

    @abstractmethod
    def master_for(self, node: str | SeedEndpoint) -> NodeDescriptor | None: ...

    # Keys

    async def delete(self, *keys: str) -> int:
        return await self.execute(keys, lambda c: c.delete(*keys))

    async def exists(self, *keys: str) -> int:
        return await self.execute(keys, lambda c: c.exists(*keys))

    async def expire(self, key: str, seconds: int) -> bool:
        return await self.execute(key, lambda c: c.expire(key, seconds))

    async def ttl(self, key: str) -> int:
        return await self.execute(key, lambda c: c.ttl(key))

    async def persist(self, key: str) -> bool:
        return await self.execute(key, lambda c: c.persist(key))

    async def type(self, key: str) -> bytes:
        return await self.execute(key, lambda c: c.type(key))

    async def rename(self, src: str, dst: str) -> bool:
        return await self.execute([src, dst], lambda c: c.rename(src, dst))

    # Strings

    async def get(self, key: str) -> bytes | None:
        return await self.execute(key, lambda c: c.get(key))

    async def set(
        self,
        key: str,
        value: Any,
        *,
        ex: int | None = None,
        px: int | None = None,
        nx: bool = False,
        xx: bool = False,
    ) -> bool | None:
        return await self.execute(
            key, lambda c: c.set(key, value, ex=ex, px=px, nx=nx, xx=xx)
        )

    async def getset(self, key: str, value: Any) -> bytes | None:
        return await self.execute(key, lambda c: c.getset(key, value))

    async def incr(self, key: str) -> int:
        return await self.execute(key, lambda c: c.incr(key))

    async def incrby(self, key: str, amount: int) -> int:
        return await self.execute(key, lambda c: c.incrby(key, amount))

    async def decr(self, key: str) -> int:
        return await self.execute(key, lambda c: c.decr(key))

    async def append(self, key: str, value: Any) -> int:
        return await self.execute(key, lambda c: c.append(key, value))

    async def strlen(self, key: str) -> int:
        return await self.execute(key, lambda c: c.strlen(key))

    async def mget(self, *keys: str) -> list[bytes | None]:
        return await self.execute(keys, lambda c: c.mget(keys))

    async def mset(self, mapping: Mapping[str, Any]) -> bool:
        return await self.execute(list(mapping), lambda c: c.mset(dict(mapping)))

    # Hashes

    async def hget(self, key: str, field: str) -> bytes | None:
        return await self.execute(key, lambda c: c.hget(key, field))

    async def hset(self, key: str, field: str, value: Any) -> int:
        return await self.execute(key, lambda c: c.hset(key, field, value))

    async def hgetall(self, key: str) -> dict[bytes, bytes]:
        return await self.execute(key, lambda c: c.hgetall(key))

    async def hdel(self, key: str, *fields: str) -> int:
        return await self.execute(key, lambda c: c.hdel(key, *fields))

    # Lists

    async def lpush(self, key: str, *values: Any) -> int:
        return await self.execute(key, lambda c: c.lpush(key, *values))

    async def rpush(self, key: str, *values: Any) -> int:
        return await self.execute(key, lambda c: c.rpush(key, *values))

    async def lpop(self, key: str) -> bytes | None:
        return await self.execute(key, lambda c: c.lpop(key))

    async def rpop(self, key: str) -> bytes | None:
        return await self.execute(key, lambda c: c.rpop(key))

    async def lrange(self, key: str, start: int, end: int) -> list[bytes]:
        return await self.execute(key, lambda c: c.lrange(key, start, end))

    async def llen(self, key: str) -> int:
        return await self.execute(key, lambda c: c.llen(key))

    # Sets

    async def sadd(self, key: str, *members: Any) -> int:
        return await self.execute(key, lambda c: c.sadd(key, *members))

    async def srem(self, key: str, *members: Any) -> int:
        return await self.execute(key, lambda c: c.srem(key, *members))

    async def smembers(self, key: str) -> builtins.set[bytes]:
        return await self.execute(key, lambda c: c.smembers(key))

    async def sismember(self, key: str, member: Any) -> bool:
        return await self.execute(key, lambda c: c.sismember(key, member))

    # Sorted sets

    async def zadd(self, key: str, mapping: Mapping[Any, float]) -> int:
        return await self.execute(key, lambda c: c.zadd(key, dict(mapping)))

    async def zrange(
        self, key: str, start: int, end: int, *, withscores: bool = False
    ) -> list[Any]:
        return await self.execute(
            key, lambda c: c.zrange(key, start, end, withscores=withscores)
        )

    async def zscore(self, key: str, member: Any) -> float | None:
        return await self.execute(key, lambda c: c.zscore(key, member))

    async def zrem(self, key: str, *members: Any) -> int:
        return await self.execute(key, lambda c: c.zrem(key, *members))

    # Server

    def _check_master(self, node: str | SeedEndpoint) -> NodeDescriptor:
        """Resolve ``node`` to a current master or raise ClusterError."""
        master = self.master_for(node)
        if master is None:
            address = node.address if isinstance(node, SeedEndpoint) else node
            raise ClusterError(f"{address} is not a master of this cluster")
        return master

    def _targets(self, node: str | SeedEndpoint | None) -> list[NodeDescriptor]:
        if node is not None:
            return [self._check_master(node)]
        return [master for master in self.masters if master.slot_ranges]

    async def _on_master(
        self, master: NodeDescriptor, operation: Callable[[Redis], Awaitable[T]]
    ) -> T:
        if not master.slot_ranges:
            raise ClusterError(f"{master.address} owns no slots")
        return await self.execute_on_slot(master.slot_ranges[0].start, operation)

    async def flush_all(self, node: str | SeedEndpoint | None = None) -> None:
        """Delete every key on all masters, or on ``node`` only."""
        for master in self._targets(node):
            await self._on_master(master, lambda c: c.flushall())

    async def bg_save(self, node: str | SeedEndpoint | None = None) -> None:
        """Start a background save on all masters, or on ``node`` only."""
        for master in self._targets(node):
            await self._on_master(master, lambda c: c.bgsave())

    async def config_set(
        self, name: str, value: Any, node: str | SeedEndpoint | None = None
    ) -> None:
        """Set a server configuration parameter without restarting."""
        for master in self._targets(node):
            await self._on_master(master, lambda c: c.config_set(name, value))

    async def keys(
        self, pattern: str = "*", node: str | SeedEndpoint | None = None
    ) -> list[bytes]:
        """Keys matching ``pattern`` across all masters, or on ``node`` only."""
        result: list[bytes] = []
        for master in self._targets(node):
            result.extend(await self._on_master(master, lambda c: c.keys(pattern)))
        return result

    async def random_key(self, node: str | SeedEndpoint | None = None) -> bytes | None:
        """A random key from ``node``, or from a randomly chosen master."""
        targets = self._targets(node)
        if not targets:
            raise ClusterError("No master available")
        return await self._on_master(random.choice(targets), lambda c: c.randomkey())

    async def scan(
        self,
        node: str | SeedEndpoint,
        cursor: int = 0,
        *,
        match: str | None = None,
        count: int | None = None,
    ) -> tuple[int, list[bytes]]:
        """One ``SCAN`` step on a single master."""
        master = self._check_master(node)
        return await self._on_master(
            master, lambda c: c.scan(cursor=cursor, match=match, count=count)
        )
