"""Hash slot to node pool routing."""

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType

from redis.crc import REDIS_CLUSTER_HASH_SLOTS, key_slot

from redisclusterclient.exceptions import SlotNotCoveredError
from redisclusterclient.node_store import SeedEndpoint
from redisclusterclient.pool import NodePool
from redisclusterclient.topology import NodeDescriptor

_LOGGER = logging.getLogger(__name__)

SLOT_COUNT = REDIS_CLUSTER_HASH_SLOTS

PoolFactory = Callable[[SeedEndpoint], NodePool]


def slot_of(key: str | bytes) -> int:
    """Hash slot of a key, honouring ``{hash tags}``."""
    if isinstance(key, str):
        key = key.encode("utf-8")
    return key_slot(key)


def endpoint_of(node: NodeDescriptor) -> SeedEndpoint:
    return SeedEndpoint(host=node.host, port=node.port, password=node.password)


class SlotRouter:
    """Immutable snapshot mapping each covered slot to its master's pool.

    A router is never modified after build(). Rediscovery builds a new router
    and swaps it in; the old one is closed afterwards.
    """

    def __init__(
        self,
        slots: Mapping[int, NodePool],
        masters: Iterable[NodeDescriptor],
        pools: Mapping[str, NodePool],
    ) -> None:
        self._slots = MappingProxyType(dict(slots))
        self._masters = tuple(masters)
        self._pools = MappingProxyType(dict(pools))
        self._closed = False

    @classmethod
    def empty(cls) -> "SlotRouter":
        return cls({}, (), {})

    @classmethod
    def build(
        cls, nodes: Iterable[NodeDescriptor], pool_factory: PoolFactory
    ) -> "SlotRouter":
        """Build a router from a node table.

        Only eligible masters get a pool. Every slot in each master's ranges
        points to that pool; when ranges overlap the master listed last wins.
        """
        slots: dict[int, NodePool] = {}
        masters: list[NodeDescriptor] = []
        pools: dict[str, NodePool] = {}

        for node in nodes:
            if not node.is_eligible_master:
                continue

            pool = pools.get(node.identity_key)
            if pool is None:
                pool = pool_factory(endpoint_of(node))
                pools[node.identity_key] = pool
            masters.append(node)

            for slot in node.iter_slots():
                previous = slots.get(slot)
                if previous is not None and previous is not pool:
                    _LOGGER.warning(
                        "Overlapping slot ownership slot=%d previous=%s endpoint=%s",
                        slot,
                        previous.endpoint.address,
                        node.address,
                    )
                slots[slot] = pool

        _LOGGER.debug(
            "Built slot router masters=%d covered_slots=%d", len(masters), len(slots)
        )
        return cls(slots, masters, pools)

    @property
    def masters(self) -> tuple[NodeDescriptor, ...]:
        """Eligible masters in topology order."""
        return self._masters

    @property
    def pools(self) -> Mapping[str, NodePool]:
        """Pools by node identity key."""
        return self._pools

    @property
    def covered_slots(self) -> int:
        return len(self._slots)

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, slot: int) -> NodePool | None:
        """Get the pool owning ``slot``, or None."""
        return self._slots.get(slot)

    def lookup(self, slot: int, key: str | None = None) -> NodePool:
        """Get the pool owning ``slot``.

        Raises SlotNotCoveredError if no eligible master owns it.
        """
        pool = self.get(slot)
        if pool is None:
            raise SlotNotCoveredError(slot, key)
        return pool

    def pool_for(self, endpoint: str | SeedEndpoint) -> NodePool | None:
        """Get a master's pool by identity key or ``host:port``."""
        if isinstance(endpoint, SeedEndpoint):
            endpoint = endpoint.identity_key
        pool = self._pools.get(endpoint)
        if pool is not None:
            return pool
        for candidate in self._pools.values():
            if candidate.endpoint.address == endpoint:
                return candidate
        return None

    def master_for(self, endpoint: str | SeedEndpoint) -> NodeDescriptor | None:
        pool = self.pool_for(endpoint)
        if pool is None:
            return None
        for master in self._masters:
            if master.identity_key == pool.identity_key:
                return master
        return None

    def seeds(self) -> list[SeedEndpoint]:
        """Master endpoints, used as seeds for the next discovery."""
        return [endpoint_of(master) for master in self._masters]

    async def close(self) -> None:
        """Close every pool. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await asyncio.gather(*(pool.close() for pool in self._pools.values()))

    def __repr__(self) -> str:
        return (
            f"<SlotRouter masters={len(self._masters)} "
            f"covered_slots={len(self._slots)}/{SLOT_COUNT}>"
        )
