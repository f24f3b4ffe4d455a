"""Cluster topology discovery and routing refresh."""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from redisclusterclient.connection import NodeConnection
from redisclusterclient.exceptions import DiscoveryError
from redisclusterclient.node_store import NodeStore, SeedEndpoint
from redisclusterclient.router import PoolFactory, SlotRouter
from redisclusterclient.topology import NodeDescriptor, parse_cluster_nodes, topology_changed

_LOGGER = logging.getLogger(__name__)

DEFAULT_MIN_INTERVAL = 3.0
DEFAULT_SEED_RETRY_DELAY = 0.1


async def fetch_topology(
    seeds: list[SeedEndpoint],
    *,
    timeout: float = 10.0,
    retry_delay: float = DEFAULT_SEED_RETRY_DELAY,
) -> list[NodeDescriptor]:
    """Read the node table from the first seed that answers.

    Every descriptor gets the password of the seed it was read from, since
    ``CLUSTER NODES`` never reports credentials. A seed that fails is
    followed by a short pause and the next seed; failure of the last seed
    raises DiscoveryError. An empty reply moves on to the next seed as well,
    and if no seed reports any node the topology is empty.
    """
    if not seeds:
        raise DiscoveryError("No seed endpoints configured", endpoint="")

    for index, seed in enumerate(seeds):
        is_last = index == len(seeds) - 1
        try:
            _LOGGER.debug("Fetching cluster topology endpoint=%s", seed.address)
            async with NodeConnection(seed, timeout=timeout) as conn:
                text = await conn.cluster_nodes()
            nodes = parse_cluster_nodes(text, password=seed.password)
        except Exception as e:
            if is_last:
                raise DiscoveryError(
                    f"Could not read cluster topology: {e}", endpoint=seed.identity_key
                ) from e
            _LOGGER.warning(
                "Topology fetch failed endpoint=%s error=%s, trying next seed",
                seed.address,
                e,
            )
            await asyncio.sleep(retry_delay)
            continue

        if nodes:
            _LOGGER.debug(
                "Fetched cluster topology endpoint=%s nodes=%d", seed.address, len(nodes)
            )
            return nodes

    return []


@dataclass(frozen=True)
class ClusterState:
    """Node table together with the router built from it."""

    nodes: tuple[NodeDescriptor, ...] = ()
    router: SlotRouter = field(default_factory=SlotRouter.empty)


class DiscoveryCoordinator:
    """Serializes topology fetches and router rebuilds.

    At most one fetch and rebuild runs at a time. Fetches are rate limited to
    one per ``min_interval`` seconds; callers arriving inside that window reuse
    the current state.
    """

    def __init__(
        self,
        node_store: NodeStore,
        *,
        pool_factory: PoolFactory,
        timeout: float = 10.0,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        retry_delay: float = DEFAULT_SEED_RETRY_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._node_store = node_store
        self._pool_factory = pool_factory
        self._timeout = timeout
        self._min_interval = min_interval
        self._retry_delay = retry_delay
        self._clock = clock

        self._lock = asyncio.Lock()
        self._discovering = False
        self._last_fetch: float | None = None
        self._last_change: float | None = None
        self._state = ClusterState()

    @property
    def state(self) -> ClusterState:
        """Current snapshot. Replaced as a whole, never mutated."""
        return self._state

    @property
    def is_discovering(self) -> bool:
        return self._discovering

    @property
    def is_fresh(self) -> bool:
        """Whether the routing state changed within ``min_interval``."""
        return self._within_interval(self._last_change)

    def _within_interval(self, timestamp: float | None) -> bool:
        if timestamp is None:
            return False
        return self._clock() - timestamp < self._min_interval

    async def discover(self) -> ClusterState:
        """Fetch the topology and rebuild routing unconditionally."""
        async with self._lock:
            self._discovering = True
            try:
                nodes = await self._fetch()
                await self._apply(nodes)
            finally:
                self._discovering = False
        return self._state

    async def refresh(self) -> bool:
        """Re-read the topology if due and rebuild routing if it changed.

        Returns whether the routing state is fresh, i.e. it changed within the
        last ``min_interval`` seconds and retrying a failed command may help.
        """
        async with self._lock:
            self._discovering = True
            try:
                if self._within_interval(self._last_fetch):
                    _LOGGER.debug("Topology fetched recently, skipping refresh")
                else:
                    nodes = await self._fetch()
                    if topology_changed(self._state.nodes, nodes):
                        await self._apply(nodes)
                    else:
                        _LOGGER.debug("Cluster topology unchanged")
            finally:
                self._discovering = False

            return self.is_fresh

    async def _fetch(self) -> list[NodeDescriptor]:
        seeds = await self._node_store.get_nodes()
        nodes = await fetch_topology(
            seeds, timeout=self._timeout, retry_delay=self._retry_delay
        )
        self._last_fetch = self._clock()
        return nodes

    async def _apply(self, nodes: list[NodeDescriptor]) -> None:
        router = SlotRouter.build(nodes, self._pool_factory)
        previous, self._state = self._state, ClusterState(tuple(nodes), router)
        self._last_change = self._clock()

        if router.masters:
            await self._node_store.set_nodes(router.seeds())

        _LOGGER.info(
            "Cluster topology applied nodes=%d masters=%d covered_slots=%d",
            len(nodes),
            len(router.masters),
            router.covered_slots,
        )
        await previous.router.close()

    async def close(self) -> None:
        """Close every pool and drop the node table."""
        async with self._lock:
            previous, self._state = self._state, ClusterState()
            await previous.router.close()
