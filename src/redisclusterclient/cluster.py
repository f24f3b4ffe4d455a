"""Cluster client: slot routing with rediscovery on failure."""

import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any, NoReturn, TypeVar

from redis.asyncio import Redis

from redisclusterclient.commands import ClusterCommands
from redisclusterclient.discovery import (
    DEFAULT_MIN_INTERVAL,
    DEFAULT_SEED_RETRY_DELAY,
    DiscoveryCoordinator,
)
from redisclusterclient.exceptions import (
    ClusterError,
    CrossSlotError,
    NodeCommandError,
    OperationalError,
    SlotNotCoveredError,
    is_retryable,
)
from redisclusterclient.node_store import MemoryNodeStore, NodeStore, SeedEndpoint
from redisclusterclient.pool import NodePool
from redisclusterclient.router import SlotRouter, slot_of
from redisclusterclient.topology import NodeDescriptor

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class ClusterClient(ClusterCommands):
    """Client routing each command to the master owning its hash slot."""

    def __init__(
        self,
        node_store: NodeStore,
        *,
        timeout: float = 10.0,
        pool_size: int = 10,
        max_retries: int = 1,
        min_discovery_interval: float = DEFAULT_MIN_INTERVAL,
        seed_retry_delay: float = DEFAULT_SEED_RETRY_DELAY,
    ) -> None:
        """Initialize cluster client.

        Args:
            node_store: Store for discovery seeds
            timeout: Connection timeout in seconds
            pool_size: Maximum connections per master
            max_retries: Retries after a store error, each preceded by a refresh
            min_discovery_interval: Minimum seconds between topology fetches
            seed_retry_delay: Pause before trying the next seed
        """
        self._node_store = node_store
        self._timeout = timeout
        self._pool_size = pool_size
        self._max_retries = max_retries
        self._coordinator = DiscoveryCoordinator(
            node_store,
            pool_factory=self._create_pool,
            timeout=timeout,
            min_interval=min_discovery_interval,
            retry_delay=seed_retry_delay,
        )
        self._initialized = False
        self._closed = False

    @classmethod
    def from_addresses(
        cls, addresses: Iterable[str | SeedEndpoint], **kwargs: Any
    ) -> "ClusterClient":
        """Create cluster client from ``host:port`` or ``password@host:port`` seeds."""
        store = MemoryNodeStore(addresses)
        return cls(store, **kwargs)

    def _create_pool(self, endpoint: SeedEndpoint) -> NodePool:
        return NodePool(endpoint, max_size=self._pool_size, timeout=self._timeout)

    @property
    def router(self) -> SlotRouter:
        """Current routing snapshot."""
        return self._coordinator.state.router

    @property
    def nodes(self) -> tuple[NodeDescriptor, ...]:
        """Node table from the last applied discovery."""
        return self._coordinator.state.nodes

    @property
    def masters(self) -> tuple[NodeDescriptor, ...]:
        return self.router.masters

    @property
    def is_closed(self) -> bool:
        return self._closed

    def master_for(self, node: str | SeedEndpoint) -> NodeDescriptor | None:
        return self.router.master_for(node)

    def _ensure_open(self) -> None:
        if self._closed:
            raise ClusterError("Client is closed")

    async def initialize(self) -> "ClusterClient":
        """Discover the cluster and build routing."""
        self._ensure_open()
        state = await self._coordinator.discover()
        self._initialized = True
        _LOGGER.info(
            "Cluster client initialized nodes=%d masters=%d",
            len(state.nodes),
            len(state.router.masters),
        )
        return self

    async def refresh(self) -> bool:
        """Re-read the topology if due. Returns whether routing is fresh."""
        self._ensure_open()
        return await self._coordinator.refresh()

    def resolve_slot(self, keys: str | Sequence[str]) -> tuple[int, str]:
        """Get the slot shared by ``keys`` and the first key.

        Raises CrossSlotError if the keys hash to different slots.
        """
        if isinstance(keys, str):
            keys = [keys]
        if not keys:
            raise ValueError("At least one key is required")

        slots = [slot_of(key) for key in keys]
        if any(slot != slots[0] for slot in slots[1:]):
            raise CrossSlotError(tuple(keys), tuple(slots))
        return slots[0], keys[0]

    async def execute(
        self,
        keys: str | Sequence[str],
        operation: Callable[[Redis], Awaitable[T]],
        *,
        retries: int | None = None,
    ) -> T:
        """Run ``operation`` on the master owning the slot of ``keys``.

        Multi-key requests must stay within one slot. On a store error, or when
        no master owns the slot, the topology is refreshed and the operation
        retried, at most ``retries`` times (default: the client's
        ``max_retries``).
        """
        slot, key = self.resolve_slot(keys)
        return await self._dispatch(slot, key, operation, retries)

    async def execute_on_slot(
        self,
        slot: int,
        operation: Callable[[Redis], Awaitable[T]],
        *,
        retries: int | None = None,
    ) -> T:
        """Run ``operation`` on the master owning ``slot``."""
        return await self._dispatch(slot, None, operation, retries)

    async def _dispatch(
        self,
        slot: int,
        key: str | None,
        operation: Callable[[Redis], Awaitable[T]],
        retries: int | None,
    ) -> T:
        retries_left = self._max_retries if retries is None else retries

        while True:
            self._ensure_open()
            pool: NodePool | None = None

            try:
                pool = self.router.lookup(slot, key)
                async with pool.acquire() as conn:
                    try:
                        return await operation(conn.client)
                    except Exception as e:
                        if is_retryable(e):
                            raise
                        raise NodeCommandError(str(e), endpoint=pool.identity_key) from e
            except Exception as e:
                if not (is_retryable(e) or isinstance(e, SlotNotCoveredError)):
                    raise
                if retries_left <= 0:
                    self._give_up(e, pool)

                retries_left -= 1
                _LOGGER.warning(
                    "Command failed endpoint=%s slot=%d error=%s, refreshing topology",
                    pool.endpoint.address if pool is not None else None,
                    slot,
                    e,
                )
                if not await self._coordinator.refresh():
                    self._give_up(e, pool)

    @staticmethod
    def _give_up(error: Exception, pool: NodePool | None) -> NoReturn:
        """Surface an error the retry loop could not recover from.

        A slot that is still uncovered raises SlotNotCoveredError as is;
        store errors are wrapped with the endpoint that reported them.
        """
        if pool is None:
            raise error
        raise OperationalError(str(error), endpoint=pool.identity_key) from error

    async def close(self) -> None:
        """Close every node pool. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self._coordinator.close()
        _LOGGER.info("Cluster client closed")

    async def __aenter__(self) -> "ClusterClient":
        if not self._initialized:
            await self.initialize()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
