"""Async Redis Cluster client with slot routing and automatic rediscovery."""

from collections.abc import Iterable

from redisclusterclient.cluster import ClusterClient
from redisclusterclient.connection import NodeConnection
from redisclusterclient.discovery import ClusterState, DiscoveryCoordinator, fetch_topology
from redisclusterclient.exceptions import (
    ClusterError,
    ConnectionError,
    CrossSlotError,
    DiscoveryError,
    NodeCommandError,
    OperationalError,
    ProtocolError,
    RedisClusterError,
    SlotNotCoveredError,
)
from redisclusterclient.node_store import MemoryNodeStore, NodeStore, SeedEndpoint
from redisclusterclient.pool import NodePool
from redisclusterclient.router import SlotRouter, slot_of
from redisclusterclient.topology import (
    LinkState,
    NodeDescriptor,
    SlotRange,
    parse_cluster_nodes,
    parse_node_line,
)

__all__ = [
    "connect",
    "ClusterClient",
    "ClusterState",
    "DiscoveryCoordinator",
    "fetch_topology",
    "NodeConnection",
    "NodePool",
    "SlotRouter",
    "slot_of",
    "NodeStore",
    "MemoryNodeStore",
    "SeedEndpoint",
    "NodeDescriptor",
    "SlotRange",
    "LinkState",
    "parse_node_line",
    "parse_cluster_nodes",
    "RedisClusterError",
    "ConnectionError",
    "ProtocolError",
    "ClusterError",
    "DiscoveryError",
    "SlotNotCoveredError",
    "CrossSlotError",
    "NodeCommandError",
    "OperationalError",
]

__version__ = "0.1.0"


async def connect(
    addresses: Iterable[str | SeedEndpoint],
    *,
    timeout: float = 10.0,
    pool_size: int = 10,
    max_retries: int = 1,
    min_discovery_interval: float = 3.0,
    seed_retry_delay: float = 0.1,
) -> ClusterClient:
    """Discover a Redis Cluster and return a ready client.

    Args:
        addresses: Seed nodes in "host:port" or "password@host:port" format
        timeout: Connection timeout in seconds
        pool_size: Maximum connections per master
        max_retries: Retries after a store error, each preceded by a refresh
        min_discovery_interval: Minimum seconds between topology fetches
        seed_retry_delay: Pause before trying the next seed

    Returns:
        An initialized ClusterClient
    """
    client = ClusterClient.from_addresses(
        addresses,
        timeout=timeout,
        pool_size=pool_size,
        max_retries=max_retries,
        min_discovery_interval=min_discovery_interval,
        seed_retry_delay=seed_retry_delay,
    )
    await client.initialize()
    return client
