"""Exceptions for the Redis Cluster client."""

from redis.exceptions import RedisError


def _address(endpoint: str) -> str:
    """``host:port`` part of a ``password@host:port`` identity key."""
    return endpoint.rpartition("@")[2]


class RedisClusterError(Exception):
    """Base exception for Redis Cluster client errors."""

    pass


class ConnectionError(RedisClusterError):
    """Error establishing or maintaining a node connection."""

    pass


class ProtocolError(RedisClusterError):
    """Malformed ``CLUSTER NODES`` output."""

    line: str

    def __init__(self, message: str, line: str = "") -> None:
        self.line = line
        super().__init__(message)


class ClusterError(RedisClusterError):
    """Cluster-related error (client closed, unknown master, etc)."""

    pass


class DiscoveryError(ClusterError):
    """No seed endpoint could provide the cluster topology."""

    endpoint: str

    def __init__(self, message: str, endpoint: str) -> None:
        self.endpoint = endpoint
        super().__init__(f"{message} (last endpoint: {_address(endpoint)})")


class SlotNotCoveredError(ClusterError):
    """No reachable master owns the requested hash slot."""

    slot: int
    key: str | None

    def __init__(self, slot: int, key: str | None = None) -> None:
        self.slot = slot
        self.key = key
        message = f"No reachable node in cluster for slot {{{slot}}}"
        if key is not None:
            message += f" (key: {key!r})"
        super().__init__(message)


class CrossSlotError(ClusterError):
    """Keys of a multi-key request hash to different slots."""

    keys: tuple[str, ...]
    slots: tuple[int, ...]

    def __init__(self, keys: tuple[str, ...], slots: tuple[int, ...]) -> None:
        self.keys = keys
        self.slots = slots
        super().__init__(
            "No way to dispatch this command to Redis Cluster because keys have "
            f"different slots: {dict(zip(keys, slots, strict=True))}"
        )


class NodeCommandError(RedisClusterError):
    """Error raised while a command held a connection to a node."""

    endpoint: str

    def __init__(self, message: str, endpoint: str) -> None:
        self.endpoint = endpoint
        super().__init__(f"[{_address(endpoint)}] {message}")


class OperationalError(NodeCommandError):
    """Store-level error that could not be recovered by rediscovery."""

    pass


def is_retryable(error: BaseException) -> bool:
    """Whether ``error`` is a store-level failure worth a rediscovery and retry.

    Errors reported by redis itself and connection or pool failures qualify.
    Anything else (bad arguments, bugs in the operation) does not.
    """
    return isinstance(error, (RedisError, ConnectionError))
