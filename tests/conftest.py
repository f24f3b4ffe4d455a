"""Pytest configuration for redis-cluster-client tests."""

from collections.abc import Callable, Iterator
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from redisclusterclient.router import slot_of

TWO_MASTERS = (
    "a1 10.0.0.1:7000 master - 0 0 1 connected 0-5460\n"
    "b2 10.0.0.2:7000 master - 0 0 1 connected 5461-10922\n"
)

ONE_MASTER = "a1 10.0.0.1:7000 master - 0 0 1 connected 0-5460\n"

THREE_MASTERS = (
    "a1 10.0.0.1:7000 myself,master - 0 0 1 connected 0-5460\n"
    "b2 10.0.0.2:7000 master - 0 1426238316232 2 connected 5461-10922\n"
    "c3 10.0.0.3:7000 master - 0 1426238318243 3 connected 10923-16383\n"
    "d4 10.0.0.4:7000 slave a1 0 1426238317239 4 connected\n"
)


class FakeCluster:
    """Replacement for ``redis.asyncio.Redis`` serving a scripted topology.

    Every instantiation returns an AsyncMock client bound to one address.
    ``CLUSTER NODES`` returns ``topology``; other commands return whatever is
    configured in ``replies`` (AsyncMock defaults otherwise).
    """

    def __init__(self, topology: str) -> None:
        self.topology = topology
        self.unreachable: set[str] = set()
        self.replies: dict[str, Any] = {}
        self.clients: list[AsyncMock] = []
        self.topology_queries = 0

    def __call__(self, *, host: str, port: int, password: str | None = None, **kwargs: Any) -> AsyncMock:
        address = f"{host}:{port}"
        client = AsyncMock(name=f"Redis({address})")
        client.address = address
        client.password = password
        if address in self.unreachable:
            client.ping = AsyncMock(side_effect=RedisConnectionError(f"Error connecting to {address}"))
        else:
            client.ping = AsyncMock(return_value=True)
        client.aclose = AsyncMock()
        client.execute_command = AsyncMock(side_effect=self._execute_command)
        for name, value in self.replies.items():
            getattr(client, name).return_value = value
        self.clients.append(client)
        return client

    async def _execute_command(self, *args: Any) -> bytes:
        if args == ("CLUSTER", "NODES"):
            self.topology_queries += 1
            return self.topology.encode()
        raise AssertionError(f"Unexpected command {args}")

    def clients_for(self, address: str) -> list[AsyncMock]:
        return [c for c in self.clients if c.address == address]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_cluster() -> Iterator[FakeCluster]:
    """Patch the node client with a two-master fake cluster."""
    cluster = FakeCluster(TWO_MASTERS)
    with patch("redisclusterclient.connection.Redis", new=cluster):
        yield cluster


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def key_in_slots() -> Callable[[int, int], str]:
    """Find a key whose slot lies in ``[start, end]``."""

    def find(start: int, end: int) -> str:
        for i in range(100_000):
            key = f"key:{i}"
            if start <= slot_of(key) <= end:
                return key
        raise AssertionError(f"No key found for slots {start}-{end}")

    return find
