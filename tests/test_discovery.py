"""Tests for topology discovery."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from conftest import ONE_MASTER, THREE_MASTERS, TWO_MASTERS, FakeClock, FakeCluster
from redisclusterclient.discovery import DiscoveryCoordinator, fetch_topology
from redisclusterclient.exceptions import DiscoveryError
from redisclusterclient.node_store import MemoryNodeStore, SeedEndpoint
from redisclusterclient.pool import NodePool
from redisclusterclient.topology import parse_cluster_nodes


def make_coordinator(
    addresses: list[str], clock: FakeClock, *, min_interval: float = 3.0
) -> DiscoveryCoordinator:
    return DiscoveryCoordinator(
        MemoryNodeStore(addresses),
        pool_factory=lambda endpoint: NodePool(endpoint),
        min_interval=min_interval,
        retry_delay=0,
        clock=clock,
    )


class TestFetchTopology:
    async def test_first_seed(self, fake_cluster: FakeCluster) -> None:
        nodes = await fetch_topology([SeedEndpoint("10.0.0.1", 7000, "pw")])

        assert [n.node_id for n in nodes] == ["a1", "b2"]
        assert all(n.password == "pw" for n in nodes)
        assert fake_cluster.topology_queries == 1
        fake_cluster.clients[0].aclose.assert_awaited_once()

    async def test_falls_back_to_next_seed(self, fake_cluster: FakeCluster) -> None:
        fake_cluster.unreachable.add("10.0.0.1:7000")

        nodes = await fetch_topology(
            [SeedEndpoint("10.0.0.1", 7000), SeedEndpoint("10.0.0.2", 7000)],
            retry_delay=0,
        )

        assert len(nodes) == 2
        assert fake_cluster.clients[-1].address == "10.0.0.2:7000"

    async def test_waits_between_seeds(self, fake_cluster: FakeCluster) -> None:
        fake_cluster.unreachable.add("10.0.0.1:7000")

        with patch("redisclusterclient.discovery.asyncio.sleep", new=AsyncMock()) as sleep:
            await fetch_topology([SeedEndpoint("10.0.0.1", 7000), SeedEndpoint("10.0.0.2", 7000)])

        sleep.assert_awaited_once_with(0.1)

    async def test_all_unreachable(self, fake_cluster: FakeCluster) -> None:
        fake_cluster.unreachable.update({"10.0.0.1:7000", "10.0.0.2:7000"})

        with pytest.raises(DiscoveryError, match="Could not read cluster topology") as exc_info:
            await fetch_topology(
                [SeedEndpoint("10.0.0.1", 7000), SeedEndpoint("10.0.0.2", 7000, "pw")],
                retry_delay=0,
            )

        assert exc_info.value.endpoint == "pw@10.0.0.2:7000"
        assert "pw@" not in str(exc_info.value)
        assert "(last endpoint: 10.0.0.2:7000)" in str(exc_info.value)

    async def test_no_seeds(self) -> None:
        with pytest.raises(DiscoveryError, match="No seed"):
            await fetch_topology([])

    async def test_empty_reply_is_empty_topology(self, fake_cluster: FakeCluster) -> None:
        fake_cluster.topology = ""

        nodes = await fetch_topology(
            [SeedEndpoint("10.0.0.1", 7000), SeedEndpoint("10.0.0.2", 7000)], retry_delay=0
        )

        assert nodes == []
        assert fake_cluster.topology_queries == 2

    async def test_malformed_reply(self, fake_cluster: FakeCluster) -> None:
        fake_cluster.topology = "a1 10.0.0.1:7000 master\n"

        with pytest.raises(DiscoveryError, match="at least 8 fields"):
            await fetch_topology([SeedEndpoint("10.0.0.1", 7000)])


class TestDiscoveryCoordinator:
    async def test_discover(self, fake_cluster: FakeCluster, clock: FakeClock) -> None:
        coordinator = make_coordinator(["10.0.0.9:7000"], clock)

        state = await coordinator.discover()

        assert [n.node_id for n in state.nodes] == ["a1", "b2"]
        assert state.router.lookup(5461).endpoint.address == "10.0.0.2:7000"
        assert coordinator.is_fresh
        assert not coordinator.is_discovering

    async def test_discover_replaces_seeds_with_masters(
        self, fake_cluster: FakeCluster, clock: FakeClock
    ) -> None:
        store = MemoryNodeStore(["10.0.0.9:7000"])
        coordinator = DiscoveryCoordinator(
            store, pool_factory=NodePool, retry_delay=0, clock=clock
        )

        await coordinator.discover()

        seeds = await store.get_nodes()
        assert [s.address for s in seeds] == ["10.0.0.1:7000", "10.0.0.2:7000"]

    async def test_no_masters_keeps_seeds(self, fake_cluster: FakeCluster, clock: FakeClock) -> None:
        fake_cluster.topology = "d4 10.0.0.4:7000 slave a1 0 0 4 connected\n"
        store = MemoryNodeStore(["10.0.0.9:7000"])
        coordinator = DiscoveryCoordinator(store, pool_factory=NodePool, clock=clock)

        await coordinator.discover()

        assert [s.address for s in await store.get_nodes()] == ["10.0.0.9:7000"]

    async def test_refresh_twice_fetches_once(self, clock: FakeClock) -> None:
        coordinator = make_coordinator(["10.0.0.1:7000"], clock)
        fetch = AsyncMock(return_value=parse_cluster_nodes(TWO_MASTERS))

        with patch("redisclusterclient.discovery.fetch_topology", new=fetch):
            assert await coordinator.refresh()
            clock.advance(1.0)
            assert await coordinator.refresh()

        assert fetch.await_count == 1

    async def test_concurrent_refreshes_fetch_once(self, clock: FakeClock) -> None:
        coordinator = make_coordinator(["10.0.0.1:7000"], clock)

        async def slow_fetch(*args: object, **kwargs: object) -> list:
            await asyncio.sleep(0.01)
            return parse_cluster_nodes(TWO_MASTERS)

        fetch = AsyncMock(side_effect=slow_fetch)
        with patch("redisclusterclient.discovery.fetch_topology", new=fetch):
            results = await asyncio.gather(*(coordinator.refresh() for _ in range(5)))

        assert results == [True] * 5
        assert fetch.await_count == 1

    async def test_refresh_unchanged_is_not_fresh(
        self, fake_cluster: FakeCluster, clock: FakeClock
    ) -> None:
        coordinator = make_coordinator(["10.0.0.1:7000"], clock)
        await coordinator.discover()
        router = coordinator.state.router

        clock.advance(5.0)
        fresh = await coordinator.refresh()

        assert not fresh
        assert fake_cluster.topology_queries == 2
        assert coordinator.state.router is router
        assert not router.closed

    async def test_refresh_changed_rebuilds(self, fake_cluster: FakeCluster, clock: FakeClock) -> None:
        fake_cluster.topology = ONE_MASTER
        coordinator = make_coordinator(["10.0.0.1:7000"], clock)
        await coordinator.discover()
        old_router = coordinator.state.router
        assert old_router.get(5461) is None

        fake_cluster.topology = TWO_MASTERS
        clock.advance(5.0)
        fresh = await coordinator.refresh()

        assert fresh
        assert coordinator.state.router is not old_router
        assert coordinator.state.router.lookup(5461).endpoint.address == "10.0.0.2:7000"
        assert old_router.closed

    async def test_refresh_within_interval_skips_fetch(
        self, fake_cluster: FakeCluster, clock: FakeClock
    ) -> None:
        coordinator = make_coordinator(["10.0.0.1:7000"], clock)
        await coordinator.discover()

        clock.advance(1.0)
        fresh = await coordinator.refresh()

        assert fresh
        assert fake_cluster.topology_queries == 1

    async def test_fresh_expires(self, fake_cluster: FakeCluster, clock: FakeClock) -> None:
        coordinator = make_coordinator(["10.0.0.1:7000"], clock)
        await coordinator.discover()

        clock.advance(3.0)

        assert not coordinator.is_fresh

    async def test_refresh_uses_master_seeds(self, fake_cluster: FakeCluster, clock: FakeClock) -> None:
        fake_cluster.topology = THREE_MASTERS
        coordinator = make_coordinator(["10.0.0.9:7000"], clock)
        await coordinator.discover()

        clock.advance(5.0)
        await coordinator.refresh()

        assert fake_cluster.clients[-1].address == "10.0.0.1:7000"

    async def test_refresh_discovery_error(self, fake_cluster: FakeCluster, clock: FakeClock) -> None:
        coordinator = make_coordinator(["10.0.0.1:7000"], clock)
        await coordinator.discover()

        fake_cluster.unreachable.update({"10.0.0.1:7000", "10.0.0.2:7000"})
        clock.advance(5.0)

        with pytest.raises(DiscoveryError) as exc_info:
            await coordinator.refresh()

        assert exc_info.value.endpoint == "10.0.0.2:7000"
        assert not coordinator.is_discovering
        assert coordinator.state.router.lookup(0).endpoint.address == "10.0.0.1:7000"

    async def test_close(self, fake_cluster: FakeCluster, clock: FakeClock) -> None:
        coordinator = make_coordinator(["10.0.0.1:7000"], clock)
        await coordinator.discover()
        router = coordinator.state.router

        await coordinator.close()

        assert router.closed
        assert coordinator.state.nodes == ()
        assert coordinator.state.router.masters == ()
