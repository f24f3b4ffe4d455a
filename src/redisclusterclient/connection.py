"""Single-node connection for a Redis Cluster member."""

from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from redisclusterclient.exceptions import ConnectionError
from redisclusterclient.node_store import SeedEndpoint


class NodeConnection:
    """Async connection to one Redis node."""

    def __init__(
        self,
        endpoint: SeedEndpoint,
        *,
        timeout: float = 10.0,
    ) -> None:
        """Initialize connection (does not connect yet).

        Args:
            endpoint: Node address and optional password
            timeout: Socket connect and read timeout in seconds
        """
        self._endpoint = endpoint
        self._timeout = timeout
        self._client: Redis | None = None

    @property
    def endpoint(self) -> SeedEndpoint:
        return self._endpoint

    @property
    def identity_key(self) -> str:
        """Get the ``password@host:port`` identity of the node."""
        return self._endpoint.identity_key

    @property
    def is_connected(self) -> bool:
        """Check if connected."""
        return self._client is not None

    @property
    def client(self) -> Redis:
        """Get the underlying redis client."""
        if self._client is None:
            raise ConnectionError("Not connected")
        return self._client

    async def connect(self) -> None:
        """Open the connection and authenticate."""
        if self._client is not None:
            return

        client = Redis(
            host=self._endpoint.host,
            port=self._endpoint.port,
            password=self._endpoint.password,
            socket_timeout=self._timeout,
            socket_connect_timeout=self._timeout,
            single_connection_client=True,
        )

        try:
            await client.ping()
        except (RedisError, OSError) as e:
            await client.aclose()
            raise ConnectionError(f"Failed to connect to {self._endpoint.address}: {e}") from e

        self._client = client

    async def close(self) -> None:
        """Close the connection."""
        if self._client is not None:
            client, self._client = self._client, None
            await client.aclose()

    async def __aenter__(self) -> "NodeConnection":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def cluster_nodes(self) -> str:
        """Query the node table (``CLUSTER NODES``)."""
        reply = await self.client.execute_command("CLUSTER", "NODES")
        if reply is None:
            return ""
        if isinstance(reply, bytes):
            return reply.decode("utf-8")
        return str(reply)
