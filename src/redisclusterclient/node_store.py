"""Node store interfaces for cluster discovery seeds."""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field


@dataclass(frozen=True)
class SeedEndpoint:
    """Address used to bootstrap topology discovery."""

    host: str
    port: int
    password: str | None = field(default=None, repr=False)

    @classmethod
    def parse(cls, address: str) -> "SeedEndpoint":
        """Parse ``host:port`` or ``password@host:port``."""
        password, _, host_port = address.rpartition("@")
        host, sep, port_str = host_port.rpartition(":")
        if not sep or not host:
            raise ValueError(f"Invalid address {address!r}, expected host:port")
        return cls(host=host, port=int(port_str), password=password or None)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def identity_key(self) -> str:
        if self.password:
            return f"{self.password}@{self.address}"
        return self.address


def as_seeds(addresses: Iterable[str | SeedEndpoint]) -> list[SeedEndpoint]:
    return [a if isinstance(a, SeedEndpoint) else SeedEndpoint.parse(a) for a in addresses]


class NodeStore(ABC):
    """Abstract interface for storing discovery seeds."""

    @abstractmethod
    async def get_nodes(self) -> list[SeedEndpoint]:
        """Get list of known seeds."""
        ...

    @abstractmethod
    async def set_nodes(self, nodes: list[SeedEndpoint]) -> None:
        """Update list of known seeds."""
        ...


class MemoryNodeStore(NodeStore):
    """In-memory node store."""

    def __init__(self, initial_addresses: Iterable[str | SeedEndpoint] | None = None) -> None:
        self._nodes: list[SeedEndpoint] = as_seeds(initial_addresses or [])

    async def get_nodes(self) -> list[SeedEndpoint]:
        """Get list of known seeds."""
        return list(self._nodes)

    async def set_nodes(self, nodes: list[SeedEndpoint]) -> None:
        """Update list of known seeds."""
        self._nodes = list(nodes)
