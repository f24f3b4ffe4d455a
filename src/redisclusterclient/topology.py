"""Parsing of the ``CLUSTER NODES`` node table.

Each line of the reply describes one cluster member::

    <id> <ip:port[@cport]> <flags> <master> <ping-sent> <pong-recv> <config-epoch> <link-state> [<slot> ...]

Flags are comma separated. The first flag may be ``myself``; the next one, when
it is ``master`` or ``slave``, is the role. Anything left over (``fail``,
``fail?``, ``handshake``, ``noaddr``, ...) is kept as the node's extra flags.
Slot tokens are either a single slot ``N`` or an inclusive range ``N-M``.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import StrEnum

from redisclusterclient.exceptions import ProtocolError

MYSELF = "myself"
MASTER = "master"
SLAVE = "slave"

_REQUIRED_FIELDS = 8


class LinkState(StrEnum):
    """State of the cluster bus link as seen by the reporting node."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str) -> "LinkState":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class SlotRange:
    """Inclusive slot range. ``end`` is None for a single slot."""

    start: int
    end: int | None = None

    @property
    def last(self) -> int:
        return self.start if self.end is None else self.end

    def slots(self) -> range:
        return range(self.start, self.last + 1)

    def __str__(self) -> str:
        if self.end is None:
            return str(self.start)
        return f"{self.start}-{self.end}"


@dataclass(frozen=True)
class NodeDescriptor:
    """One cluster member as reported by ``CLUSTER NODES``."""

    node_id: str
    host: str
    port: int
    master_node_id: str | None = None
    is_master: bool = False
    is_slave: bool = False
    is_self: bool = False
    flags: tuple[str, ...] = ()
    ping_sent: int = 0
    pong_recv: int = 0
    config_epoch: int = 0
    link_state: LinkState = LinkState.UNKNOWN
    primary_slot_range: SlotRange | None = None
    extra_slot_ranges: tuple[SlotRange, ...] = ()
    password: str | None = field(default=None, repr=False)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def identity_key(self) -> str:
        """Identity of the node across refreshes: ``password@host:port``."""
        if self.password:
            return f"{self.password}@{self.address}"
        return self.address

    @property
    def slot_ranges(self) -> tuple[SlotRange, ...]:
        """Every slot range owned, primary first."""
        if self.primary_slot_range is None:
            return self.extra_slot_ranges
        return (self.primary_slot_range, *self.extra_slot_ranges)

    @property
    def is_eligible_master(self) -> bool:
        """Whether traffic may be routed to this node.

        Only masters with an address, no extra flags and a link that is not
        known to be down qualify.
        """
        return (
            self.is_master
            and bool(self.host)
            and not self.flags
            and self.link_state in (LinkState.CONNECTED, LinkState.UNKNOWN)
        )

    def iter_slots(self) -> Iterator[int]:
        for slot_range in self.slot_ranges:
            yield from slot_range.slots()

    def routing_state(self) -> tuple[object, ...]:
        """Fields whose change requires a routing rebuild."""
        return (
            self.password,
            self.is_master,
            self.is_slave,
            self.flags,
            self.link_state,
            self.primary_slot_range,
            tuple(sorted(self.extra_slot_ranges, key=lambda r: (r.start, r.last))),
        )

    def __str__(self) -> str:
        flags: list[str] = []
        if self.is_self:
            flags.append(MYSELF)
        if self.is_master:
            flags.append(MASTER)
        elif self.is_slave:
            flags.append(SLAVE)
        flags.extend(self.flags)
        fields = [
            self.node_id,
            self.address,
            ",".join(flags) or "noflags",
            self.master_node_id or "-",
            str(self.ping_sent),
            str(self.pong_recv),
            str(self.config_epoch),
            str(self.link_state),
            *(str(r) for r in self.slot_ranges),
        ]
        return " ".join(fields)


def parse_slot_token(token: str) -> SlotRange | None:
    """Parse ``N`` or ``N-M``. Returns None for anything else."""
    parts = token.split("-")
    if len(parts) > 2:
        return None
    try:
        numbers = [int(part) for part in parts]
    except ValueError:
        return None
    if len(numbers) == 1:
        return SlotRange(numbers[0])
    return SlotRange(numbers[0], numbers[1])


def _parse_address(value: str, line: str) -> tuple[str, int]:
    # ip:port@cport[,hostname]
    address = value.split("@", 1)[0]
    host, sep, port_str = address.rpartition(":")
    if not sep:
        raise ProtocolError(f"Invalid node address {value!r}", line)
    try:
        return host, int(port_str)
    except ValueError as e:
        raise ProtocolError(f"Invalid node port in {value!r}", line) from e


def _parse_int(value: str, name: str, line: str) -> int:
    try:
        return int(value)
    except ValueError as e:
        raise ProtocolError(f"Invalid {name} {value!r}", line) from e


def parse_node_line(line: str, *, password: str | None = None) -> NodeDescriptor:
    """Parse a single ``CLUSTER NODES`` line.

    Raises ProtocolError if the line is empty or misses required fields.
    Slot tokens that cannot be parsed are skipped.
    """
    if not line or not line.strip():
        raise ProtocolError("Empty topology line", line)

    fields = line.split()
    if len(fields) < _REQUIRED_FIELDS:
        raise ProtocolError(
            f"Expected at least {_REQUIRED_FIELDS} fields, got {len(fields)}", line
        )

    node_id, address, flag_field, master_id, ping, pong, epoch, link = fields[:_REQUIRED_FIELDS]
    host, port = _parse_address(address, line)

    flags = [flag for flag in flag_field.split(",") if flag]
    is_self = bool(flags) and flags[0] == MYSELF
    if is_self:
        flags = flags[1:]
    role = flags[0] if flags and flags[0] in (MASTER, SLAVE) else None
    if role is not None:
        flags = flags[1:]

    ranges = [r for r in map(parse_slot_token, fields[_REQUIRED_FIELDS:]) if r is not None]

    return NodeDescriptor(
        node_id=node_id,
        host=host,
        port=port,
        master_node_id=None if master_id == "-" else master_id,
        is_master=role == MASTER,
        is_slave=role == SLAVE,
        is_self=is_self,
        flags=tuple(flags),
        ping_sent=_parse_int(ping, "ping-sent", line),
        pong_recv=_parse_int(pong, "pong-recv", line),
        config_epoch=_parse_int(epoch, "config-epoch", line),
        link_state=LinkState.parse(link),
        primary_slot_range=ranges[0] if ranges else None,
        extra_slot_ranges=tuple(ranges[1:]),
        password=password,
    )


def parse_cluster_nodes(text: str, *, password: str | None = None) -> list[NodeDescriptor]:
    """Parse a whole ``CLUSTER NODES`` reply, one descriptor per line."""
    return [
        parse_node_line(line, password=password)
        for line in text.splitlines()
        if line.strip()
    ]


def topology_changed(
    old: Iterable[NodeDescriptor], new: Iterable[NodeDescriptor]
) -> bool:
    """Check whether two topologies differ in anything that affects routing."""
    previous = {node.identity_key: node for node in old}
    current = {node.identity_key: node for node in new}

    if previous.keys() != current.keys():
        return True

    return any(
        previous[key].routing_state() != node.routing_state()
        for key, node in current.items()
    )
