"""Message-passing interfaces for the monitor and data-node protocols.

``MonitorClient`` is what the role resolver, the monitor agent and the
failover coordinator talk to; ``DataNodeClient`` is what health probes and
the data-node pre-stop hook talk to; ``DataPlane`` is what a monitor quorum
uses to observe and reconfigure data nodes during failover.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

from kvquorum.datastructures.cluster_types import MemberAddress, Role
from kvquorum.datastructures.type_aliases import (
    ClusterName,
    FullHostName,
    MonitorIdentity,
    PortNumber,
    QuorumThreshold,
    ReplicationOffset,
)

LOADING_REPLY = "LOADING"
PONG_REPLY = "PONG"


@dataclass(frozen=True, slots=True)
class MonitorCommand:
    """One idempotent monitor directive.

    Renders either as a ``sentinel ...`` config line or as runtime arguments.
    """

    directive: str
    args: tuple[str, ...]

    def config_line(self) -> str:
        return " ".join(("sentinel", self.directive, *self.args))


@dataclass(frozen=True, slots=True)
class MasterInfo:
    """Parsed ``SENTINEL MASTER <name>`` reply."""

    name: ClusterName
    address: MemberAddress
    flags: frozenset[str] = frozenset()
    quorum: QuorumThreshold = 0
    num_other_sentinels: int = 0
    num_slaves: int = 0
    config_epoch: int = 0
    raw: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_fields(cls, fields: Mapping[str, str]) -> MasterInfo:
        return cls(
            name=fields.get("name", ""),
            address=MemberAddress(
                host=fields.get("ip", ""), port=int(fields.get("port", 0) or 0)
            ),
            flags=frozenset(
                flag for flag in fields.get("flags", "").split(",") if flag
            ),
            quorum=int(fields.get("quorum", 0) or 0),
            num_other_sentinels=int(fields.get("num-other-sentinels", 0) or 0),
            num_slaves=int(fields.get("num-slaves", 0) or 0),
            config_epoch=int(fields.get("config-epoch", 0) or 0),
            raw=dict(fields),
        )

    @property
    def subjectively_down(self) -> bool:
        return "s_down" in self.flags

    @property
    def objectively_down(self) -> bool:
        return "o_down" in self.flags

    @property
    def failover_in_progress(self) -> bool:
        return "failover_in_progress" in self.flags


class MonitorClient(Protocol):
    async def ping(self) -> bool: ...

    async def get_master_addr_by_name(
        self, name: ClusterName
    ) -> MemberAddress | None: ...

    async def master_info(self, name: ClusterName) -> MasterInfo: ...

    async def failover(self, name: ClusterName) -> None: ...

    async def monitor(
        self,
        name: ClusterName,
        host: FullHostName,
        port: PortNumber,
        quorum: QuorumThreshold,
    ) -> None: ...

    async def known_sentinel(
        self,
        name: ClusterName,
        host: FullHostName,
        port: PortNumber,
        identity: MonitorIdentity,
    ) -> None: ...

    async def known_replica(
        self, name: ClusterName, host: FullHostName, port: PortNumber
    ) -> None: ...

    async def set_option(self, name: ClusterName, option: str, value: str) -> None: ...

    async def close(self) -> None: ...


class DataNodeClient(Protocol):
    async def ping(self) -> str:
        """``PONG``, ``LOADING`` while the dataset loads, or the error text."""
        ...

    async def role(self) -> Role: ...

    async def close(self) -> None: ...


class DataPlane(Protocol):
    async def ping(self, observer: MonitorIdentity, address: MemberAddress) -> bool: ...

    async def role_of(self, address: MemberAddress) -> Role: ...

    async def replication_offset(self, address: MemberAddress) -> ReplicationOffset: ...

    async def promote(self, address: MemberAddress) -> None: ...

    async def replicate_from(
        self, replica: MemberAddress, master: MemberAddress
    ) -> None: ...
