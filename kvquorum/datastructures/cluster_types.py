"""
Type-safe dataclasses for cluster membership and coordination.

This module provides the value types passed between the peer directory,
the role resolver, the monitor agents and the failover coordinator.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum

import ulid

from .type_aliases import (
    ClusterName,
    DurationSeconds,
    FullHostName,
    HostName,
    IpAddress,
    MonitorIdentity,
    Ordinal,
    PortNumber,
    RequestId,
    ServiceName,
    Timestamp,
)


class Role(Enum):
    """Replication role of a data-serving member."""

    MASTER = "master"
    REPLICA = "replica"
    UNKNOWN = "unknown"

    @classmethod
    def from_reply(cls, value: str | bytes | None) -> Role:
        """Map the first element of a ROLE reply onto a Role."""
        if value is None:
            return cls.UNKNOWN
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        normalized = value.strip().lower()
        if normalized == "master":
            return cls.MASTER
        if normalized in {"slave", "replica"}:
            return cls.REPLICA
        return cls.UNKNOWN


@dataclass(frozen=True, slots=True, order=True)
class MemberAddress:
    """Host/port pair as announced to clients and monitors."""

    host: FullHostName
    port: PortNumber

    def __post_init__(self) -> None:
        if not self.host:
            raise ValueError("Address host cannot be empty")
        if not (0 < self.port < 65536):
            raise ValueError(f"Invalid port: {self.port}")

    @classmethod
    def parse(cls, value: str) -> MemberAddress:
        host, _, port = value.rpartition(":")
        if not host:
            raise ValueError(f"Address must be host:port, got {value!r}")
        return cls(host=host, port=int(port))

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(slots=True)
class Member:
    """One data-serving cluster participant.

    The role starts as UNKNOWN and is set once by the role resolver.
    """

    hostname: HostName
    full_hostname: FullHostName
    ordinal: Ordinal
    port: PortNumber
    ip: IpAddress | None = None
    role: Role = Role.UNKNOWN

    @property
    def address(self) -> MemberAddress:
        return MemberAddress(host=self.full_hostname, port=self.port)


@dataclass(frozen=True, slots=True)
class ClusterView:
    """Snapshot of one discovery lookup. Never persisted."""

    service: ServiceName
    addresses: tuple[IpAddress, ...]
    self_address: IpAddress

    @classmethod
    def create(
        cls,
        service: ServiceName,
        addresses: frozenset[IpAddress] | set[IpAddress],
        self_address: IpAddress,
    ) -> ClusterView:
        return cls(
            service=service,
            addresses=tuple(sorted(addresses)),
            self_address=self_address,
        )

    @property
    def self_visible(self) -> bool:
        return self.self_address in self.addresses

    @property
    def others(self) -> tuple[IpAddress, ...]:
        return tuple(addr for addr in self.addresses if addr != self.self_address)

    @property
    def is_alone(self) -> bool:
        return not self.others


@dataclass(frozen=True, slots=True, order=True)
class KnownMonitor:
    """A peer monitor agent, keyed by its identity."""

    identity: MonitorIdentity
    host: FullHostName
    port: PortNumber


@dataclass(frozen=True, slots=True, order=True)
class KnownReplica:
    """A replica known to a monitor agent, keyed by its hostname."""

    host: FullHostName
    port: PortNumber

    @property
    def address(self) -> MemberAddress:
        return MemberAddress(host=self.host, port=self.port)


@dataclass(frozen=True, slots=True)
class FailoverRequest:
    """One-shot manual failover trigger, discarded after success or timeout."""

    cluster_name: ClusterName
    requester: MonitorIdentity
    deadline: Timestamp
    request_id: RequestId = field(default_factory=lambda: str(ulid.new()))

    @classmethod
    def create(
        cls,
        cluster_name: ClusterName,
        requester: MonitorIdentity,
        timeout_seconds: DurationSeconds,
        *,
        now: Timestamp | None = None,
    ) -> FailoverRequest:
        if timeout_seconds <= 0:
            raise ValueError("Failover timeout must be positive")
        started = time.monotonic() if now is None else now
        return cls(
            cluster_name=cluster_name,
            requester=requester,
            deadline=started + timeout_seconds,
        )

    def remaining(self, now: Timestamp) -> DurationSeconds:
        return max(0.0, self.deadline - now)
