"""Local monitor configuration with idempotent peer and replica registration."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

from kvquorum.datastructures.cluster_types import (
    KnownMonitor,
    KnownReplica,
    MemberAddress,
)
from kvquorum.datastructures.type_aliases import (
    ClusterName,
    FullHostName,
    MonitorIdentity,
    PortNumber,
)

from .config import MonitorSettings
from .monitor_protocol import MonitorCommand


@dataclass(slots=True)
class MonitorConfig:
    """What one monitor agent believes about its cluster.

    Known peers are keyed by monitor identity and known replicas by hostname,
    so registering the same entry twice leaves the config unchanged.
    """

    identity: MonitorIdentity
    cluster_name: ClusterName
    master: MemberAddress
    settings: MonitorSettings
    port: PortNumber
    announce_host: FullHostName
    password: str | None = None
    known_peers: dict[MonitorIdentity, KnownMonitor] = field(default_factory=dict)
    known_replicas: dict[FullHostName, KnownReplica] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if len(self.identity) != 40:
            raise ValueError("Monitor identity must be 40 characters")

    def add_known_peer(self, peer: KnownMonitor) -> bool:
        """Register ``peer``; returns False when it was already known."""
        if peer.identity == self.identity:
            return False
        existing = self.known_peers.get(peer.identity)
        if existing == peer:
            return False
        self.known_peers[peer.identity] = peer
        return existing is None

    def add_known_replica(self, replica: KnownReplica) -> bool:
        """Register ``replica``; returns False when known or when it is the master."""
        if replica.address == self.master:
            return False
        existing = self.known_replicas.get(replica.host)
        if existing == replica:
            return False
        self.known_replicas[replica.host] = replica
        return existing is None

    def retarget(self, master: MemberAddress) -> None:
        """Point at a new master; it stops being a known replica."""
        self.master = master
        self.known_replicas.pop(master.host, None)

    def commands(self) -> Iterator[MonitorCommand]:
        """Directive sequence that rebuilds this config on a monitor."""
        name = self.cluster_name
        yield MonitorCommand(
            "monitor",
            (name, self.master.host, str(self.master.port), str(self.settings.quorum)),
        )
        yield MonitorCommand(
            "down-after-milliseconds", (name, str(self.settings.down_after_ms))
        )
        yield MonitorCommand(
            "failover-timeout", (name, str(self.settings.failover_timeout_ms))
        )
        yield MonitorCommand(
            "parallel-syncs", (name, str(self.settings.parallel_syncs))
        )
        for peer in sorted(self.known_peers.values()):
            yield MonitorCommand(
                "known-sentinel", (name, peer.host, str(peer.port), peer.identity)
            )
        for replica in sorted(self.known_replicas.values()):
            yield MonitorCommand(
                "known-replica", (name, replica.host, str(replica.port))
            )

    def render(self) -> str:
        """Render as a sentinel.conf file."""
        lines = [
            f'dir "{self.settings.working_dir}"',
            f"port {self.port}",
            f"sentinel myid {self.identity}",
        ]
        lines.extend(command.config_line() for command in self.commands())
        if self.password:
            lines.append(f"sentinel auth-pass {self.cluster_name} {self.password}")
            lines.append(f"requirepass {self.password}")
        if self.settings.announce_hostnames:
            lines.append("sentinel announce-hostnames yes")
        if self.settings.resolve_hostnames:
            lines.append("sentinel resolve-hostnames yes")
        lines.append(f"sentinel announce-port {self.port}")
        lines.append(f"sentinel announce-ip {self.announce_host}")
        return "\n".join(lines) + "\n"
