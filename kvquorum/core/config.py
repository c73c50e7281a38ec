"""Typed configuration structs passed into the control logic.

All structs are immutable. Environment parsing lives in ``kvquorum.config``;
nothing in ``kvquorum.core`` reads the environment except the service port
lookup below, which mirrors the orchestrator's injected port variables.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

from kvquorum.datastructures.type_aliases import (
    ClusterName,
    DurationMilliseconds,
    DurationSeconds,
    HostName,
    PortNumber,
    QuorumThreshold,
    ServiceName,
)

from .errors import ConfigurationError

DEFAULT_DATA_PORT: PortNumber = 6379
DEFAULT_MONITOR_PORT: PortNumber = 26379


class PortKind(Enum):
    DATA = "REDIS"
    MONITOR = "SENTINEL"


def service_port(
    hostname: HostName,
    kind: PortKind,
    environ: Mapping[str, str] | None = None,
    *,
    default: PortNumber | None = None,
) -> PortNumber:
    """Port for ``hostname`` from ``<HOSTNAME>_SERVICE_PORT_<KIND>``, else the default."""
    env = os.environ if environ is None else environ
    variable = f"{hostname.upper()}_SERVICE_PORT_{kind.value}".replace("-", "_")
    value = env.get(variable, "").strip()
    if value:
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigurationError(f"{variable}={value!r} is not a port") from exc
    if default is not None:
        return default
    if kind is PortKind.MONITOR:
        return DEFAULT_MONITOR_PORT
    return DEFAULT_DATA_PORT


@dataclass(frozen=True, slots=True)
class TlsSettings:
    enabled: bool = False
    cert_file: str | None = None
    key_file: str | None = None
    ca_file: str | None = None

    def __post_init__(self) -> None:
        if self.enabled and not (self.cert_file and self.key_file and self.ca_file):
            raise ConfigurationError("TLS requires cert_file, key_file and ca_file")


@dataclass(frozen=True, slots=True)
class RetrySettings:
    """Retry budgets for the blocking startup steps."""

    discovery_attempts: int = 30
    discovery_delay_seconds: DurationSeconds = 1.0
    master_lookup_attempts: int = 10
    master_lookup_delay_seconds: DurationSeconds = 1.0
    max_delay_seconds: DurationSeconds = 10.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.discovery_attempts < 1 or self.master_lookup_attempts < 1:
            raise ConfigurationError("Retry budgets must allow at least one attempt")
        if self.discovery_delay_seconds < 0 or self.master_lookup_delay_seconds < 0:
            raise ConfigurationError("Retry delays cannot be negative")
        if self.backoff_multiplier < 1.0:
            raise ConfigurationError("Backoff multiplier must be >= 1.0")


@dataclass(frozen=True, slots=True)
class MonitorSettings:
    """Settings applied to every monitor agent of the cluster."""

    quorum: QuorumThreshold = 2
    down_after_ms: DurationMilliseconds = 60000
    failover_timeout_ms: DurationMilliseconds = 18000
    parallel_syncs: int = 1
    announce_hostnames: bool = True
    resolve_hostnames: bool = True
    working_dir: str = "/tmp"

    def __post_init__(self) -> None:
        if self.quorum < 1:
            raise ConfigurationError("Quorum threshold must be at least 1")
        if self.down_after_ms <= 0 or self.failover_timeout_ms <= 0:
            raise ConfigurationError("Monitor timeouts must be positive")
        if self.parallel_syncs < 1:
            raise ConfigurationError("parallel_syncs must be at least 1")

    @property
    def down_after_seconds(self) -> DurationSeconds:
        return self.down_after_ms / 1000.0

    @property
    def failover_timeout_seconds(self) -> DurationSeconds:
        return self.failover_timeout_ms / 1000.0


@dataclass(frozen=True, slots=True)
class ShutdownSettings:
    timeout_seconds: DurationSeconds = 20.0
    poll_interval_seconds: DurationSeconds = 1.0

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ConfigurationError("Shutdown timeout must be positive")
        if self.poll_interval_seconds <= 0:
            raise ConfigurationError("Shutdown poll interval must be positive")


@dataclass(frozen=True, slots=True)
class DnsSettings:
    """Where discovery lookups go; no server means the host resolver stack."""

    server: str | None = None
    port: PortNumber = 53
    use_tcp: bool = False
    timeout_seconds: DurationSeconds = 2.0

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ConfigurationError("DNS timeout must be positive")


@dataclass(frozen=True, slots=True)
class ClusterSettings:
    """Everything a member needs to know about its cluster."""

    cluster_name: ClusterName = "mymaster"
    headless_service: ServiceName = "redis-headless.default.svc.cluster.local"
    client_service: ServiceName = "redis.default.svc.cluster.local"
    member_prefix: str = "redis-node"
    cluster_size: int = 3
    data_port: PortNumber = DEFAULT_DATA_PORT
    monitor_port: PortNumber = DEFAULT_MONITOR_PORT
    password: str | None = None
    master_password: str | None = None
    tls: TlsSettings = field(default_factory=TlsSettings)
    monitor: MonitorSettings = field(default_factory=MonitorSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    shutdown: ShutdownSettings = field(default_factory=ShutdownSettings)
    dns: DnsSettings = field(default_factory=DnsSettings)

    def __post_init__(self) -> None:
        if not self.cluster_name:
            raise ConfigurationError("Cluster name cannot be empty")
        if self.cluster_size < 1:
            raise ConfigurationError("Cluster size must be at least 1")
        if self.monitor.quorum > self.cluster_size:
            raise ConfigurationError(
                f"Quorum {self.monitor.quorum} exceeds monitor count {self.cluster_size}"
            )

    @property
    def effective_master_password(self) -> str | None:
        return self.master_password if self.master_password else self.password
