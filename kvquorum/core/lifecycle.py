"""
Lifecycle hooks invoked by the orchestrator.

``MemberLifecycle`` wires the peer directory, role resolver, monitor agent,
failover coordinator and health probes for one member. Startup hooks raise
``StartupError`` subclasses, which are fatal; stopping hooks never raise and
report a failed handover as a warning.
"""

from __future__ import annotations

import asyncio
import socket
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from kvquorum.client.sentinel_client import RedisDataNodeClient, RedisSentinelClient
from kvquorum.datastructures.cluster_types import MemberAddress
from kvquorum.datastructures.type_aliases import (
    DurationSeconds,
    HostName,
    IpAddress,
    Timestamp,
)
from kvquorum.dns.names import first_ipv4, full_hostname
from kvquorum.client.dns_client import DnsQueryClient
from kvquorum.dns.resolver import (
    DnsServerHostResolver,
    HostResolver,
    SystemHostResolver,
)

from .config import ClusterSettings, DnsSettings, PortKind, service_port
from .errors import MonitorCommandError, ShutdownError, StartupError
from .failover_coordinator import DataNodePreStop, FailoverCoordinator, HandoverResult
from .health import HealthProbes, ProbeResult
from .monitor_agent import MonitorAgent
from .monitor_config import MonitorConfig
from .monitor_protocol import DataNodeClient, MonitorClient
from .peer_directory import PeerDirectory
from .role_resolver import RoleResolver
from .startup import (
    DataNodePlan,
    plan_data_node,
    write_data_node_config,
    write_monitor_config,
)

SHUTDOWN_ERRORS: tuple[type[BaseException], ...] = (
    ShutdownError,
    MonitorCommandError,
    OSError,
    TimeoutError,
)


def discovery_resolver(settings: DnsSettings) -> HostResolver:
    """Direct queries to the configured DNS server, else the host resolver."""
    if settings.server is None:
        return SystemHostResolver(family=socket.AF_INET)
    return DnsServerHostResolver(
        DnsQueryClient(
            settings.server,
            settings.port,
            timeout_seconds=settings.timeout_seconds,
            use_tcp=settings.use_tcp,
        )
    )


@dataclass(slots=True)
class LifecycleClients:
    """Protocol clients a member talks to.

    ``monitor`` is the co-located monitor agent; ``service_monitor`` is the
    load-balanced monitor service used for master lookups at startup.
    """

    monitor: MonitorClient
    service_monitor: MonitorClient
    node: DataNodeClient
    connect: Callable[[MemberAddress], DataNodeClient]
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)


class MemberLifecycle:
    """Entry points for one member's start, stop and probe hooks."""

    def __init__(
        self,
        settings: ClusterSettings,
        hostname: HostName,
        self_address: IpAddress,
        resolver: HostResolver,
        clients: LifecycleClients,
        *,
        config_dir: Path = Path("/opt/kvquorum/etc"),
        monitor_config_path: Path = Path("/opt/kvquorum/sentinel/sentinel.conf"),
        probe_timeout_seconds: DurationSeconds = 1.0,
        clock: Callable[[], Timestamp] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.hostname = hostname
        self.self_address = self_address
        self.clients = clients
        self.config_dir = config_dir
        self.monitor_config_path = monitor_config_path
        self.directory = PeerDirectory.from_settings(resolver, settings)
        self.role_resolver = RoleResolver(
            self.directory, clients.service_monitor, settings
        )
        self.agent = MonitorAgent(
            settings, self.directory, self.role_resolver, self_address=self_address
        )
        self.coordinator = FailoverCoordinator(
            clients.monitor, settings.shutdown, clock=clock
        )
        self.data_prestop = DataNodePreStop(clients.node, settings.shutdown, clock=clock)
        self.probes = HealthProbes(
            clients.node,
            clients.monitor,
            settings.cluster_name,
            clients.connect,
            timeout_seconds=probe_timeout_seconds,
        )

    @property
    def announce(self) -> MemberAddress:
        return MemberAddress(
            host=full_hostname(self.hostname, self.settings.headless_service),
            port=service_port(
                self.hostname, PortKind.DATA, default=self.settings.data_port
            ),
        )

    @classmethod
    async def from_settings(
        cls,
        settings: ClusterSettings,
        *,
        hostname: HostName | None = None,
        resolver: HostResolver | None = None,
        **kwargs,
    ) -> MemberLifecycle:
        """Build a lifecycle talking to real servers over redis.asyncio."""
        hostname = hostname or socket.gethostname()
        resolver = resolver or discovery_resolver(settings.dns)
        self_address = first_ipv4(await resolver.resolve(hostname))
        if self_address is None:
            raise StartupError(f"No IPv4 address found for {hostname}")

        password = settings.password
        monitor_port = service_port(
            hostname, PortKind.MONITOR, default=settings.monitor_port
        )
        monitor = RedisSentinelClient(
            MemberAddress(host="localhost", port=monitor_port),
            password=password,
            tls=settings.tls,
        )
        service_monitor = RedisSentinelClient(
            MemberAddress(host=settings.client_service, port=settings.monitor_port),
            password=password,
            tls=settings.tls,
        )
        node = RedisDataNodeClient(
            MemberAddress(
                host="localhost",
                port=service_port(hostname, PortKind.DATA, default=settings.data_port),
            ),
            password=password,
            tls=settings.tls,
        )

        def connect(address: MemberAddress) -> DataNodeClient:
            return RedisDataNodeClient(address, password=password, tls=settings.tls)

        clients = LifecycleClients(
            monitor=monitor,
            service_monitor=service_monitor,
            node=node,
            connect=connect,
            closers=[monitor.close, service_monitor.close, node.close],
        )
        return cls(settings, hostname, self_address, resolver, clients, **kwargs)

    async def close(self) -> None:
        for closer in self.clients.closers:
            await closer()

    async def on_start(self) -> DataNodePlan:
        """Decide this member's role and prepare its data node config."""
        decision = await self.role_resolver.resolve_role(
            self.self_address, self_announce=self.announce
        )
        plan = plan_data_node(decision, self.settings, self.hostname, self.config_dir)
        write_data_node_config(plan)
        logger.info(
            "Starting {} as {} on port {}", self.hostname, plan.role.value, plan.port
        )
        return plan

    async def on_monitor_start(self) -> MonitorConfig:
        """Bootstrap the co-located monitor agent and write its config file."""
        config = await self.agent.bootstrap(self.hostname)
        write_monitor_config(config, self.monitor_config_path)
        return config

    async def on_stopping(
        self, timeout_seconds: DurationSeconds | None = None
    ) -> HandoverResult | None:
        """Monitor-side pre-stop. Returns None when the handover failed."""
        try:
            return await self.coordinator.on_member_stopping(
                self.announce, self.settings.cluster_name, timeout_seconds
            )
        except SHUTDOWN_ERRORS as exc:
            logger.warning("Graceful handover failed, stopping anyway: {}", exc)
            return None

    async def on_data_stopping(
        self, timeout_seconds: DurationSeconds | None = None
    ) -> HandoverResult | None:
        """Data-side pre-stop. Returns None when the node never got demoted."""
        try:
            return await self.data_prestop.wait_for_demotion(timeout_seconds)
        except SHUTDOWN_ERRORS as exc:
            logger.warning("Data node still master, stopping anyway: {}", exc)
            return None

    async def on_stopping_member(
        self, timeout_seconds: DurationSeconds | None = None
    ) -> tuple[HandoverResult | None, HandoverResult | None]:
        """Both pre-stop hooks at once, so the total wait is a single timeout."""
        monitor_side, data_side = await asyncio.gather(
            self.on_stopping(timeout_seconds), self.on_data_stopping(timeout_seconds)
        )
        return monitor_side, data_side

    async def liveness_check(self) -> ProbeResult:
        return await self.probes.local_liveness()

    async def readiness_check(self) -> ProbeResult:
        return await self.probes.local_readiness()
