"""Monitor agent bootstrap and reconciliation."""

from __future__ import annotations

import asyncio
import contextlib

from loguru import logger

from kvquorum.datastructures.cluster_types import (
    KnownMonitor,
    KnownReplica,
    Member,
    MemberAddress,
)
from kvquorum.datastructures.type_aliases import (
    DurationSeconds,
    HostName,
    IpAddress,
    MonitorIdentity,
)
from kvquorum.dns.names import full_hostname, monitor_identity

from .config import ClusterSettings, PortKind, service_port
from .monitor_config import MonitorConfig
from .monitor_protocol import MonitorClient, MonitorCommand
from .peer_directory import PeerDirectory
from .retry import TRANSIENT_ERRORS
from .role_resolver import RoleDecision, RoleResolver


class MonitorAgent:
    """Builds and maintains the local monitor configuration of one member."""

    def __init__(
        self,
        settings: ClusterSettings,
        directory: PeerDirectory,
        role_resolver: RoleResolver,
        *,
        self_address: IpAddress,
    ) -> None:
        self._settings = settings
        self._directory = directory
        self._role_resolver = role_resolver
        self._self_address = self_address
        self._hostname: HostName | None = None
        self._config: MonitorConfig | None = None

    @property
    def config(self) -> MonitorConfig:
        if self._config is None:
            raise RuntimeError("Monitor agent has not been bootstrapped")
        return self._config

    @property
    def identity(self) -> MonitorIdentity:
        return self.config.identity

    def _data_address(self, hostname: HostName) -> MemberAddress:
        return MemberAddress(
            host=full_hostname(hostname, self._settings.headless_service),
            port=service_port(hostname, PortKind.DATA, default=self._settings.data_port),
        )

    async def bootstrap(
        self,
        self_hostname: HostName,
        cluster_size: int | None = None,
        *,
        decision: RoleDecision | None = None,
    ) -> MonitorConfig:
        """Build the monitor config for ``self_hostname``.

        Safe to re-run: the identity is derived from the hostname, and peers
        and replicas already registered are left as they are. ``decision``
        reuses a role decision already taken by the co-located data node.
        """
        identity = monitor_identity(self_hostname)
        self_data = self._data_address(self_hostname)
        if decision is None:
            decision = await self._role_resolver.resolve_role(
                self._self_address, self_announce=self_data
            )
        master = decision.master if decision.master is not None else self_data

        if self._config is None or self._config.identity != identity:
            monitor_port = service_port(
                self_hostname, PortKind.MONITOR, default=self._settings.monitor_port
            )
            self._config = MonitorConfig(
                identity=identity,
                cluster_name=self._settings.cluster_name,
                master=master,
                settings=self._settings.monitor,
                port=monitor_port,
                announce_host=self_data.host,
                password=self._settings.password,
            )
        elif self._config.master != master:
            logger.info("Retargeting monitor from {} to {}", self._config.master, master)
            self._config.retarget(master)
        self._hostname = self_hostname

        logger.info(
            "Monitor {} watching {} at {} (quorum {})",
            identity[:8],
            self._settings.cluster_name,
            master,
            self._settings.monitor.quorum,
        )
        added = await self._register_members(cluster_size)
        logger.debug("Bootstrap registered {} new peer/replica entries", added)
        return self._config

    def _register_member(self, member: Member) -> int:
        config = self.config
        if member.hostname == self._hostname:
            return 0
        added = 0
        master = config.master
        if member.ip != master.host:
            monitor_port = service_port(
                member.hostname, PortKind.MONITOR, default=self._settings.monitor_port
            )
            peer = KnownMonitor(
                identity=monitor_identity(member.hostname),
                host=member.full_hostname,
                port=monitor_port,
            )
            if config.add_known_peer(peer):
                added += 1
        if member.address != master:
            if config.add_known_replica(
                KnownReplica(host=member.full_hostname, port=member.port)
            ):
                added += 1
        return added

    async def _register_members(self, cluster_size: int | None) -> int:
        added = 0
        for member in await self._directory.members(cluster_size):
            added += self._register_member(member)
        return added

    async def reconcile(self, monitor: MonitorClient | None = None) -> int:
        """One reconciliation pass; returns the number of new entries.

        Members that did not resolve during bootstrap are picked up here.
        With ``monitor`` given, the config also follows the master the
        monitors currently report.
        """
        config = self.config
        if monitor is not None:
            try:
                reported = await monitor.get_master_addr_by_name(config.cluster_name)
            except TRANSIENT_ERRORS as exc:
                logger.debug("Master lookup during reconciliation failed: {}", exc)
                reported = None
            if reported is not None and reported != config.master:
                logger.info("Monitors moved {} to {}", config.cluster_name, reported)
                config.retarget(reported)
        return await self._register_members(None)

    async def apply(self, monitor: MonitorClient) -> None:
        """Push the whole config to a live monitor. Every command is idempotent."""
        for command in self.config.commands():
            await _dispatch(monitor, command)

    async def run(
        self,
        monitor: MonitorClient,
        stop: asyncio.Event,
        *,
        interval_seconds: DurationSeconds = 10.0,
    ) -> None:
        """Reconcile continuously until ``stop`` is set."""
        while not stop.is_set():
            try:
                if await self.reconcile(monitor):
                    await self.apply(monitor)
            except TRANSIENT_ERRORS as exc:
                logger.warning("Monitor reconciliation failed: {}", exc)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=interval_seconds)


async def _dispatch(monitor: MonitorClient, command: MonitorCommand) -> None:
    args = command.args
    match command.directive:
        case "monitor":
            name, host, port, quorum = args
            await monitor.monitor(name, host, int(port), int(quorum))
        case "known-sentinel":
            name, host, port, identity = args
            await monitor.known_sentinel(name, host, int(port), identity)
        case "known-replica":
            name, host, port = args
            await monitor.known_replica(name, host, int(port))
        case _:
            name, value = args
            await monitor.set_option(name, command.directive, value)
