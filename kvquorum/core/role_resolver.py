"""Startup role decision for a cluster member."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from kvquorum.datastructures.cluster_types import ClusterView, MemberAddress, Role
from kvquorum.datastructures.type_aliases import ClusterName, IpAddress

from .config import ClusterSettings
from .errors import MasterUnknown
from .monitor_protocol import MonitorClient
from .peer_directory import PeerDirectory
from .retry import RetryPolicy, retry_until


@dataclass(frozen=True, slots=True)
class RoleDecision:
    """Outcome of role resolution.

    ``master`` is the address to replicate from; it is ``None`` only when this
    member starts as master because nobody else was visible.
    """

    role: Role
    master: MemberAddress | None
    view: ClusterView

    @property
    def is_master(self) -> bool:
        return self.role is Role.MASTER


class RoleResolver:
    """Decide once per process lifetime whether to start as master or replica."""

    def __init__(
        self,
        directory: PeerDirectory,
        monitor: MonitorClient,
        settings: ClusterSettings,
        *,
        lookup_policy: RetryPolicy | None = None,
    ) -> None:
        self._directory = directory
        self._monitor = monitor
        self._settings = settings
        retry = settings.retry
        self._lookup_policy = lookup_policy or RetryPolicy(
            max_attempts=retry.master_lookup_attempts,
            initial_delay_seconds=retry.master_lookup_delay_seconds,
            max_delay_seconds=retry.max_delay_seconds,
            backoff_multiplier=retry.backoff_multiplier,
        )

    async def resolve_role(
        self,
        self_address: IpAddress,
        cluster_name: ClusterName | None = None,
        *,
        self_announce: MemberAddress | None = None,
    ) -> RoleDecision:
        """Resolve the startup role of the member at ``self_address``.

        ``self_announce`` is the address this member announces to monitors;
        when the quorum already reports it as master (a restarted master that
        was never failed over), the member resumes as master.

        Raises:
            DiscoveryUnavailable: discovery never listed ``self_address``.
            MasterUnknown: peers are visible but no master was ever reported.
        """
        name = cluster_name or self._settings.cluster_name
        view = await self._directory.wait_until_visible(self_address)

        if view.is_alone:
            logger.info(
                "Only member visible in {}, starting {} as master",
                view.service,
                self_address,
            )
            return RoleDecision(role=Role.MASTER, master=None, view=view)

        logger.info(
            "{} peer(s) visible in {}, asking monitors for the {} master",
            len(view.others),
            view.service,
            name,
        )
        master = await retry_until(
            lambda: self._monitor.get_master_addr_by_name(name),
            self._lookup_policy,
            description=f"get-master-addr-by-name {name}",
        )
        if master is None:
            logger.error("Monitors never reported a master for {}", name)
            raise MasterUnknown(name, self._lookup_policy.max_attempts)

        if self_announce is not None and master == self_announce:
            logger.info("Monitors still report this member ({}) as master", master)
            return RoleDecision(role=Role.MASTER, master=master, view=view)

        logger.info("Starting as replica of {}", master)
        return RoleDecision(role=Role.REPLICA, master=master, view=view)
