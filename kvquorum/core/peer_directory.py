"""Peer directory backed by headless-service DNS."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from kvquorum.datastructures.cluster_types import ClusterView, Member
from kvquorum.datastructures.type_aliases import IpAddress, Ordinal, ServiceName
from kvquorum.dns.names import full_hostname, ordinal_hostname
from kvquorum.dns.resolver import HostResolver

from .config import ClusterSettings, PortKind, service_port
from .errors import DiscoveryUnavailable
from .retry import TRANSIENT_ERRORS, RetryPolicy, retry_until


@dataclass(eq=False, slots=True)
class PeerDirectory:
    """Read-only lookups of cluster members. Holds no state between calls."""

    resolver: HostResolver
    settings: ClusterSettings
    barrier_policy: RetryPolicy

    @classmethod
    def from_settings(
        cls, resolver: HostResolver, settings: ClusterSettings
    ) -> PeerDirectory:
        retry = settings.retry
        return cls(
            resolver=resolver,
            settings=settings,
            barrier_policy=RetryPolicy(
                max_attempts=retry.discovery_attempts,
                initial_delay_seconds=retry.discovery_delay_seconds,
                max_delay_seconds=retry.max_delay_seconds,
                backoff_multiplier=retry.backoff_multiplier,
            ),
        )

    async def resolve(
        self, service: ServiceName | None = None
    ) -> frozenset[IpAddress]:
        name = service or self.settings.headless_service
        return frozenset(await self.resolver.resolve(name))

    async def self_visible(
        self, self_address: IpAddress, service: ServiceName | None = None
    ) -> bool:
        return self_address in await self.resolve(service)

    async def cluster_view(
        self, self_address: IpAddress, service: ServiceName | None = None
    ) -> ClusterView:
        name = service or self.settings.headless_service
        return ClusterView.create(name, await self.resolve(name), self_address)

    async def wait_until_visible(
        self, self_address: IpAddress, service: ServiceName | None = None
    ) -> ClusterView:
        """Block until discovery lists ``self_address``.

        Raises:
            DiscoveryUnavailable: the retry budget ran out first.
        """
        name = service or self.settings.headless_service

        async def _attempt() -> ClusterView | None:
            view = await self.cluster_view(self_address, name)
            if view.self_visible:
                logger.debug("{} has my IP: {}", name, self_address)
                return view
            logger.warning(
                "{} does not contain the IP of this member: {}", name, self_address
            )
            return None

        view = await retry_until(
            _attempt, self.barrier_policy, description=f"lookup of {name}"
        )
        if view is None:
            logger.error(
                "Discovery never listed {} in {} after {} attempts",
                self_address,
                name,
                self.barrier_policy.max_attempts,
            )
            raise DiscoveryUnavailable(
                name, self_address, self.barrier_policy.max_attempts
            )
        return view

    def member_for(self, ordinal: Ordinal) -> Member:
        hostname = ordinal_hostname(self.settings.member_prefix, ordinal)
        return Member(
            hostname=hostname,
            full_hostname=full_hostname(hostname, self.settings.headless_service),
            ordinal=ordinal,
            port=service_port(
                hostname, PortKind.DATA, default=self.settings.data_port
            ),
        )

    async def resolve_member(self, ordinal: Ordinal) -> Member | None:
        """Resolve one ordinal's hostname; ``None`` when it is not resolvable yet."""
        member = self.member_for(ordinal)
        try:
            addresses = await self.resolver.resolve(member.full_hostname)
        except TRANSIENT_ERRORS as exc:
            logger.debug("Skipping {}: {}", member.full_hostname, exc)
            return None
        if not addresses:
            return None
        member.ip = addresses[0]
        return member

    async def members(self, cluster_size: int | None = None) -> list[Member]:
        """Resolvable members among ordinals ``0..cluster_size-1``."""
        size = self.settings.cluster_size if cluster_size is None else cluster_size
        resolved: list[Member] = []
        for ordinal in range(size):
            member = await self.resolve_member(ordinal)
            if member is not None:
                resolved.append(member)
        return resolved
