import pytest

from kvquorum.core.config import ClusterSettings
from kvquorum.core.errors import DiscoveryUnavailable
from kvquorum.core.peer_directory import PeerDirectory
from kvquorum.dns.resolver import StaticHostResolver

from .harness import HEADLESS, member_fqdn, member_ip


@pytest.mark.asyncio
async def test_resolve_lists_every_member(
    resolver: StaticHostResolver, settings: ClusterSettings
) -> None:
    directory = PeerDirectory.from_settings(resolver, settings)
    assert await directory.resolve() == frozenset(member_ip(n) for n in range(3))
    assert await directory.self_visible(member_ip(1))
    assert not await directory.self_visible("10.9.9.9")


@pytest.mark.asyncio
async def test_barrier_returns_view_once_self_is_listed(
    resolver: StaticHostResolver, settings: ClusterSettings
) -> None:
    directory = PeerDirectory.from_settings(resolver, settings)
    view = await directory.wait_until_visible(member_ip(0))
    assert view.self_visible
    assert view.others == (member_ip(1), member_ip(2))
    assert not view.is_alone


@pytest.mark.asyncio
async def test_discovery_never_listing_self_is_fatal(settings: ClusterSettings) -> None:
    # Misconfigured network: the headless service lists the peers only
    resolver = StaticHostResolver({HEADLESS: [member_ip(1), member_ip(2)]})
    directory = PeerDirectory.from_settings(resolver, settings)

    with pytest.raises(DiscoveryUnavailable) as excinfo:
        await directory.wait_until_visible(member_ip(0))

    assert excinfo.value.attempts == settings.retry.discovery_attempts
    assert excinfo.value.self_address == member_ip(0)


@pytest.mark.asyncio
async def test_barrier_passes_when_discovery_catches_up(settings: ClusterSettings) -> None:
    resolver = StaticHostResolver()
    calls = 0

    class _LateResolver:
        async def resolve(self, name: str) -> tuple[str, ...]:
            nonlocal calls
            calls += 1
            if calls == 2:
                resolver.add(HEADLESS, member_ip(0))
            return await resolver.resolve(name)

    directory = PeerDirectory.from_settings(_LateResolver(), settings)
    view = await directory.wait_until_visible(member_ip(0))
    assert view.is_alone
    assert calls == 2


@pytest.mark.asyncio
async def test_members_skip_unresolvable_ordinals(settings: ClusterSettings) -> None:
    resolver = StaticHostResolver(
        {member_fqdn(0): [member_ip(0)], member_fqdn(2): [member_ip(2)]}
    )
    directory = PeerDirectory.from_settings(resolver, settings)

    members = await directory.members()

    assert [member.ordinal for member in members] == [0, 2]
    assert members[1].ip == member_ip(2)
    assert members[1].full_hostname == member_fqdn(2)
    assert members[1].port == 6379


@pytest.mark.asyncio
async def test_members_honour_configured_cluster_size(resolver: StaticHostResolver) -> None:
    for ordinal in range(3, 5):
        resolver.set(member_fqdn(ordinal), [member_ip(ordinal)])
    settings = ClusterSettings(headless_service=HEADLESS, cluster_size=5)
    directory = PeerDirectory.from_settings(resolver, settings)

    assert len(await directory.members()) == 5
    assert len(await directory.members(cluster_size=3)) == 3
