import asyncio

import pytest

from kvquorum.core.config import ClusterSettings
from kvquorum.core.monitor_agent import MonitorAgent
from kvquorum.core.monitor_protocol import MasterInfo
from kvquorum.core.peer_directory import PeerDirectory
from kvquorum.core.role_resolver import RoleResolver
from kvquorum.datastructures.cluster_types import MemberAddress
from kvquorum.dns.names import monitor_identity
from kvquorum.dns.resolver import StaticHostResolver

from .harness import HEADLESS, member_address, member_fqdn, member_ip, register_member


class _RecordingMonitor:
    """Monitor client that records the commands pushed to it."""

    def __init__(self, master: MemberAddress | None = None) -> None:
        self.master = master
        self.calls: list[tuple] = []

    async def ping(self) -> bool:
        return True

    async def get_master_addr_by_name(self, name: str) -> MemberAddress | None:
        return self.master

    async def master_info(self, name: str) -> MasterInfo:
        raise NotImplementedError

    async def failover(self, name: str) -> None:
        raise NotImplementedError

    async def monitor(self, name: str, host: str, port: int, quorum: int) -> None:
        self.calls.append(("monitor", name, host, port, quorum))

    async def known_sentinel(self, name: str, host: str, port: int, identity: str) -> None:
        self.calls.append(("known-sentinel", name, host, port, identity))

    async def known_replica(self, name: str, host: str, port: int) -> None:
        self.calls.append(("known-replica", name, host, port))

    async def set_option(self, name: str, option: str, value: str) -> None:
        self.calls.append((option, name, value))

    async def close(self) -> None:
        return None


def _agent(
    resolver: StaticHostResolver,
    settings: ClusterSettings,
    monitor: _RecordingMonitor,
    ordinal: int,
) -> MonitorAgent:
    directory = PeerDirectory.from_settings(resolver, settings)
    role_resolver = RoleResolver(directory, monitor, settings)  # type: ignore[arg-type]
    return MonitorAgent(settings, directory, role_resolver, self_address=member_ip(ordinal))


@pytest.mark.asyncio
async def test_replica_bootstrap_registers_peers_and_replicas(
    resolver: StaticHostResolver, settings: ClusterSettings
) -> None:
    monitor = _RecordingMonitor(master=member_address(0))
    agent = _agent(resolver, settings, monitor, 1)

    config = await agent.bootstrap("redis-node-1")

    assert config.identity == monitor_identity("redis-node-1")
    assert config.master == member_address(0)
    # Peers are every other resolvable monitor
    assert set(config.known_peers) == {
        monitor_identity("redis-node-0"),
        monitor_identity("redis-node-2"),
    }
    # Replicas are every other member except the master
    assert set(config.known_replicas) == {member_fqdn(2)}


@pytest.mark.asyncio
async def test_lone_member_monitors_itself(settings: ClusterSettings) -> None:
    resolver = StaticHostResolver()
    register_member(resolver, 0)
    agent = _agent(resolver, settings, _RecordingMonitor(), 0)

    config = await agent.bootstrap("redis-node-0")

    assert config.master == member_address(0)
    assert config.known_peers == {}
    assert config.known_replicas == {}


@pytest.mark.asyncio
async def test_bootstrap_twice_adds_nothing(
    resolver: StaticHostResolver, settings: ClusterSettings
) -> None:
    agent = _agent(resolver, settings, _RecordingMonitor(member_address(0)), 2)

    first = list((await agent.bootstrap("redis-node-2")).commands())
    second = list((await agent.bootstrap("redis-node-2")).commands())

    assert first == second
    assert len(agent.config.known_peers) == 2
    assert len(agent.config.known_replicas) == 1


@pytest.mark.asyncio
async def test_unresolvable_peers_are_picked_up_by_reconcile(
    settings: ClusterSettings,
) -> None:
    resolver = StaticHostResolver({HEADLESS: [member_ip(0), member_ip(1)]})
    resolver.set(member_fqdn(0), [member_ip(0)])
    resolver.set(member_fqdn(1), [member_ip(1)])
    agent = _agent(resolver, settings, _RecordingMonitor(member_address(0)), 1)

    config = await agent.bootstrap("redis-node-1")
    assert set(config.known_replicas) == set()

    register_member(resolver, 2)
    assert await agent.reconcile() == 2
    assert set(config.known_replicas) == {member_fqdn(2)}
    assert monitor_identity("redis-node-2") in config.known_peers
    assert await agent.reconcile() == 0


@pytest.mark.asyncio
async def test_reconcile_follows_reported_master(
    resolver: StaticHostResolver, settings: ClusterSettings
) -> None:
    monitor = _RecordingMonitor(member_address(0))
    agent = _agent(resolver, settings, monitor, 1)
    await agent.bootstrap("redis-node-1")

    monitor.master = member_address(2)
    await agent.reconcile(monitor)

    assert agent.config.master == member_address(2)
    assert member_fqdn(2) not in agent.config.known_replicas
    assert member_fqdn(0) in agent.config.known_replicas


@pytest.mark.asyncio
async def test_apply_pushes_every_directive(
    resolver: StaticHostResolver, settings: ClusterSettings
) -> None:
    monitor = _RecordingMonitor(member_address(0))
    agent = _agent(resolver, settings, monitor, 1)
    await agent.bootstrap("redis-node-1")

    await agent.apply(monitor)

    assert monitor.calls[0] == ("monitor", "mymaster", member_fqdn(0), 6379, 2)
    assert ("down-after-milliseconds", "mymaster", "60000") in monitor.calls
    assert ("failover-timeout", "mymaster", "18000") in monitor.calls
    assert ("parallel-syncs", "mymaster", "1") in monitor.calls
    assert ("known-replica", "mymaster", member_fqdn(2), 6379) in monitor.calls
    assert [call[0] for call in monitor.calls].count("known-sentinel") == 2


@pytest.mark.asyncio
async def test_run_applies_newly_resolved_members(settings: ClusterSettings) -> None:
    resolver = StaticHostResolver()
    register_member(resolver, 0)
    monitor = _RecordingMonitor()
    agent = _agent(resolver, settings, monitor, 0)
    await agent.bootstrap("redis-node-0")

    stop = asyncio.Event()
    task = asyncio.create_task(agent.run(monitor, stop, interval_seconds=0.01))
    register_member(resolver, 1)
    expected = ("known-replica", "mymaster", member_fqdn(1), 6379)
    for _ in range(100):
        if expected in monitor.calls:
            break
        await asyncio.sleep(0.01)
    stop.set()
    await asyncio.wait_for(task, timeout=1.0)

    assert expected in monitor.calls
