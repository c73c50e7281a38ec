import asyncio
import time

import pytest

from kvquorum.core.errors import FailoverTimedOut
from kvquorum.core.failover_coordinator import (
    DataNodePreStop,
    FailoverCoordinator,
    HandoverOutcome,
)
from kvquorum.datastructures.cluster_types import Role

from .harness import ManualClock, SimulatedCluster, fast_settings, member_address


@pytest.mark.asyncio
async def test_stopping_master_hands_over(cluster: SimulatedCluster) -> None:
    coordinator = FailoverCoordinator(cluster.members[0].monitor, cluster.settings.shutdown)

    result = await coordinator.on_member_stopping(member_address(0), "mymaster")
    await cluster.quorum.wait_idle()

    assert result.outcome is HandoverOutcome.HANDED_OVER
    assert result.handed_over
    assert result.new_master == member_address(1)
    assert result.elapsed_seconds < cluster.settings.shutdown.timeout_seconds
    assert cluster.plane.masters() == [member_address(1)]
    assert cluster.quorum.history[-1].manual


@pytest.mark.asyncio
async def test_stopping_replica_returns_immediately(cluster: SimulatedCluster) -> None:
    coordinator = FailoverCoordinator(cluster.members[1].monitor, cluster.settings.shutdown)

    result = await coordinator.on_member_stopping(member_address(1), "mymaster")

    assert result.outcome is HandoverOutcome.NOT_MASTER
    assert not result.handed_over
    assert result.new_master == member_address(0)
    assert cluster.quorum.history == []
    assert not cluster.quorum.failover_active


@pytest.mark.asyncio
async def test_role_is_read_fresh_on_every_call(cluster: SimulatedCluster) -> None:
    coordinator = FailoverCoordinator(cluster.members[1].monitor, cluster.settings.shutdown)
    first = await coordinator.on_member_stopping(member_address(1), "mymaster")
    assert first.outcome is HandoverOutcome.NOT_MASTER

    await cluster.service_monitor.failover("mymaster")
    await cluster.quorum.wait_idle()

    second = await coordinator.on_member_stopping(member_address(1), "mymaster")
    await cluster.quorum.wait_idle()
    assert second.outcome is HandoverOutcome.HANDED_OVER
    assert second.new_master != member_address(1)


@pytest.mark.asyncio
async def test_failed_promotion_times_out_within_bound(cluster: SimulatedCluster) -> None:
    cluster.plane.refuse_promotion.update({member_address(1), member_address(2)})
    coordinator = FailoverCoordinator(cluster.members[0].monitor, cluster.settings.shutdown)

    started = time.monotonic()
    with pytest.raises(FailoverTimedOut):
        await coordinator.on_member_stopping(member_address(0), "mymaster", 0.2)
    elapsed = time.monotonic() - started
    await cluster.quorum.wait_idle()

    assert elapsed < 1.0
    assert not cluster.quorum.history[-1].succeeded
    assert cluster.plane.masters() == [member_address(0)]


@pytest.mark.asyncio
async def test_rejected_failover_request_still_waits_then_times_out() -> None:
    simulated = SimulatedCluster(fast_settings(cluster_size=1, quorum=1), clock=ManualClock())
    await simulated.cold_start()
    coordinator = FailoverCoordinator(simulated.members[0].monitor)

    with pytest.raises(FailoverTimedOut) as excinfo:
        await coordinator.on_member_stopping(member_address(0), "mymaster", 0.1)

    assert excinfo.value.timeout_seconds == 0.1
    assert simulated.quorum.history == []


class _HangingMonitor:
    async def get_master_addr_by_name(self, name: str) -> None:
        await asyncio.sleep(10)


@pytest.mark.asyncio
async def test_unresponsive_monitor_is_bounded() -> None:
    coordinator = FailoverCoordinator(_HangingMonitor())  # type: ignore[arg-type]
    with pytest.raises(FailoverTimedOut):
        await coordinator.on_member_stopping(member_address(0), "mymaster", 0.05)


@pytest.mark.asyncio
async def test_data_prestop_on_replica_returns_at_once(cluster: SimulatedCluster) -> None:
    prestop = DataNodePreStop(cluster.data_client(2), cluster.settings.shutdown)
    result = await prestop.wait_for_demotion()
    assert result.outcome is HandoverOutcome.NOT_MASTER


@pytest.mark.asyncio
async def test_data_prestop_waits_for_demotion(cluster: SimulatedCluster) -> None:
    cluster.plane.promotion_delay_seconds = 0.05
    prestop = DataNodePreStop(cluster.data_client(0), cluster.settings.shutdown)

    result, _ = await asyncio.gather(
        prestop.wait_for_demotion(),
        cluster.service_monitor.failover("mymaster"),
    )
    await cluster.quorum.wait_idle()

    assert result.handed_over
    assert cluster.plane.nodes[member_address(0)].role is Role.REPLICA


@pytest.mark.asyncio
async def test_data_prestop_times_out_while_still_master(
    cluster: SimulatedCluster,
) -> None:
    prestop = DataNodePreStop(cluster.data_client(0), cluster.settings.shutdown)
    with pytest.raises(FailoverTimedOut):
        await prestop.wait_for_demotion(0.05)


@pytest.mark.asyncio
async def test_zero_timeout_is_not_replaced_by_default(cluster: SimulatedCluster) -> None:
    coordinator = FailoverCoordinator(cluster.members[0].monitor, cluster.settings.shutdown)
    with pytest.raises(FailoverTimedOut) as excinfo:
        await coordinator.on_member_stopping(member_address(0), "mymaster", 0)
    assert excinfo.value.timeout_seconds == 0
    assert cluster.plane.masters() == [member_address(0)]

    prestop = DataNodePreStop(cluster.data_client(0), cluster.settings.shutdown)
    with pytest.raises(FailoverTimedOut) as excinfo:
        await prestop.wait_for_demotion(0)
    assert excinfo.value.timeout_seconds == 0
