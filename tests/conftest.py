"""Pytest fixtures for kvquorum tests.

Every fixture runs the real control components in process: a static name
table for discovery, an in-memory data plane and an in-process monitor quorum.
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from kvquorum.core.config import ClusterSettings
from kvquorum.dns.resolver import StaticHostResolver

from .harness import ManualClock, SimulatedCluster, fast_settings, register_member


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def settings() -> ClusterSettings:
    return fast_settings()


@pytest.fixture
def resolver() -> StaticHostResolver:
    """All three members resolvable."""
    table = StaticHostResolver()
    for ordinal in range(3):
        register_member(table, ordinal)
    return table


@pytest_asyncio.fixture
async def cluster(
    settings: ClusterSettings, clock: ManualClock
) -> AsyncGenerator[SimulatedCluster, None]:
    """Three converged members with ordinal 0 as master."""
    simulated = SimulatedCluster(settings, clock=clock)
    await simulated.cold_start()
    yield simulated
    await simulated.quorum.close()
