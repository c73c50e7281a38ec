"""Liveness and readiness probes.

Probes only report process health; they never feed into role or failover
decisions. Every probe is bounded by its timeout and returns a result
instead of raising.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

from loguru import logger

from kvquorum.datastructures.cluster_types import MemberAddress
from kvquorum.datastructures.type_aliases import ClusterName, DurationSeconds

from .errors import MonitorCommandError
from .monitor_protocol import LOADING_REPLY, PONG_REPLY, DataNodeClient, MonitorClient

PROBE_ERRORS: tuple[type[BaseException], ...] = (OSError, MonitorCommandError)


@dataclass(frozen=True, slots=True)
class ProbeResult:
    healthy: bool
    detail: str

    def __bool__(self) -> bool:
        return self.healthy


async def _ping_reply(node: DataNodeClient, timeout: DurationSeconds) -> str:
    try:
        return await asyncio.wait_for(node.ping(), timeout=timeout)
    except TimeoutError:
        return f"Timed out after {timeout}s"
    except PROBE_ERRORS as exc:
        return str(exc) or type(exc).__name__


def is_alive_reply(reply: str) -> bool:
    """PONG, or the LOADING error a server returns while reading its dataset."""
    return reply == PONG_REPLY or reply.startswith(LOADING_REPLY)


class HealthProbes:
    """Probes for one member: its data node, its monitor, and the current master."""

    def __init__(
        self,
        node: DataNodeClient,
        monitor: MonitorClient,
        cluster_name: ClusterName,
        connect: Callable[[MemberAddress], DataNodeClient],
        *,
        timeout_seconds: DurationSeconds = 1.0,
    ) -> None:
        self._node = node
        self._monitor = monitor
        self._cluster_name = cluster_name
        self._connect = connect
        self._timeout = timeout_seconds

    async def local_liveness(self) -> ProbeResult:
        reply = await _ping_reply(self._node, self._timeout)
        return ProbeResult(is_alive_reply(reply), reply)

    async def local_readiness(self) -> ProbeResult:
        reply = await _ping_reply(self._node, self._timeout)
        return ProbeResult(reply == PONG_REPLY, reply)

    async def monitor_liveness(self) -> ProbeResult:
        try:
            alive = await asyncio.wait_for(self._monitor.ping(), timeout=self._timeout)
        except TimeoutError:
            return ProbeResult(False, f"Monitor timed out after {self._timeout}s")
        except PROBE_ERRORS as exc:
            return ProbeResult(False, str(exc))
        return ProbeResult(alive, PONG_REPLY if alive else "Monitor did not answer")

    async def _master_reply(self) -> str:
        try:
            master = await asyncio.wait_for(
                self._monitor.get_master_addr_by_name(self._cluster_name),
                timeout=self._timeout,
            )
        except TimeoutError:
            return f"Master lookup timed out after {self._timeout}s"
        except PROBE_ERRORS as exc:
            return str(exc)
        if master is None:
            return f"No master known for {self._cluster_name}"
        client = self._connect(master)
        try:
            return await _ping_reply(client, self._timeout)
        finally:
            await client.close()

    async def master_liveness(self) -> ProbeResult:
        reply = await self._master_reply()
        return ProbeResult(is_alive_reply(reply), f"master: {reply}")

    async def master_readiness(self) -> ProbeResult:
        reply = await self._master_reply()
        return ProbeResult(reply == PONG_REPLY, f"master: {reply}")

    async def local_and_master_liveness(self) -> ProbeResult:
        return _combine(
            await asyncio.gather(self.local_liveness(), self.master_liveness())
        )

    async def local_and_master_readiness(self) -> ProbeResult:
        return _combine(
            await asyncio.gather(self.local_readiness(), self.master_readiness())
        )


def _combine(results: list[ProbeResult]) -> ProbeResult:
    healthy = all(result.healthy for result in results)
    detail = "; ".join(result.detail for result in results)
    if not healthy:
        logger.debug("Combined probe failed: {}", detail)
    return ProbeResult(healthy, detail)
