"""Graceful handover of the master role before a member stops."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from kvquorum.datastructures.cluster_types import MemberAddress, Role
from kvquorum.datastructures.type_aliases import (
    ClusterName,
    DurationSeconds,
    Timestamp,
)

from .config import ShutdownSettings
from .errors import FailoverTimedOut, MonitorCommandError
from .monitor_protocol import DataNodeClient, MonitorClient
from .retry import poll_until


class HandoverOutcome(Enum):
    NOT_MASTER = "not_master"
    HANDED_OVER = "handed_over"


@dataclass(frozen=True, slots=True)
class HandoverResult:
    outcome: HandoverOutcome
    new_master: MemberAddress | None
    elapsed_seconds: DurationSeconds

    @property
    def handed_over(self) -> bool:
        return self.outcome is HandoverOutcome.HANDED_OVER


class FailoverCoordinator:
    """Monitor-side pre-stop: move the master role away from a stopping member.

    The role is read from the monitors on every call, never cached. A
    master asks for a manual failover and then polls the reported master at
    a fixed interval until it is somebody else or the timeout runs out.
    """

    def __init__(
        self,
        monitor: MonitorClient,
        settings: ShutdownSettings | None = None,
        *,
        clock: Callable[[], Timestamp] = time.monotonic,
    ) -> None:
        self._monitor = monitor
        self._settings = settings or ShutdownSettings()
        self._clock = clock

    async def on_member_stopping(
        self,
        self_address: MemberAddress,
        cluster_name: ClusterName,
        timeout_seconds: DurationSeconds | None = None,
    ) -> HandoverResult:
        """Hand the master role over if ``self_address`` holds it.

        Raises:
            FailoverTimedOut: the reported master did not change in time.
            MonitorCommandError: the monitors could not be asked who is master.
        """
        timeout = (
            self._settings.timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        started = self._clock()
        deadline = started + timeout

        try:
            master = await asyncio.wait_for(
                self._monitor.get_master_addr_by_name(cluster_name), timeout=timeout
            )
        except TimeoutError:
            raise FailoverTimedOut(cluster_name, timeout) from None
        if master != self_address:
            logger.info(
                "{} is not the master of {}, nothing to hand over",
                self_address,
                cluster_name,
            )
            return HandoverResult(
                outcome=HandoverOutcome.NOT_MASTER,
                new_master=master,
                elapsed_seconds=self._clock() - started,
            )

        logger.info("{} is master of {}, requesting failover", self_address, cluster_name)
        try:
            await asyncio.wait_for(
                self._monitor.failover(cluster_name),
                timeout=max(deadline - self._clock(), 0.001),
            )
        except MonitorCommandError as exc:
            # INPROG means a failover is already running; keep watching it
            logger.warning("Failover request for {} rejected: {}", cluster_name, exc)
        except TimeoutError:
            raise FailoverTimedOut(cluster_name, timeout) from None

        async def _moved() -> MemberAddress | None:
            reported = await self._monitor.get_master_addr_by_name(cluster_name)
            if reported is None or reported == self_address:
                logger.debug("Waiting for failover, master still {}", reported)
                return None
            return reported

        new_master = await poll_until(
            _moved,
            timeout_seconds=max(deadline - self._clock(), 0.0),
            interval_seconds=self._settings.poll_interval_seconds,
            clock=self._clock,
        )
        if new_master is None:
            logger.warning(
                "Master of {} still {} after {:.1f}s", cluster_name, self_address, timeout
            )
            raise FailoverTimedOut(cluster_name, timeout)

        elapsed = self._clock() - started
        logger.info("Master of {} moved to {} in {:.1f}s", cluster_name, new_master, elapsed)
        return HandoverResult(
            outcome=HandoverOutcome.HANDED_OVER,
            new_master=new_master,
            elapsed_seconds=elapsed,
        )


class DataNodePreStop:
    """Data-side pre-stop: hold a master until the monitors have demoted it."""

    def __init__(
        self,
        node: DataNodeClient,
        settings: ShutdownSettings | None = None,
        *,
        clock: Callable[[], Timestamp] = time.monotonic,
    ) -> None:
        self._node = node
        self._settings = settings or ShutdownSettings()
        self._clock = clock

    async def wait_for_demotion(
        self, timeout_seconds: DurationSeconds | None = None
    ) -> HandoverResult:
        timeout = (
            self._settings.timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        started = self._clock()
        try:
            current = await asyncio.wait_for(self._node.role(), timeout=timeout)
        except TimeoutError:
            raise FailoverTimedOut("local data node", timeout) from None
        if current is not Role.MASTER:
            return HandoverResult(HandoverOutcome.NOT_MASTER, None, self._clock() - started)

        logger.info("Still master, waiting up to {:.0f}s for failover", timeout)

        async def _demoted() -> Role | None:
            role = await self._node.role()
            return None if role is Role.MASTER else role

        role = await poll_until(
            _demoted,
            timeout_seconds=max(timeout - (self._clock() - started), 0.0),
            interval_seconds=self._settings.poll_interval_seconds,
            clock=self._clock,
        )
        if role is None:
            raise FailoverTimedOut("local data node", timeout)
        logger.info("Data node now {}, stopping", role.value)
        return HandoverResult(HandoverOutcome.HANDED_OVER, None, self._clock() - started)
