"""
Monitor quorum: down detection and automatic failover.

Each agent watches the master it believes in and becomes a suspect once the
master has not answered for ``down-after-milliseconds``. The master is
objectively down for an agent when that agent and at least ``quorum - 1``
other agents watching the same master suspect it. Among the agents that see
the master objectively down, the one with the lowest identity leads the
failover:

    MASTER_ALIVE -> SUSPECTED_DOWN -> OBJECTIVELY_DOWN -> FAILOVER_IN_PROGRESS
        ^                 ^                                     |
        |                 +------------- promotion failed ------+
        +-------------------- new master confirmed -------------+

A leader whose attempt failed is barred from leading again until its
failover timeout elapses, which lets the next-lowest agent retry.

``MonitorQuorum`` runs this protocol in process against a ``DataPlane``;
``QuorumMonitorClient`` exposes it through the regular monitor protocol so
the role resolver and failover coordinator can drive it unchanged.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from kvquorum.datastructures.cluster_types import (
    FailoverRequest,
    KnownMonitor,
    KnownReplica,
    MemberAddress,
    Role,
)
from kvquorum.datastructures.type_aliases import (
    ClusterName,
    ConfigEpoch,
    DurationSeconds,
    FullHostName,
    MonitorIdentity,
    PortNumber,
    QuorumThreshold,
    Timestamp,
)

from .config import MonitorSettings
from .errors import MonitorCommandError
from .monitor_protocol import DataPlane, MasterInfo

FAILOVER_ERRORS: tuple[type[BaseException], ...] = (
    TimeoutError,
    OSError,
    MonitorCommandError,
)


class MasterStatus(Enum):
    MASTER_ALIVE = "master_alive"
    SUSPECTED_DOWN = "suspected_down"
    OBJECTIVELY_DOWN = "objectively_down"
    FAILOVER_IN_PROGRESS = "failover_in_progress"


@dataclass(slots=True)
class QuorumAgent:
    """Quorum-side state of one monitor agent."""

    identity: MonitorIdentity
    master: MemberAddress
    quorum: QuorumThreshold
    last_ok: Timestamp
    down_after_seconds: DurationSeconds
    failover_timeout_seconds: DurationSeconds
    parallel_syncs: int
    known_peers: dict[MonitorIdentity, KnownMonitor] = field(default_factory=dict)
    known_replicas: dict[FullHostName, KnownReplica] = field(default_factory=dict)
    suspects: bool = False
    barred_until: Timestamp = 0.0

    def subjectively_down(self, now: Timestamp) -> bool:
        return now - self.last_ok > self.down_after_seconds

    def retarget(self, master: MemberAddress, now: Timestamp) -> None:
        self.master = master
        self.known_replicas.pop(master.host, None)
        self.last_ok = now
        self.suspects = False


@dataclass(frozen=True, slots=True)
class FailoverOutcome:
    request: FailoverRequest
    leader: MonitorIdentity
    old_master: MemberAddress
    new_master: MemberAddress | None
    config_epoch: ConfigEpoch
    manual: bool

    @property
    def succeeded(self) -> bool:
        return self.new_master is not None


class MonitorQuorum:
    """In-process quorum of monitor agents for one monitored cluster."""

    def __init__(
        self,
        cluster_name: ClusterName,
        data_plane: DataPlane,
        *,
        settings: MonitorSettings | None = None,
        clock: Callable[[], Timestamp] = time.monotonic,
    ) -> None:
        self.cluster_name = cluster_name
        self._data_plane = data_plane
        self._defaults = settings or MonitorSettings()
        self._clock = clock
        self._agents: dict[MonitorIdentity, QuorumAgent] = {}
        self._status = MasterStatus.MASTER_ALIVE
        self._config_epoch: ConfigEpoch = 0
        self._active_request: FailoverRequest | None = None
        self._tasks: set[asyncio.Task[FailoverOutcome]] = set()
        self.history: list[FailoverOutcome] = []

    # Configuration, driven through the monitor protocol

    def register(
        self,
        identity: MonitorIdentity,
        master: MemberAddress,
        quorum: QuorumThreshold,
    ) -> QuorumAgent:
        """Start (or keep) watching ``master`` from agent ``identity``."""
        if quorum < 1:
            raise MonitorCommandError("monitor", "ERR Quorum must be 1 or greater.")
        agent = self._agents.get(identity)
        now = self._clock()
        if agent is None:
            agent = QuorumAgent(
                identity=identity,
                master=master,
                quorum=quorum,
                last_ok=now,
                down_after_seconds=self._defaults.down_after_seconds,
                failover_timeout_seconds=self._defaults.failover_timeout_seconds,
                parallel_syncs=self._defaults.parallel_syncs,
            )
            self._agents[identity] = agent
            logger.debug("Agent {} joined quorum for {}", identity[:8], master)
            return agent
        agent.quorum = quorum
        if agent.master != master:
            logger.info("Agent {} now watching {}", identity[:8], master)
            agent.retarget(master, now)
        return agent

    def agent(self, identity: MonitorIdentity) -> QuorumAgent:
        try:
            return self._agents[identity]
        except KeyError:
            raise MonitorCommandError(
                self.cluster_name, "ERR No such master with that name"
            ) from None

    def set_option(self, identity: MonitorIdentity, option: str, value: str) -> None:
        agent = self.agent(identity)
        try:
            number = int(value)
        except ValueError:
            raise MonitorCommandError(option, f"ERR Invalid argument '{value}'") from None
        if number <= 0:
            raise MonitorCommandError(option, f"ERR Invalid argument '{value}'")
        match option.lower():
            case "down-after-milliseconds":
                agent.down_after_seconds = number / 1000.0
            case "failover-timeout":
                agent.failover_timeout_seconds = number / 1000.0
            case "parallel-syncs":
                agent.parallel_syncs = number
            case _:
                raise MonitorCommandError(option, "ERR Invalid argument")

    def add_known_peer(self, identity: MonitorIdentity, peer: KnownMonitor) -> None:
        if peer.identity != identity:
            self.agent(identity).known_peers[peer.identity] = peer

    def add_known_replica(self, identity: MonitorIdentity, replica: KnownReplica) -> None:
        agent = self.agent(identity)
        if replica.address != agent.master:
            agent.known_replicas[replica.host] = replica

    # Queries

    @property
    def status(self) -> MasterStatus:
        return self._status

    @property
    def config_epoch(self) -> ConfigEpoch:
        return self._config_epoch

    @property
    def agents(self) -> tuple[QuorumAgent, ...]:
        return tuple(self._agents[key] for key in sorted(self._agents))

    @property
    def failover_active(self) -> bool:
        return self._active_request is not None

    def master_for(self, identity: MonitorIdentity | None = None) -> MemberAddress | None:
        """Master believed by ``identity``, or by most agents when omitted."""
        if identity is not None:
            return self.agent(identity).master
        if not self._agents:
            return None
        beliefs = Counter(agent.master for agent in self._agents.values())
        return min(beliefs, key=lambda address: (-beliefs[address], address))

    def suspecting(self, master: MemberAddress | None = None) -> frozenset[MonitorIdentity]:
        return frozenset(
            agent.identity
            for agent in self._agents.values()
            if agent.suspects and (master is None or agent.master == master)
        )

    def objectively_down_for(self, agent: QuorumAgent) -> bool:
        if not agent.suspects:
            return False
        return len(self.suspecting(agent.master)) >= agent.quorum

    def elect_leader(
        self, candidates: frozenset[MonitorIdentity] | set[MonitorIdentity]
    ) -> MonitorIdentity | None:
        """Lowest identity among candidates not barred by a recent failed attempt."""
        now = self._clock()
        eligible = [
            identity
            for identity in candidates
            if identity in self._agents and self._agents[identity].barred_until <= now
        ]
        return min(eligible) if eligible else None

    def master_info(self, identity: MonitorIdentity | None = None) -> MasterInfo:
        if identity is None:
            identity = min(self._agents) if self._agents else None
        if identity is None:
            raise MonitorCommandError(self.cluster_name, "ERR No such master with that name")
        agent = self.agent(identity)
        flags = {"master"}
        if agent.suspects:
            flags.add("s_down")
        if self.objectively_down_for(agent):
            flags.add("o_down")
        if self.failover_active:
            flags.add("failover_in_progress")
        return MasterInfo(
            name=self.cluster_name,
            address=agent.master,
            flags=frozenset(flags),
            quorum=agent.quorum,
            num_other_sentinels=len(agent.known_peers),
            num_slaves=len(agent.known_replicas),
            config_epoch=self._config_epoch,
        )

    async def select_replica(
        self, observer: MonitorIdentity, master: MemberAddress
    ) -> MemberAddress | None:
        """Best reachable replica: highest replication offset, then lowest address."""
        candidates: set[MemberAddress] = set()
        for agent in self._agents.values():
            candidates.update(replica.address for replica in agent.known_replicas.values())
        candidates.discard(master)

        ranked: list[tuple[int, MemberAddress]] = []
        for address in candidates:
            try:
                if not await self._data_plane.ping(observer, address):
                    continue
                if await self._data_plane.role_of(address) is not Role.REPLICA:
                    continue
                offset = await self._data_plane.replication_offset(address)
            except (OSError, TimeoutError) as exc:
                logger.debug("Replica {} not eligible: {}", address, exc)
                continue
            ranked.append((offset, address))
        if not ranked:
            return None
        ranked.sort(key=lambda item: (-item[0], item[1]))
        return ranked[0][1]

    # Supervision loop

    async def observe(self, agent: QuorumAgent) -> bool:
        """Ping the agent's master from the agent's point of view."""
        try:
            reachable = await self._data_plane.ping(agent.identity, agent.master)
        except (OSError, TimeoutError):
            reachable = False
        now = self._clock()
        if reachable:
            agent.last_ok = now
        was_suspect = agent.suspects
        agent.suspects = agent.subjectively_down(now)
        if agent.suspects and not was_suspect:
            logger.warning("Agent {} suspects {} is down", agent.identity[:8], agent.master)
        return reachable

    async def tick(self) -> MasterStatus:
        """One supervision round over every agent."""
        if self.failover_active:
            return self._status
        await self.converge()
        for agent in self.agents:
            await self.observe(agent)

        if not self.suspecting():
            self._status = MasterStatus.MASTER_ALIVE
            return self._status

        odown = frozenset(
            agent.identity for agent in self.agents if self.objectively_down_for(agent)
        )
        if not odown:
            self._status = MasterStatus.SUSPECTED_DOWN
            return self._status

        self._status = MasterStatus.OBJECTIVELY_DOWN
        leader = self.elect_leader(odown)
        if leader is None:
            logger.debug("Master objectively down but every leader is barred")
            return self._status

        agent = self.agent(leader)
        logger.warning(
            "{} objectively down for {} agent(s), {} leads the failover",
            agent.master,
            len(odown),
            leader[:8],
        )
        request = FailoverRequest.create(
            self.cluster_name, leader, agent.failover_timeout_seconds, now=self._clock()
        )
        await self._failover(request, manual=False)
        return self._status

    async def run(
        self, stop: asyncio.Event, *, interval_seconds: DurationSeconds = 1.0
    ) -> None:
        while not stop.is_set():
            await self.tick()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=interval_seconds)

    async def converge(self) -> MemberAddress | None:
        """Resolve split beliefs among agents that already know each other.

        Agents that booted in isolation each watch themselves; once they have
        discovered peers, the master believed by most agents wins, then the
        one with the larger replication offset, then the lowest address. The
        other masters are demoted to replicas of the winner.
        """
        connected = [agent for agent in self._agents.values() if agent.known_peers]
        beliefs = Counter(agent.master for agent in connected)
        if len(beliefs) < 2:
            return None

        offsets: dict[MemberAddress, int] = {}
        for address in beliefs:
            try:
                offsets[address] = await self._data_plane.replication_offset(address)
            except (OSError, TimeoutError):
                offsets[address] = -1
        winner = min(
            beliefs, key=lambda address: (-beliefs[address], -offsets[address], address)
        )
        logger.warning(
            "Agents disagree on the master of {} ({}), converging on {}",
            self.cluster_name,
            ", ".join(str(address) for address in sorted(beliefs)),
            winner,
        )
        now = self._clock()
        for address in beliefs:
            if address == winner:
                continue
            try:
                if await self._data_plane.role_of(address) is Role.MASTER:
                    await self._data_plane.replicate_from(address, winner)
            except (OSError, TimeoutError) as exc:
                logger.warning("Could not demote {}: {}", address, exc)
        for agent in self._agents.values():
            if agent.master != winner:
                agent.known_replicas.setdefault(
                    agent.master.host,
                    KnownReplica(host=agent.master.host, port=agent.master.port),
                )
                agent.retarget(winner, now)
        self._config_epoch += 1
        return winner

    # Failover

    async def request_failover(
        self, requester: MonitorIdentity | None = None
    ) -> FailoverRequest:
        """Manual failover: skip agreement, promote a replica in the background.

        Raises:
            MonitorCommandError: ``INPROG`` when a failover is already running,
                ``NOGOODSLAVE`` when no replica can be promoted.
        """
        if self.failover_active:
            raise MonitorCommandError("failover", "INPROG Failover already in progress")
        if requester is None:
            if not self._agents:
                raise MonitorCommandError(
                    self.cluster_name, "ERR No such master with that name"
                )
            requester = min(self._agents)
        agent = self.agent(requester)
        if await self.select_replica(requester, agent.master) is None:
            raise MonitorCommandError("failover", "NOGOODSLAVE No suitable replica to promote")

        request = FailoverRequest.create(
            self.cluster_name,
            requester,
            agent.failover_timeout_seconds,
            now=self._clock(),
        )
        self._active_request = request
        task = asyncio.create_task(self._failover(request, manual=True))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return request

    async def _failover(self, request: FailoverRequest, *, manual: bool) -> FailoverOutcome:
        leader = self.agent(request.requester)
        old_master = leader.master
        self._active_request = request
        self._status = MasterStatus.FAILOVER_IN_PROGRESS
        new_master: MemberAddress | None = None
        try:
            new_master = await asyncio.wait_for(
                self._promote(leader, old_master),
                timeout=request.remaining(self._clock()),
            )
        except FAILOVER_ERRORS as exc:
            leader.barred_until = self._clock() + leader.failover_timeout_seconds
            self._status = MasterStatus.SUSPECTED_DOWN
            logger.warning(
                "Failover of {} led by {} failed: {}",
                self.cluster_name,
                leader.identity[:8],
                exc or type(exc).__name__,
            )
        else:
            self._config_epoch += 1
            now = self._clock()
            for agent in self._agents.values():
                if agent.master == old_master:
                    agent.known_replicas.setdefault(
                        old_master.host,
                        KnownReplica(host=old_master.host, port=old_master.port),
                    )
                    agent.retarget(new_master, now)
            self._status = MasterStatus.MASTER_ALIVE
            logger.info(
                "Failover of {} complete: {} -> {} (epoch {})",
                self.cluster_name,
                old_master,
                new_master,
                self._config_epoch,
            )
        finally:
            self._active_request = None

        outcome = FailoverOutcome(
            request=request,
            leader=leader.identity,
            old_master=old_master,
            new_master=new_master,
            config_epoch=self._config_epoch,
            manual=manual,
        )
        self.history.append(outcome)
        return outcome

    async def _promote(
        self, leader: QuorumAgent, old_master: MemberAddress
    ) -> MemberAddress:
        candidate = await self.select_replica(leader.identity, old_master)
        if candidate is None:
            raise MonitorCommandError("failover", "NOGOODSLAVE No suitable replica to promote")
        logger.info("Promoting {} to replace {}", candidate, old_master)
        await self._data_plane.promote(candidate)
        if await self._data_plane.role_of(candidate) is not Role.MASTER:
            raise MonitorCommandError("failover", f"{candidate} did not turn into a master")

        others: set[MemberAddress] = {old_master}
        for agent in self._agents.values():
            others.update(replica.address for replica in agent.known_replicas.values())
        others.discard(candidate)

        syncs = asyncio.Semaphore(leader.parallel_syncs)

        async def _repoint(address: MemberAddress) -> None:
            async with syncs:
                try:
                    await self._data_plane.replicate_from(address, candidate)
                except (OSError, TimeoutError) as exc:
                    # Unreachable nodes are re-pointed when they come back
                    logger.warning("Could not re-point {}: {}", address, exc)

        await asyncio.gather(*(_repoint(address) for address in sorted(others)))
        return candidate

    async def wait_idle(self) -> None:
        """Wait for background failovers to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()


class QuorumMonitorClient:
    """Monitor protocol client talking to an in-process ``MonitorQuorum``.

    Bound to one agent identity it behaves like that agent's own port; with
    no identity it behaves like the load-balanced client service.
    """

    def __init__(
        self, quorum: MonitorQuorum, identity: MonitorIdentity | None = None
    ) -> None:
        self._quorum = quorum
        self._identity = identity

    def _check_name(self, name: ClusterName) -> None:
        if name != self._quorum.cluster_name:
            raise MonitorCommandError(name, "ERR No such master with that name")

    def _require_identity(self, command: str) -> MonitorIdentity:
        if self._identity is None:
            raise MonitorCommandError(command, "ERR command needs a bound monitor")
        return self._identity

    async def ping(self) -> bool:
        return True

    async def get_master_addr_by_name(self, name: ClusterName) -> MemberAddress | None:
        if name != self._quorum.cluster_name:
            return None
        if self._identity is not None and self._identity not in {
            agent.identity for agent in self._quorum.agents
        }:
            return None
        return self._quorum.master_for(self._identity)

    async def master_info(self, name: ClusterName) -> MasterInfo:
        self._check_name(name)
        return self._quorum.master_info(self._identity)

    async def failover(self, name: ClusterName) -> None:
        self._check_name(name)
        await self._quorum.request_failover(self._identity)

    async def monitor(
        self,
        name: ClusterName,
        host: FullHostName,
        port: PortNumber,
        quorum: QuorumThreshold,
    ) -> None:
        self._check_name(name)
        identity = self._require_identity("monitor")
        self._quorum.register(identity, MemberAddress(host=host, port=port), quorum)

    async def known_sentinel(
        self,
        name: ClusterName,
        host: FullHostName,
        port: PortNumber,
        identity: MonitorIdentity,
    ) -> None:
        self._check_name(name)
        own = self._require_identity("known-sentinel")
        self._quorum.add_known_peer(
            own, KnownMonitor(identity=identity, host=host, port=port)
        )

    async def known_replica(
        self, name: ClusterName, host: FullHostName, port: PortNumber
    ) -> None:
        self._check_name(name)
        own = self._require_identity("known-replica")
        self._quorum.add_known_replica(own, KnownReplica(host=host, port=port))

    async def set_option(self, name: ClusterName, option: str, value: str) -> None:
        self._check_name(name)
        self._quorum.set_option(self._require_identity("set"), option, value)

    async def close(self) -> None:
        return None
