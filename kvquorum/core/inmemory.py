"""In-memory data plane for running a monitor quorum without real servers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from loguru import logger

from kvquorum.datastructures.cluster_types import MemberAddress, Role
from kvquorum.datastructures.type_aliases import MonitorIdentity, ReplicationOffset

from .monitor_protocol import LOADING_REPLY, PONG_REPLY


@dataclass(slots=True)
class InMemoryNode:
    address: MemberAddress
    role: Role = Role.MASTER
    master: MemberAddress | None = None
    offset: ReplicationOffset = 0
    up: bool = True
    loading: bool = False


@dataclass(slots=True)
class InMemoryDataPlane:
    """Data nodes plus a reachability matrix between observers and nodes.

    ``partition`` cuts one observer off from one node, so a single monitor
    agent can lose sight of the master while the others still see it.
    """

    nodes: dict[MemberAddress, InMemoryNode] = field(default_factory=dict)
    partitions: set[tuple[MonitorIdentity, MemberAddress]] = field(default_factory=set)
    refuse_promotion: set[MemberAddress] = field(default_factory=set)
    promotion_delay_seconds: float = 0.0
    sync_delay_seconds: float = 0.0
    active_syncs: int = 0
    peak_syncs: int = 0

    def add_node(
        self,
        address: MemberAddress,
        *,
        role: Role = Role.MASTER,
        master: MemberAddress | None = None,
        offset: ReplicationOffset = 0,
    ) -> InMemoryNode:
        node = InMemoryNode(address=address, role=role, master=master, offset=offset)
        self.nodes[address] = node
        return node

    def node(self, address: MemberAddress) -> InMemoryNode:
        try:
            return self.nodes[address]
        except KeyError:
            raise ConnectionError(f"Unknown data node {address}") from None

    def _reachable(self, address: MemberAddress) -> InMemoryNode:
        node = self.node(address)
        if not node.up:
            raise ConnectionError(f"{address} is down")
        return node

    def stop(self, address: MemberAddress) -> None:
        self.node(address).up = False

    def start(self, address: MemberAddress) -> None:
        self.node(address).up = True

    def partition(self, observer: MonitorIdentity, address: MemberAddress) -> None:
        self.partitions.add((observer, address))

    def heal(self, observer: MonitorIdentity | None = None) -> None:
        if observer is None:
            self.partitions.clear()
        else:
            self.partitions = {pair for pair in self.partitions if pair[0] != observer}

    def masters(self) -> list[MemberAddress]:
        return sorted(
            address
            for address, node in self.nodes.items()
            if node.up and node.role is Role.MASTER
        )

    async def ping(self, observer: MonitorIdentity, address: MemberAddress) -> bool:
        if (observer, address) in self.partitions:
            return False
        node = self.nodes.get(address)
        return node is not None and node.up

    async def role_of(self, address: MemberAddress) -> Role:
        return self._reachable(address).role

    async def replication_offset(self, address: MemberAddress) -> ReplicationOffset:
        return self._reachable(address).offset

    async def promote(self, address: MemberAddress) -> None:
        if self.promotion_delay_seconds:
            await asyncio.sleep(self.promotion_delay_seconds)
        node = self._reachable(address)
        if address in self.refuse_promotion:
            logger.debug("{} ignores promotion", address)
            return
        node.role = Role.MASTER
        node.master = None

    async def replicate_from(self, replica: MemberAddress, master: MemberAddress) -> None:
        node = self._reachable(replica)
        if self.sync_delay_seconds:
            self.active_syncs += 1
            self.peak_syncs = max(self.peak_syncs, self.active_syncs)
            try:
                await asyncio.sleep(self.sync_delay_seconds)
            finally:
                self.active_syncs -= 1
        node.role = Role.REPLICA
        node.master = master
        source = self.nodes.get(master)
        if source is not None:
            node.offset = max(node.offset, source.offset)


class InMemoryDataNodeClient:
    """``DataNodeClient`` view of one in-memory node."""

    def __init__(self, plane: InMemoryDataPlane, address: MemberAddress) -> None:
        self._plane = plane
        self._address = address

    async def ping(self) -> str:
        node = self._plane.nodes.get(self._address)
        if node is None or not node.up:
            return f"Could not connect to {self._address}"
        if node.loading:
            return f"{LOADING_REPLY} Redis is loading the dataset in memory"
        return PONG_REPLY

    async def role(self) -> Role:
        return await self._plane.role_of(self._address)

    async def close(self) -> None:
        return None
