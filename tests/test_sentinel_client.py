from typing import Any

import pytest
from redis.exceptions import BusyLoadingError, ResponseError
from redis.exceptions import ConnectionError as RedisConnectionError

from kvquorum.client.sentinel_client import RedisDataNodeClient, RedisSentinelClient
from kvquorum.core.errors import MonitorCommandError
from kvquorum.datastructures.cluster_types import MemberAddress, Role

ADDRESS = MemberAddress(host="localhost", port=26379)


class FakeRedis:
    """Stands in for a redis.asyncio connection; replies are scripted per command."""

    def __init__(self, replies: dict[tuple[str, ...], Any] | None = None) -> None:
        self.replies = replies or {}
        self.commands: list[tuple[str, ...]] = []
        self.ping_error: Exception | None = None
        self.closed = False

    async def execute_command(self, *args: Any) -> Any:
        command = tuple(str(arg) for arg in args)
        self.commands.append(command)
        reply = self.replies.get(command[:2]) or self.replies.get(command[:1])
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def ping(self) -> bool:
        if self.ping_error is not None:
            raise self.ping_error
        return True

    async def aclose(self) -> None:
        self.closed = True


def _sentinel(replies: dict[tuple[str, ...], Any]) -> tuple[RedisSentinelClient, FakeRedis]:
    fake = FakeRedis(replies)
    return RedisSentinelClient(ADDRESS, connection=fake), fake  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_master_address_reply() -> None:
    client, fake = _sentinel(
        {("SENTINEL", "GET-MASTER-ADDR-BY-NAME"): ["redis-node-0.svc", "6379"]}
    )
    master = await client.get_master_addr_by_name("mymaster")
    assert master == MemberAddress(host="redis-node-0.svc", port=6379)
    assert fake.commands == [("SENTINEL", "GET-MASTER-ADDR-BY-NAME", "mymaster")]


@pytest.mark.asyncio
async def test_unknown_master_is_none() -> None:
    client, _ = _sentinel({})
    assert await client.get_master_addr_by_name("mymaster") is None


@pytest.mark.asyncio
async def test_master_info_from_flat_reply() -> None:
    client, _ = _sentinel(
        {
            ("SENTINEL", "MASTER"): [
                "name", "mymaster",
                "ip", "redis-node-0.svc",
                "port", "6379",
                "flags", "master,s_down",
                "quorum", "2",
                "num-other-sentinels", "2",
                "num-slaves", "2",
            ]
        }
    )  # fmt: skip
    info = await client.master_info("mymaster")
    assert info.address == MemberAddress(host="redis-node-0.svc", port=6379)
    assert info.subjectively_down
    assert not info.objectively_down
    assert info.quorum == 2
    assert info.num_slaves == 2


@pytest.mark.asyncio
async def test_failover_error_keeps_code() -> None:
    client, _ = _sentinel(
        {("SENTINEL", "FAILOVER"): ResponseError("INPROG Failover already in progress")}
    )
    with pytest.raises(MonitorCommandError) as excinfo:
        await client.failover("mymaster")
    assert excinfo.value.code == "INPROG"
    assert excinfo.value.command == "failover mymaster"


@pytest.mark.asyncio
async def test_duplicate_monitor_updates_quorum() -> None:
    client, fake = _sentinel(
        {("SENTINEL", "MONITOR"): ResponseError("ERR Duplicated master name")}
    )
    await client.monitor("mymaster", "redis-node-0.svc", 6379, 2)
    assert fake.commands[-1] == ("SENTINEL", "SET", "mymaster", "quorum", "2")


@pytest.mark.asyncio
async def test_other_monitor_errors_propagate() -> None:
    client, _ = _sentinel({("SENTINEL", "MONITOR"): RedisConnectionError("refused")})
    with pytest.raises(MonitorCommandError):
        await client.monitor("mymaster", "redis-node-0.svc", 6379, 2)


@pytest.mark.asyncio
async def test_set_option_and_close() -> None:
    client, fake = _sentinel({})
    await client.set_option("mymaster", "down-after-milliseconds", "60000")
    await client.known_replica("mymaster", "redis-node-1.svc", 6379)
    await client.close()

    assert fake.commands == [
        ("SENTINEL", "SET", "mymaster", "down-after-milliseconds", "60000")
    ]
    assert fake.closed


@pytest.mark.asyncio
async def test_sentinel_ping_failure_is_false() -> None:
    client, fake = _sentinel({})
    fake.ping_error = RedisConnectionError("refused")
    assert not await client.ping()


@pytest.mark.asyncio
async def test_data_node_ping_replies() -> None:
    fake = FakeRedis()
    node = RedisDataNodeClient(ADDRESS, connection=fake)  # type: ignore[arg-type]
    assert await node.ping() == "PONG"

    fake.ping_error = BusyLoadingError("Redis is loading the dataset in memory")
    assert await node.ping() == "LOADING Redis is loading the dataset in memory"

    fake.ping_error = RedisConnectionError("Connection refused")
    assert await node.ping() == "Connection refused"


@pytest.mark.asyncio
async def test_data_node_role() -> None:
    fake = FakeRedis({("ROLE",): ["slave", "redis-node-0.svc", 6379, "connected", 42]})
    node = RedisDataNodeClient(ADDRESS, connection=fake)  # type: ignore[arg-type]
    assert await node.role() is Role.REPLICA

    fake.replies = {("ROLE",): ["master", 42, []]}
    assert await node.role() is Role.MASTER
