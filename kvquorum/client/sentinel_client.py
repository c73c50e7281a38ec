"""
redis.asyncio clients for the monitor (sentinel) port and the data port.

Replies are read raw (``execute_command`` with the command split into
words) and parsed here, so both RESP2 flat lists and RESP3 maps work.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import redis.asyncio as redis
from loguru import logger
from redis.exceptions import BusyLoadingError, RedisError, ResponseError

from kvquorum.core.config import TlsSettings
from kvquorum.core.errors import MonitorCommandError
from kvquorum.core.monitor_protocol import LOADING_REPLY, PONG_REPLY, MasterInfo
from kvquorum.datastructures.cluster_types import MemberAddress, Role
from kvquorum.datastructures.type_aliases import (
    ClusterName,
    DurationSeconds,
    FullHostName,
    MonitorIdentity,
    PortNumber,
    QuorumThreshold,
)


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _parse_address(reply: Any) -> MemberAddress | None:
    """``[host, port]`` reply of GET-MASTER-ADDR-BY-NAME, or None for nil."""
    if not reply:
        return None
    if isinstance(reply, Sequence) and not isinstance(reply, (str, bytes)):
        if len(reply) < 2:
            return None
        return MemberAddress(host=_text(reply[0]), port=int(_text(reply[1])))
    raise MonitorCommandError("get-master-addr-by-name", f"Unexpected reply {reply!r}")


def _pairs_to_dict(reply: Any) -> dict[str, str]:
    """Flat ``[k1, v1, k2, v2, ...]`` (RESP2) or map (RESP3) into a dict."""
    if isinstance(reply, Mapping):
        return {_text(key): _text(value) for key, value in reply.items()}
    items = list(reply or [])
    if len(items) % 2:
        raise MonitorCommandError("master", f"Odd number of fields in {items!r}")
    return {_text(items[i]): _text(items[i + 1]) for i in range(0, len(items), 2)}


def _connect(
    address: MemberAddress,
    *,
    password: str | None,
    tls: TlsSettings | None,
    timeout_seconds: DurationSeconds,
) -> redis.Redis:
    options: dict[str, Any] = {
        "host": address.host,
        "port": address.port,
        "password": password,
        "decode_responses": True,
        "socket_timeout": timeout_seconds,
        "socket_connect_timeout": timeout_seconds,
    }
    if tls is not None and tls.enabled:
        options.update(
            ssl=True,
            ssl_certfile=tls.cert_file,
            ssl_keyfile=tls.key_file,
            ssl_ca_certs=tls.ca_file,
        )
    return redis.Redis(**options)


class RedisSentinelClient:
    """``MonitorClient`` speaking the sentinel protocol over redis.asyncio."""

    def __init__(
        self,
        address: MemberAddress,
        *,
        password: str | None = None,
        tls: TlsSettings | None = None,
        timeout_seconds: DurationSeconds = 5.0,
        connection: redis.Redis | None = None,
    ) -> None:
        self.address = address
        self._redis = connection or _connect(
            address, password=password, tls=tls, timeout_seconds=timeout_seconds
        )

    async def _sentinel(self, *args: Any) -> Any:
        command = " ".join(_text(arg) for arg in args[:2]).lower()
        logger.debug("[{}] SENTINEL {}", self.address, " ".join(map(_text, args)))
        try:
            return await self._redis.execute_command("SENTINEL", *args)
        except RedisError as exc:
            raise MonitorCommandError(command, str(exc)) from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as exc:
            logger.debug("[{}] ping failed: {}", self.address, exc)
            return False

    async def get_master_addr_by_name(self, name: ClusterName) -> MemberAddress | None:
        return _parse_address(await self._sentinel("GET-MASTER-ADDR-BY-NAME", name))

    async def master_info(self, name: ClusterName) -> MasterInfo:
        return MasterInfo.from_fields(_pairs_to_dict(await self._sentinel("MASTER", name)))

    async def failover(self, name: ClusterName) -> None:
        await self._sentinel("FAILOVER", name)

    async def monitor(
        self,
        name: ClusterName,
        host: FullHostName,
        port: PortNumber,
        quorum: QuorumThreshold,
    ) -> None:
        try:
            await self._sentinel("MONITOR", name, host, port, quorum)
        except MonitorCommandError as exc:
            if not isinstance(exc.__cause__, ResponseError) or "Duplicate" not in exc.reason:
                raise
            # Already monitored; keep the master the quorum has chosen
            await self.set_option(name, "quorum", str(quorum))

    async def known_sentinel(
        self,
        name: ClusterName,
        host: FullHostName,
        port: PortNumber,
        identity: MonitorIdentity,
    ) -> None:
        # Sentinels learn peers via hello messages; the entry lives in the config file
        logger.debug(
            "[{}] known-sentinel {} {}:{} {}", self.address, name, host, port, identity[:8]
        )

    async def known_replica(
        self, name: ClusterName, host: FullHostName, port: PortNumber
    ) -> None:
        # Replicas are learned from the master's INFO; the entry lives in the config file
        logger.debug("[{}] known-replica {} {}:{}", self.address, name, host, port)

    async def set_option(self, name: ClusterName, option: str, value: str) -> None:
        await self._sentinel("SET", name, option, value)

    async def close(self) -> None:
        await self._redis.aclose()


class RedisDataNodeClient:
    """``DataNodeClient`` for one data-serving process."""

    def __init__(
        self,
        address: MemberAddress,
        *,
        password: str | None = None,
        tls: TlsSettings | None = None,
        timeout_seconds: DurationSeconds = 5.0,
        connection: redis.Redis | None = None,
    ) -> None:
        self.address = address
        self._redis = connection or _connect(
            address, password=password, tls=tls, timeout_seconds=timeout_seconds
        )

    async def ping(self) -> str:
        try:
            await self._redis.ping()
        except BusyLoadingError as exc:
            return f"{LOADING_REPLY} {exc}"
        except RedisError as exc:
            return str(exc) or type(exc).__name__
        return PONG_REPLY

    async def role(self) -> Role:
        try:
            reply = await self._redis.execute_command("ROLE")
        except RedisError as exc:
            raise MonitorCommandError("role", str(exc)) from exc
        if not reply:
            return Role.UNKNOWN
        return Role.from_reply(reply[0])

    async def close(self) -> None:
        await self._redis.aclose()
