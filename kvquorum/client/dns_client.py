"""
dnslib query client for one name server.

Discovery can ask the cluster DNS server directly instead of going through
the host's resolver stack, so a member sees new headless-service records
without waiting out negative caching in a local resolver.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from dnslib import QTYPE, RCODE, DNSRecord
from dnslib.dns import DNSError
from loguru import logger

from kvquorum.datastructures.type_aliases import (
    DurationSeconds,
    IpAddress,
    PortNumber,
)

ADDRESS_QTYPES = frozenset({"A", "AAAA"})


@dataclass(frozen=True, slots=True)
class DnsAnswer:
    name: str
    rtype: str
    ttl: int
    rdata: str

    @classmethod
    def from_record(cls, record: Any) -> DnsAnswer:
        return cls(
            name=str(record.rname).rstrip("."),
            rtype=str(QTYPE[record.rtype]),
            ttl=int(record.ttl),
            rdata=str(record.rdata),
        )


@dataclass(frozen=True, slots=True)
class DnsLookup:
    """Outcome of one query: the response code plus every answer record."""

    qname: str
    qtype: str
    rcode: str
    answers: tuple[DnsAnswer, ...] = ()

    @classmethod
    def from_reply(cls, qname: str, qtype: str, reply: DNSRecord) -> DnsLookup:
        return cls(
            qname=qname,
            qtype=qtype,
            rcode=str(RCODE[reply.header.rcode]),
            answers=tuple(DnsAnswer.from_record(record) for record in reply.rr),
        )

    @property
    def ok(self) -> bool:
        return self.rcode == "NOERROR"

    @property
    def not_found(self) -> bool:
        return self.rcode == "NXDOMAIN"

    def addresses(self) -> tuple[IpAddress, ...]:
        """A/AAAA answers in response order; CNAME hops are skipped."""
        return tuple(
            answer.rdata for answer in self.answers if answer.rtype in ADDRESS_QTYPES
        )


class _SingleReply(asyncio.DatagramProtocol):
    """Sends one datagram and completes ``reply`` with the first answer."""

    def __init__(self, payload: bytes, reply: asyncio.Future[bytes]) -> None:
        self._payload = payload
        self._reply = reply

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        transport.sendto(self._payload)  # type: ignore[attr-defined]

    def datagram_received(self, data: bytes, addr: Any) -> None:
        if not self._reply.done():
            self._reply.set_result(data)

    def error_received(self, exc: Exception) -> None:
        if not self._reply.done():
            self._reply.set_exception(exc)


@dataclass(frozen=True, slots=True)
class DnsQueryClient:
    """Queries ``host:port`` over UDP, retrying truncated answers over TCP."""

    host: str
    port: PortNumber = 53
    timeout_seconds: DurationSeconds = 2.0
    use_tcp: bool = False

    async def resolve(self, qname: str, qtype: str = "A") -> DnsLookup:
        """Raises ``TimeoutError``/``OSError`` when the server cannot be reached."""
        qtype = qtype.strip().upper()
        if qtype not in QTYPE.reverse:
            raise ValueError(f"Unsupported qtype: {qtype}")
        payload = DNSRecord.question(qname, qtype).pack()
        try:
            reply = await asyncio.wait_for(
                self._exchange(payload), timeout=self.timeout_seconds
            )
        except DNSError as exc:
            raise OSError(f"Malformed DNS reply from {self.host}: {exc}") from exc
        lookup = DnsLookup.from_reply(qname, qtype, reply)
        logger.debug(
            "[{}:{}] {} {} -> {} ({} answers)",
            self.host,
            self.port,
            qname,
            qtype,
            lookup.rcode,
            len(lookup.answers),
        )
        return lookup

    async def _exchange(self, payload: bytes) -> DNSRecord:
        if self.use_tcp:
            return await self._over_tcp(payload)
        reply = await self._over_udp(payload)
        if reply.header.tc:
            # Large headless services overflow a UDP response
            return await self._over_tcp(payload)
        return reply

    async def _over_udp(self, payload: bytes) -> DNSRecord:
        loop = asyncio.get_running_loop()
        reply: asyncio.Future[bytes] = loop.create_future()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _SingleReply(payload, reply), remote_addr=(self.host, self.port)
        )
        try:
            return DNSRecord.parse(await reply)
        finally:
            transport.close()

    async def _over_tcp(self, payload: bytes) -> DNSRecord:
        reader, writer = await asyncio.open_connection(self.host, self.port)
        try:
            writer.write(len(payload).to_bytes(2, "big") + payload)
            await writer.drain()
            size = int.from_bytes(await reader.readexactly(2), "big")
            return DNSRecord.parse(await reader.readexactly(size))
        finally:
            writer.close()
            await writer.wait_closed()
