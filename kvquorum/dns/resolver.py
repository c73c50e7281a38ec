"""Host resolvers backing the peer directory.

A resolver maps one DNS name to its current address set. An empty tuple
means "no such name yet"; transient failures raise ``OSError`` or
``TimeoutError`` so the caller can retry with backoff.
"""

from __future__ import annotations

import asyncio
import socket
from collections.abc import Iterable
from typing import Protocol

from loguru import logger

from kvquorum.client.dns_client import DnsQueryClient
from kvquorum.datastructures.type_aliases import IpAddress

from .names import normalize_domain

_NOT_FOUND_ERRNOS = frozenset(
    code
    for code in (
        getattr(socket, "EAI_NONAME", None),
        getattr(socket, "EAI_NODATA", None),
    )
    if code is not None
)


class HostResolver(Protocol):
    async def resolve(self, name: str) -> tuple[IpAddress, ...]: ...


def _unique(addresses: Iterable[IpAddress]) -> tuple[IpAddress, ...]:
    seen: dict[IpAddress, None] = {}
    for address in addresses:
        seen.setdefault(address, None)
    return tuple(seen)


class SystemHostResolver:
    """Resolve through the host's resolver stack (what ``getent ahosts`` sees)."""

    def __init__(self, *, family: int = socket.AF_UNSPEC) -> None:
        self._family = family

    async def resolve(self, name: str) -> tuple[IpAddress, ...]:
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(
                name, None, family=self._family, type=socket.SOCK_STREAM
            )
        except socket.gaierror as exc:
            if exc.errno in _NOT_FOUND_ERRNOS:
                logger.debug("{} does not resolve", name)
                return ()
            raise
        return _unique(str(info[4][0]) for info in infos)


class DnsServerHostResolver:
    """Resolve by querying one DNS server directly over dnslib."""

    def __init__(self, client: DnsQueryClient, *, include_ipv6: bool = False) -> None:
        self._client = client
        self._qtypes = ("A", "AAAA") if include_ipv6 else ("A",)

    async def resolve(self, name: str) -> tuple[IpAddress, ...]:
        addresses: list[IpAddress] = []
        for qtype in self._qtypes:
            result = await self._client.resolve(name, qtype)
            if result.not_found:
                return ()
            if not result.ok:
                raise OSError(f"DNS lookup of {name} ({qtype}) returned {result.rcode}")
            addresses.extend(result.addresses())
        return _unique(addresses)


class StaticHostResolver:
    """In-memory name table; entries can change to model DNS propagation."""

    def __init__(self, table: dict[str, Iterable[IpAddress]] | None = None) -> None:
        self._table: dict[str, tuple[IpAddress, ...]] = {}
        for name, addresses in (table or {}).items():
            self.set(name, addresses)

    def set(self, name: str, addresses: Iterable[IpAddress]) -> None:
        self._table[normalize_domain(name)] = _unique(addresses)

    def add(self, name: str, address: IpAddress) -> None:
        key = normalize_domain(name)
        self._table[key] = _unique((*self._table.get(key, ()), address))

    def remove(self, name: str, address: IpAddress | None = None) -> None:
        key = normalize_domain(name)
        if address is None:
            self._table.pop(key, None)
            return
        remaining = tuple(a for a in self._table.get(key, ()) if a != address)
        if remaining:
            self._table[key] = remaining
        else:
            self._table.pop(key, None)

    async def resolve(self, name: str) -> tuple[IpAddress, ...]:
        return self._table.get(normalize_domain(name), ())
