from __future__ import annotations

import hashlib
import ipaddress
import re
from collections.abc import Iterable

from kvquorum.datastructures.type_aliases import (
    FullHostName,
    HostName,
    IpAddress,
    MonitorIdentity,
    Ordinal,
    ServiceName,
)

_ORDINAL_RE = re.compile(r"^(?P<prefix>.+)-(?P<ordinal>\d+)$")


def normalize_domain(domain: str) -> str:
    return domain.strip().strip(".").lower()


def full_hostname(hostname: HostName, domain: ServiceName) -> FullHostName:
    """Qualify ``hostname`` with the headless service domain."""
    short = hostname.strip().strip(".")
    zone = normalize_domain(domain)
    if not zone or short.endswith(f".{zone}"):
        return short
    return f"{short}.{zone}"


def short_hostname(name: FullHostName) -> HostName:
    return name.strip().split(".", 1)[0]


def ordinal_hostname(prefix: str, ordinal: Ordinal) -> HostName:
    if ordinal < 0:
        raise ValueError("Ordinal cannot be negative")
    return f"{prefix}-{ordinal}"


def ordinal_of(hostname: HostName) -> Ordinal | None:
    match = _ORDINAL_RE.match(short_hostname(hostname))
    if match is None:
        return None
    return int(match.group("ordinal"))


def monitor_identity(hostname: HostName) -> MonitorIdentity:
    """Stable 40-hex-character monitor identity derived from ``hostname``.

    The digest covers the hostname plus a trailing newline so identities match
    the ones the shell tooling computed with ``echo "$host" | openssl sha1``.
    """
    if not hostname:
        raise ValueError("Hostname cannot be empty")
    return hashlib.sha1(f"{hostname}\n".encode()).hexdigest()


def first_ipv4(addresses: Iterable[str]) -> IpAddress | None:
    """First IPv4 address among ``addresses`` (``hostname -i`` may list several)."""
    for candidate in addresses:
        for token in candidate.split():
            try:
                ip = ipaddress.ip_address(token)
            except ValueError:
                continue
            if ip.version == 4:
                return str(ip)
    return None
