"""DNS-based discovery helpers for kvquorum."""

from .names import full_hostname, monitor_identity, ordinal_hostname
from .resolver import (
    DnsServerHostResolver,
    HostResolver,
    StaticHostResolver,
    SystemHostResolver,
)

__all__ = [
    "DnsServerHostResolver",
    "HostResolver",
    "StaticHostResolver",
    "SystemHostResolver",
    "full_hostname",
    "monitor_identity",
    "ordinal_hostname",
]
