import pytest

from kvquorum.client.dns_client import DnsAnswer, DnsLookup
from kvquorum.dns.resolver import DnsServerHostResolver, StaticHostResolver


class _FakeDnsClient:
    def __init__(self, results: dict[tuple[str, str], DnsLookup]) -> None:
        self.results = results
        self.queries: list[tuple[str, str]] = []

    async def resolve(self, qname: str, qtype: str = "A") -> DnsLookup:
        self.queries.append((qname, qtype))
        return self.results[(qname, qtype)]


def _result(qname: str, qtype: str, rcode: str, *ips: str) -> DnsLookup:
    return DnsLookup(
        qname=qname,
        qtype=qtype,
        rcode=rcode,
        answers=tuple(DnsAnswer(qname, qtype, 5, ip) for ip in ips),
    )


@pytest.mark.asyncio
async def test_static_resolver_tracks_changes() -> None:
    resolver = StaticHostResolver({"svc.local": ["10.0.0.1"]})
    resolver.add("SVC.local.", "10.0.0.2")
    resolver.add("svc.local", "10.0.0.2")
    assert await resolver.resolve("svc.local") == ("10.0.0.1", "10.0.0.2")

    resolver.remove("svc.local", "10.0.0.1")
    assert await resolver.resolve("svc.local") == ("10.0.0.2",)
    resolver.remove("svc.local")
    assert await resolver.resolve("svc.local") == ()


@pytest.mark.asyncio
async def test_dns_server_resolver_maps_nxdomain_to_empty() -> None:
    client = _FakeDnsClient({("missing", "A"): _result("missing", "A", "NXDOMAIN")})
    resolver = DnsServerHostResolver(client)  # type: ignore[arg-type]
    assert await resolver.resolve("missing") == ()


@pytest.mark.asyncio
async def test_dns_server_resolver_raises_on_servfail() -> None:
    client = _FakeDnsClient({("svc", "A"): _result("svc", "A", "SERVFAIL")})
    resolver = DnsServerHostResolver(client)  # type: ignore[arg-type]
    with pytest.raises(OSError):
        await resolver.resolve("svc")


@pytest.mark.asyncio
async def test_dns_server_resolver_merges_ipv6_when_enabled() -> None:
    client = _FakeDnsClient(
        {
            ("svc", "A"): _result("svc", "A", "NOERROR", "10.0.0.1"),
            ("svc", "AAAA"): _result("svc", "AAAA", "NOERROR", "fd00::1"),
        }
    )
    resolver = DnsServerHostResolver(client, include_ipv6=True)  # type: ignore[arg-type]
    assert await resolver.resolve("svc") == ("10.0.0.1", "fd00::1")
    assert client.queries == [("svc", "A"), ("svc", "AAAA")]
