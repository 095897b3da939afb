"""
Tests for the DNS-over-HTTPS resolver.

DoH servers are imitated with httpx.MockTransport; no network access.
"""

import asyncio
import os
import sys
import time

import httpx
import pytest
import pytest_asyncio

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import DoHAnswer, doh_transport, static_system_resolver
from lookingglass.errors import ResolutionError
from lookingglass.modules.dns import (
    PROBE_FAILURE_PENALTY,
    DNSEndpoint,
    DNSResolver,
    IPVersion,
    system_resolve,
)


@pytest_asyncio.fixture
async def make_resolver():
    """Factory building resolvers over mocked DoH servers."""
    clients = []

    def factory(answers, names=("primary", "secondary", "tertiary"), **kwargs):
        client = httpx.AsyncClient(transport=doh_transport(answers))
        clients.append(client)
        endpoints = [DNSEndpoint(name=name, url=f"https://{name}.test/resolve") for name in names]
        kwargs.setdefault("system_resolver", static_system_resolver([]))
        return DNSResolver(endpoints=endpoints, client=client, **kwargs)

    yield factory

    for client in clients:
        await client.aclose()


class TestResolve:
    """Address family selection and answer parsing."""

    @pytest.mark.asyncio
    async def test_auto_prefers_ipv4(self, make_resolver):
        resolver = make_resolver({
            "primary.test": DoHAnswer(a=["93.184.216.34"], aaaa=["2606:2800:220:1::1"]),
        })

        assert await resolver.resolve("example.com") == ["93.184.216.34"]

    @pytest.mark.asyncio
    async def test_auto_falls_back_to_ipv6(self, make_resolver):
        resolver = make_resolver({"primary.test": DoHAnswer(aaaa=["2001:db8::1"])})

        assert await resolver.resolve("example.com", "auto") == ["2001:db8::1"]

    @pytest.mark.asyncio
    async def test_explicit_versions(self, make_resolver):
        resolver = make_resolver({
            "primary.test": DoHAnswer(a=["192.0.2.1"], aaaa=["2001:db8::1"]),
        })

        assert await resolver.resolve("example.com", "ipv4") == ["192.0.2.1"]
        assert await resolver.resolve("example.com", IPVersion.IPV6) == ["2001:db8::1"]

    @pytest.mark.asyncio
    async def test_unknown_version_treated_as_auto(self, make_resolver):
        resolver = make_resolver({
            "primary.test": DoHAnswer(a=["192.0.2.1"], aaaa=["2001:db8::1"]),
        })

        assert await resolver.resolve("example.com", "ipv5") == ["192.0.2.1"]

    @pytest.mark.asyncio
    async def test_answers_filtered_and_deduplicated(self, make_resolver):
        """CNAME records and addresses of the wrong family are ignored."""
        body = (
            '{"Status": 0, "Answer": ['
            '{"name": "www.example.com.", "type": 5, "data": "example.com."},'
            '{"name": "example.com.", "type": 1, "data": "192.0.2.1"},'
            '{"name": "example.com.", "type": 1, "data": "2001:db8::1"},'
            '{"name": "example.com.", "type": 1, "data": "192.0.2.1"},'
            '{"name": "example.com.", "type": 1, "data": "192.0.2.2"}'
            ']}'
        )
        resolver = make_resolver({"primary.test": DoHAnswer(body=body)})

        assert await resolver.resolve("www.example.com", "ipv4") == ["192.0.2.1", "192.0.2.2"]

    @pytest.mark.asyncio
    async def test_scoped_answers_dropped(self, make_resolver):
        """Addresses carrying an IPv6 zone never reach a command line."""
        body = (
            '{"Status": 0, "Answer": ['
            '{"name": "example.com.", "type": 28, "data": "fe80::1%eth0;id"},'
            '{"name": "example.com.", "type": 28, "data": "2001:db8::2"}'
            ']}'
        )
        resolver = make_resolver({"primary.test": DoHAnswer(body=body)})

        assert await resolver.resolve("example.com", "ipv6") == ["2001:db8::2"]


class TestFailover:
    """Current endpoint, race of the others, then platform resolver."""

    @pytest.mark.asyncio
    async def test_race_returns_first_success(self, make_resolver):
        """A slow failure does not hold up a faster success."""
        resolver = make_resolver({
            # primary is absent: connection refused
            "secondary.test": DoHAnswer(status_code=500, delay=1.0),
            "tertiary.test": DoHAnswer(a=["198.51.100.7"], delay=0.5),
        })

        start = time.monotonic()
        ips = await resolver.resolve("example.com", "ipv4")
        elapsed = time.monotonic() - start

        assert ips == ["198.51.100.7"]
        assert elapsed < 0.9

    @pytest.mark.asyncio
    async def test_non_200_treated_as_failure(self, make_resolver):
        resolver = make_resolver({
            "primary.test": DoHAnswer(a=["192.0.2.1"], status_code=503),
            "secondary.test": DoHAnswer(a=["192.0.2.2"]),
        })

        assert await resolver.resolve("example.com", "ipv4") == ["192.0.2.2"]

    @pytest.mark.asyncio
    async def test_malformed_json_treated_as_failure(self, make_resolver):
        resolver = make_resolver({
            "primary.test": DoHAnswer(body="<html>not json</html>"),
            "secondary.test": DoHAnswer(a=["192.0.2.2"]),
        })

        assert await resolver.resolve("example.com", "ipv4") == ["192.0.2.2"]

    @pytest.mark.asyncio
    async def test_empty_answer_moves_on(self, make_resolver):
        resolver = make_resolver({
            "primary.test": DoHAnswer(),
            "secondary.test": DoHAnswer(a=["192.0.2.2"]),
        })

        assert await resolver.resolve("example.com") == ["192.0.2.2"]

    @pytest.mark.asyncio
    async def test_endpoint_timeout(self, make_resolver):
        resolver = make_resolver(
            {
                "primary.test": DoHAnswer(a=["192.0.2.1"], delay=2.0),
                "secondary.test": DoHAnswer(a=["192.0.2.2"]),
            },
            endpoint_timeout=0.2,
        )

        assert await resolver.resolve("example.com", "ipv4") == ["192.0.2.2"]

    @pytest.mark.asyncio
    async def test_system_resolver_fallback(self, make_resolver):
        resolver = make_resolver(
            {"primary.test": DoHAnswer(status_code=500)},
            system_resolver=static_system_resolver(["203.0.113.9"]),
        )

        assert await resolver.resolve("example.com") == ["203.0.113.9"]

    @pytest.mark.asyncio
    async def test_overall_deadline_then_system_resolver(self, make_resolver):
        """The DoH phase is abandoned at the overall timeout."""
        slow = DoHAnswer(a=["192.0.2.1"], delay=2.0)
        resolver = make_resolver(
            {"primary.test": slow, "secondary.test": slow, "tertiary.test": slow},
            timeout=0.3,
            system_resolver=static_system_resolver(["203.0.113.9"]),
        )

        start = time.monotonic()
        ips = await resolver.resolve("example.com")

        assert ips == ["203.0.113.9"]
        assert time.monotonic() - start < 1.5

    @pytest.mark.asyncio
    async def test_everything_fails(self, make_resolver):
        resolver = make_resolver({})

        with pytest.raises(ResolutionError) as exc_info:
            await resolver.resolve("example.com")

        assert exc_info.value.code == "resolution_failure"
        assert "example.com" in exc_info.value.message


class TestProbing:
    """Latency measurement and current endpoint selection."""

    @pytest.mark.asyncio
    async def test_probe_selects_fastest(self, make_resolver):
        resolver = make_resolver({
            "primary.test": DoHAnswer(a=["192.0.2.1"], delay=0.3),
            "secondary.test": DoHAnswer(a=["192.0.2.1"], delay=0.05),
            "tertiary.test": DoHAnswer(status_code=500),
        })
        assert resolver.current_endpoint.name == "primary"

        current = await resolver.probe_all()

        assert current.name == "secondary"
        assert resolver.current_endpoint.name == "secondary"

        latencies = {endpoint.name: endpoint.latency for endpoint in resolver.endpoints}
        assert latencies["tertiary"] == PROBE_FAILURE_PENALTY
        assert latencies["secondary"] < latencies["primary"] < PROBE_FAILURE_PENALTY
        assert all(endpoint.last_probe is not None for endpoint in resolver.endpoints)

    @pytest.mark.asyncio
    async def test_empty_probe_answer_penalized(self, make_resolver):
        resolver = make_resolver(
            {"primary.test": DoHAnswer(), "secondary.test": DoHAnswer(a=["192.0.2.1"])},
            names=("primary", "secondary"),
        )

        await resolver.probe_all()

        assert resolver.endpoints[0].latency == PROBE_FAILURE_PENALTY
        assert resolver.current_endpoint.name == "secondary"

    @pytest.mark.asyncio
    async def test_endpoints_snapshot_is_a_copy(self, make_resolver):
        resolver = make_resolver({})

        snapshot = resolver.endpoints
        snapshot[0].latency = 42.0

        assert resolver.endpoints[0].latency == 0.0

    @pytest.mark.asyncio
    async def test_background_prober_lifecycle(self, make_resolver):
        resolver = make_resolver(
            {"primary.test": DoHAnswer(a=["192.0.2.1"], delay=0.2), "secondary.test": DoHAnswer(a=["192.0.2.1"])},
            names=("primary", "secondary"),
            probe_interval=3600,
        )

        async with resolver:
            for _ in range(50):
                if resolver.current_endpoint.name == "secondary":
                    break
                await asyncio.sleep(0.05)
            assert resolver.current_endpoint.name == "secondary"

        assert resolver._probe_task is None


def test_requires_endpoints():
    with pytest.raises(ValueError):
        DNSResolver(endpoints=[])


@pytest.mark.asyncio
async def test_system_resolve_literal_address():
    assert await system_resolve("127.0.0.1", IPVersion.AUTO) == ["127.0.0.1"]
