"""
DNS-over-HTTPS resolver with latency probing and failover.

Resolution order:
1. The current (lowest latency) endpoint
2. All remaining endpoints raced concurrently, first non-empty answer wins
3. The platform resolver (getaddrinfo)

The whole endpoint phase is bounded by ``timeout``; each individual
endpoint query is bounded by ``endpoint_timeout``.
"""

import asyncio
import ipaddress
import logging
import socket
import time
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

from lookingglass.errors import ResolutionError

logger = logging.getLogger("lookingglass.dns")

RECORD_TYPES: Dict[str, int] = {"A": 1, "AAAA": 28}

DEFAULT_TIMEOUT = 5.0
DEFAULT_ENDPOINT_TIMEOUT = 3.0
DEFAULT_PROBE_INTERVAL = 300.0
DEFAULT_PROBE_DOMAIN = "www.google.com"

# Latency recorded for an endpoint whose probe failed
PROBE_FAILURE_PENALTY = 10.0


class IPVersion(str, Enum):
    """Address family preference for a resolution."""

    AUTO = "auto"
    IPV4 = "ipv4"
    IPV6 = "ipv6"

    @classmethod
    def parse(cls, value) -> "IPVersion":
        """Parse a preference string; anything unrecognised means AUTO."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.AUTO


@dataclass
class DNSEndpoint:
    """A DoH endpoint and its last measured latency."""

    name: str
    url: str
    latency: float = 0.0
    last_probe: Optional[datetime] = None


DEFAULT_ENDPOINTS = (
    DNSEndpoint(name="Alibaba", url="https://223.5.5.5/resolve"),
    DNSEndpoint(name="Google", url="https://8.8.8.8/resolve"),
)


class DoHQueryError(Exception):
    """A single endpoint query failed; recovered by the failover chain."""


SystemResolver = Callable[[str, IPVersion], Awaitable[List[str]]]


def _prefer_ipv4(v4: List[str], v6: List[str]) -> List[str]:
    return v4 if v4 else v6


async def system_resolve(domain: str, version: IPVersion) -> List[str]:
    """Resolve through the platform resolver."""
    family = {
        IPVersion.IPV4: socket.AF_INET,
        IPVersion.IPV6: socket.AF_INET6,
    }.get(version, socket.AF_UNSPEC)

    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(domain, None, family=family, type=socket.SOCK_STREAM)
    except OSError as e:
        raise DoHQueryError(f"system resolver failed: {e}") from e

    v4: List[str] = []
    v6: List[str] = []
    for info_family, _, _, _, sockaddr in infos:
        address = sockaddr[0]
        if info_family == socket.AF_INET and address not in v4:
            v4.append(address)
        elif info_family == socket.AF_INET6 and address not in v6:
            v6.append(address)

    if version == IPVersion.IPV4:
        return v4
    if version == IPVersion.IPV6:
        return v6
    return _prefer_ipv4(v4, v6)


class DNSResolver:
    """Resolves domains through a fixed set of DoH endpoints."""

    def __init__(
        self,
        endpoints: Optional[Sequence[DNSEndpoint]] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        endpoint_timeout: float = DEFAULT_ENDPOINT_TIMEOUT,
        probe_interval: float = DEFAULT_PROBE_INTERVAL,
        probe_domain: str = DEFAULT_PROBE_DOMAIN,
        system_resolver: Optional[SystemResolver] = None,
    ):
        """
        Initialize resolver.

        Args:
            endpoints: DoH endpoints; copies of DEFAULT_ENDPOINTS when omitted
            client: Shared HTTP client; one is created and owned when omitted
            timeout: Deadline in seconds for the endpoint phase of a resolution
            endpoint_timeout: Deadline in seconds for one endpoint query
            probe_interval: Seconds between background latency probes
            probe_domain: Canary domain used by the prober
            system_resolver: Platform fallback, replaceable in tests
        """
        source = endpoints if endpoints is not None else DEFAULT_ENDPOINTS
        self._endpoints: List[DNSEndpoint] = [replace(e) for e in source]
        if not self._endpoints:
            raise ValueError("DNSResolver requires at least one endpoint")

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=endpoint_timeout,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )
        self.timeout = timeout
        self.endpoint_timeout = endpoint_timeout
        self.probe_interval = probe_interval
        self.probe_domain = probe_domain
        self._system_resolver = system_resolver or system_resolve

        self._current_index = 0
        self._lock = asyncio.Lock()
        self._probe_task: Optional[asyncio.Task] = None

    async def __aenter__(self) -> "DNSResolver":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # Lifecycle

    def start(self) -> None:
        """Start background latency monitoring (initial probe, then periodic)."""
        if self._probe_task is None or self._probe_task.done():
            self._probe_task = asyncio.create_task(self._probe_loop())
            logger.info(
                f"DNS latency monitoring started for {len(self._endpoints)} endpoints "
                f"(interval {self.probe_interval}s)"
            )

    async def stop(self) -> None:
        """Stop latency monitoring and release the HTTP client."""
        if self._probe_task is not None:
            self._probe_task.cancel()
            try:
                await self._probe_task
            except asyncio.CancelledError:
                pass
            self._probe_task = None

        if self._owns_client:
            await self._client.aclose()

    async def _probe_loop(self) -> None:
        while True:
            try:
                await self.probe_all()
            except Exception as e:
                logger.error(f"DNS latency probe failed: {e}")
            await asyncio.sleep(self.probe_interval)

    # Latency probing

    async def probe_all(self) -> DNSEndpoint:
        """
        Probe every endpoint concurrently and select the fastest.

        Returns:
            The endpoint selected as current
        """
        await asyncio.gather(*(self._probe(endpoint) for endpoint in self._endpoints))
        return await self._select_fastest()

    async def _probe(self, endpoint: DNSEndpoint) -> None:
        start = time.monotonic()
        try:
            ips = await asyncio.wait_for(
                self._query_endpoint(endpoint, self.probe_domain, IPVersion.AUTO),
                self.endpoint_timeout,
            )
            latency = time.monotonic() - start if ips else PROBE_FAILURE_PENALTY
        except (asyncio.TimeoutError, DoHQueryError) as e:
            logger.debug(f"Probe of {endpoint.name} failed: {e}")
            latency = PROBE_FAILURE_PENALTY

        endpoint.latency = latency
        endpoint.last_probe = datetime.now(UTC)

    async def _select_fastest(self) -> DNSEndpoint:
        async with self._lock:
            fastest = min(
                range(len(self._endpoints)),
                key=lambda i: self._endpoints[i].latency,
            )
            if fastest != self._current_index:
                logger.info(
                    f"Switching DNS endpoint to {self._endpoints[fastest].name} "
                    f"({self._endpoints[fastest].latency * 1000:.0f}ms)"
                )
            self._current_index = fastest
            return self._endpoints[fastest]

    @property
    def current_endpoint(self) -> DNSEndpoint:
        """The endpoint queried first."""
        return self._endpoints[self._current_index]

    @property
    def endpoints(self) -> List[DNSEndpoint]:
        """Snapshot of all endpoints and their latencies."""
        return [replace(e) for e in self._endpoints]

    # Resolution

    async def resolve(self, domain: str, version=IPVersion.AUTO) -> List[str]:
        """
        Resolve a domain to IP addresses.

        Args:
            domain: Domain name without port
            version: "auto", "ipv4" or "ipv6"

        Returns:
            Non-empty list of IP address strings

        Raises:
            ResolutionError: If DoH endpoints and the platform resolver all fail
        """
        version = IPVersion.parse(version)

        try:
            ips = await asyncio.wait_for(
                self._resolve_with_endpoints(domain, version), self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"DoH resolution of {domain} timed out after {self.timeout}s")
            ips = []

        if ips:
            return ips

        logger.warning(f"All DoH endpoints failed for {domain}, using system resolver")
        try:
            ips = await asyncio.wait_for(self._system_resolver(domain, version), self.timeout)
        except asyncio.TimeoutError:
            raise ResolutionError(f"Failed to resolve domain {domain}: timed out")
        except DoHQueryError as e:
            raise ResolutionError(f"Failed to resolve domain {domain}: {e}") from e

        if not ips:
            raise ResolutionError(f"No IP addresses found for domain: {domain}")
        return ips

    async def _resolve_with_endpoints(self, domain: str, version: IPVersion) -> List[str]:
        current = self.current_endpoint

        ips = await self._try_endpoint(current, domain, version)
        if ips:
            return ips

        others = [e for e in self._endpoints if e is not current]
        if not others:
            return []

        logger.debug(f"Endpoint {current.name} failed for {domain}, racing {len(others)} others")
        tasks = [
            asyncio.create_task(self._try_endpoint(endpoint, domain, version))
            for endpoint in others
        ]
        try:
            for next_done in asyncio.as_completed(tasks):
                ips = await next_done
                if ips:
                    return ips
            return []
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _try_endpoint(self, endpoint: DNSEndpoint, domain: str, version: IPVersion) -> List[str]:
        try:
            return await asyncio.wait_for(
                self._query_endpoint(endpoint, domain, version), self.endpoint_timeout
            )
        except asyncio.TimeoutError:
            logger.debug(f"Endpoint {endpoint.name} timed out resolving {domain}")
        except DoHQueryError as e:
            logger.debug(f"Endpoint {endpoint.name} failed resolving {domain}: {e}")
        return []

    async def _query_endpoint(self, endpoint: DNSEndpoint, domain: str, version: IPVersion) -> List[str]:
        if version == IPVersion.IPV4:
            return await self._query(endpoint, domain, "A")
        if version == IPVersion.IPV6:
            return await self._query(endpoint, domain, "AAAA")

        v4, v6 = await asyncio.gather(
            self._query(endpoint, domain, "A"),
            self._query(endpoint, domain, "AAAA"),
            return_exceptions=True,
        )
        v4_ips = v4 if isinstance(v4, list) else []
        v6_ips = v6 if isinstance(v6, list) else []
        if not v4_ips and not v6_ips:
            error = v4 if isinstance(v4, BaseException) else v6
            if isinstance(error, BaseException):
                raise DoHQueryError(str(error))
            raise DoHQueryError("no IP addresses found in DoH response")
        return _prefer_ipv4(v4_ips, v6_ips)

    async def _query(self, endpoint: DNSEndpoint, domain: str, record_type: str) -> List[str]:
        """Issue one DoH JSON query for a single record type."""
        try:
            response = await self._client.get(
                endpoint.url,
                params={"name": domain, "type": record_type},
                headers={"Accept": "application/dns-json"},
                timeout=self.endpoint_timeout,
            )
        except httpx.HTTPError as e:
            raise DoHQueryError(f"failed to query DoH server: {e}") from e

        if response.status_code != 200:
            raise DoHQueryError(f"DoH server returned status: {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise DoHQueryError(f"failed to parse DoH response: {e}") from e

        if not isinstance(payload, dict):
            raise DoHQueryError("failed to parse DoH response: not an object")

        answers = payload.get("Answer") or []
        if not isinstance(answers, list):
            raise DoHQueryError("failed to parse DoH response: Answer is not a list")

        wanted_type = RECORD_TYPES[record_type]
        wanted_version = 4 if record_type == "A" else 6

        ips: List[str] = []
        for answer in answers:
            if not isinstance(answer, dict) or answer.get("type") != wanted_type:
                continue
            data = str(answer.get("data", "")).strip()
            if "%" in data:
                continue
            try:
                ip = ipaddress.ip_address(data)
            except ValueError:
                continue
            if ip.version == wanted_version and str(ip) not in ips:
                ips.append(str(ip))
        return ips
