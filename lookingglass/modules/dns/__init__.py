"""
DNS Module - Black Box Interface

Purpose: Resolve diagnostic targets through DNS-over-HTTPS
Interface: DNSResolver.resolve(), start(), stop()
Hidden: Endpoint latency probing, race/failover order, platform fallback

Constructed once by the application and passed to the executor.
"""

from .resolver import (
    DEFAULT_ENDPOINTS,
    PROBE_FAILURE_PENALTY,
    DNSEndpoint,
    DNSResolver,
    IPVersion,
    system_resolve,
)

__all__ = [
    "DEFAULT_ENDPOINTS",
    "PROBE_FAILURE_PENALTY",
    "DNSEndpoint",
    "DNSResolver",
    "IPVersion",
    "system_resolve",
]
