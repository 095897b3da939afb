"""
Shared pytest fixtures for Looking Glass tests.

This module provides common fixtures including:
- FakeResolver: canned domain resolution for executor tests
- DoH mocking: httpx.MockTransport handlers that imitate JSON DoH servers
- Command templates and config files
"""

import asyncio
import os
import sys
import textwrap
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

import httpx
import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from lookingglass.config import CommandTemplate
from lookingglass.errors import ResolutionError


# =============================================================================
# Resolver Mocking
# =============================================================================

class FakeResolver:
    """
    Stand-in for DNSResolver with canned answers.

    Usage:
        resolver = FakeResolver({"example.com": ["93.184.216.34"]})
        ips = await resolver.resolve("example.com", "auto")
    """

    def __init__(self, answers: Optional[Dict[str, List[str]]] = None):
        self.answers = answers or {}
        self.calls: List[tuple] = []

    async def resolve(self, domain: str, version="auto") -> List[str]:
        self.calls.append((domain, str(getattr(version, "value", version))))
        ips = self.answers.get(domain)
        if not ips:
            raise ResolutionError(f"No IP addresses found for domain: {domain}")
        return list(ips)


@pytest.fixture
def fake_resolver():
    return FakeResolver({
        "example.com": ["93.184.216.34", "93.184.216.35"],
        "v6.example.com": ["2001:db8::1"],
    })


# =============================================================================
# DoH Mocking Infrastructure
# =============================================================================

@dataclass
class DoHAnswer:
    """Canned answer of one mocked DoH server."""
    a: List[str] = field(default_factory=list)
    aaaa: List[str] = field(default_factory=list)
    status_code: int = 200
    delay: float = 0.0
    body: Optional[str] = None


def doh_payload(domain: str, record_type: str, ips: List[str]) -> dict:
    """JSON body in the application/dns-json format."""
    type_code = 1 if record_type == "A" else 28
    return {
        "Status": 0,
        "Question": [{"name": f"{domain}.", "type": type_code}],
        "Answer": [
            {"name": f"{domain}.", "type": type_code, "TTL": 300, "data": ip}
            for ip in ips
        ],
    }


def doh_transport(answers: Dict[str, DoHAnswer]) -> httpx.MockTransport:
    """
    Build a MockTransport that serves DoH answers keyed by host.

    Hosts missing from ``answers`` raise a connection error.
    """

    async def handler(request: httpx.Request) -> httpx.Response:
        answer = answers.get(request.url.host)
        if answer is None:
            raise httpx.ConnectError("connection refused", request=request)

        if answer.delay:
            await asyncio.sleep(answer.delay)

        if answer.body is not None:
            return httpx.Response(answer.status_code, text=answer.body)

        domain = request.url.params["name"]
        record_type = request.url.params["type"]
        ips = answer.a if record_type == "A" else answer.aaaa
        return httpx.Response(answer.status_code, json=doh_payload(domain, record_type, ips))

    return httpx.MockTransport(handler)


def static_system_resolver(ips: List[str]) -> Callable[..., Awaitable[List[str]]]:
    """System resolver replacement that always returns ``ips``."""

    async def resolve(domain, version):
        return list(ips)

    return resolve


# =============================================================================
# Command Templates
# =============================================================================

@pytest.fixture
def command_templates() -> Dict[str, CommandTemplate]:
    """Templates built from commands available on any POSIX host."""
    templates = [
        CommandTemplate(name="echo", template="echo"),
        CommandTemplate(name="hello", template="echo hello", ignore_target=True),
        CommandTemplate(name="seq", template="seq 1 500", ignore_target=True),
        CommandTemplate(name="flood", template="yes", ignore_target=True),
        CommandTemplate(name="streams", template="echo out; echo err 1>&2", ignore_target=True),
        CommandTemplate(name="false", template="false", ignore_target=True),
        CommandTemplate(name="sleep", template="sleep 30", ignore_target=True),
        CommandTemplate(name="sleepy", template="echo started; sleep 30", ignore_target=True),
        CommandTemplate(name="hold", template="sleep 30; echo"),
        CommandTemplate(name="background", template="(sleep 47 & echo $!); echo hi", ignore_target=True),
        CommandTemplate(name="missing", template="/nonexistent/binary-for-tests", ignore_target=True),
    ]
    return {template.name: template for template in templates}


@pytest.fixture
def config_file(tmp_path):
    """Write a minimal config file and return its path."""
    path = tmp_path / "config.yaml"
    path.write_text(textwrap.dedent("""
        listen:
          host: "127.0.0.1"
          port: 8081
          log_level: "debug"
        rate_limit:
          enabled: true
          max_commands: 2
          time_window: 60
        info:
          name: "Test Node"
          location: "Lab"
        commands:
          hello:
            template: "echo hello"
            description: "Say hello"
            ignore_target: true
          echo:
            template: "echo"
            description: "Echo the target"
          sleep:
            template: "sleep 30"
            ignore_target: true
    """))
    return str(path)


# =============================================================================
# Test Markers Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "subprocess: Tests that spawn real child processes"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take a long time to run"
    )
