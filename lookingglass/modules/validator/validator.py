"""
Target validation for diagnostic commands.

Supported forms:
- IPv4: 192.168.1.1 or 192.168.1.1:8080
- IPv6: 2001:db8::1 or [2001:db8::1]:8080
- Domain: example.com or example.com:8080
"""

import ipaddress
import re
from enum import Enum
from typing import Tuple

MAX_TARGET_LENGTH = 256

DOMAIN_PATTERN = re.compile(r"^([a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$")
PORT_PATTERN = re.compile(r"^\d+$")


class InputType(Enum):
    """Classification of a target string."""

    INVALID = "invalid"
    IP_ADDRESS = "ip"
    DOMAIN = "domain"


def is_ip_address(value: str) -> bool:
    """IP literal without an IPv6 zone (the %scope suffix is free-form text)."""
    if "%" in value:
        return False
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def is_valid_domain(domain: str) -> bool:
    """Check if the input is a syntactically valid domain name."""
    return bool(DOMAIN_PATTERN.match(domain))


def extract_host_port(target: str) -> Tuple[str, str]:
    """
    Split a target into host and port.

    Returns:
        (host, port); port is "" when absent. host is "" when the
        target is malformed (unclosed bracket, junk after bracket,
        unbracketed IPv6 with a port).
    """
    if target.startswith("["):
        close_bracket = target.find("]")
        if close_bracket == -1:
            return "", ""
        host = target[1:close_bracket]
        rest = target[close_bracket + 1:]
        if not rest:
            return host, ""
        if rest.startswith(":"):
            return host, rest[1:]
        return "", ""

    if ":" not in target:
        return target, ""

    # Bare IPv6 without a port
    if is_ip_address(target):
        return target, ""

    host, _, port = target.rpartition(":")
    if ":" in host:
        return "", ""
    return host, port


def validate_input(target: str) -> InputType:
    """
    Validate a target and return its type.

    Args:
        target: User supplied target, optionally with a port

    Returns:
        InputType.IP_ADDRESS, InputType.DOMAIN or InputType.INVALID
    """
    if target is None or len(target) > MAX_TARGET_LENGTH:
        return InputType.INVALID

    target = target.strip()
    if not target:
        return InputType.INVALID

    host, port = extract_host_port(target)
    if not host:
        return InputType.INVALID

    if port and not PORT_PATTERN.match(port):
        return InputType.INVALID

    if is_ip_address(host):
        return InputType.IP_ADDRESS

    if is_valid_domain(host):
        return InputType.DOMAIN

    return InputType.INVALID


def format_target(host: str, port: str = "") -> str:
    """Join host and port, bracketing IPv6 hosts when a port is present."""
    if not port:
        return host
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"
