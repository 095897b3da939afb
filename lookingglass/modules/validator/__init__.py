"""
Validator Module - Black Box Interface

Purpose: Classify user supplied targets before they reach a command line
Interface: validate_input(), extract_host_port(), format_target()
Hidden: IP parsing, domain pattern, bracket handling
"""

from .validator import (
    InputType,
    extract_host_port,
    format_target,
    is_ip_address,
    is_valid_domain,
    validate_input,
)

__all__ = [
    "InputType",
    "extract_host_port",
    "format_target",
    "is_ip_address",
    "is_valid_domain",
    "validate_input",
]
