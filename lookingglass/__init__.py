"""
Looking Glass - Network Diagnostics Streaming Service

Runs a small set of pre-approved network diagnostic commands (ping,
traceroute, domain lookups) against a user supplied target and streams
their output back over WebSocket or Server-Sent Events.

Architecture:
- Each module is self-contained with clear interfaces
- Modules are completely replaceable
- No module knows the internals of another
- All communication through defined interfaces

Modules:
- executor: Command launching, output streaming and cancellation
- dns: DNS-over-HTTPS resolution with latency probing and failover
- ratelimit: Per-session sliding window admission control
- validator: Target classification (IP, domain, port)
- session: Session identifier minting and activity tracking
- api: Wire models for the transport layer
"""

__app_name__ = "Looking Glass"
__version__ = "2026.1019"
