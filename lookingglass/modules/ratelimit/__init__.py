"""
Rate Limit Module - Black Box Interface

Purpose: Per-session sliding window admission control
Interface: check_rate_limit(), remaining_time()
Hidden: Timestamp bookkeeping, pruning

Session state lives for the process lifetime and is never evicted.
"""

from .limiter import RateLimiter

__all__ = ["RateLimiter"]
