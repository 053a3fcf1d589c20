"""
Rate limiting package for the Invites Service.

Holds the database-backed token bucket that gates every token operation,
plus caller identity derivation (principal id or client IP).
"""

from .token_bucket import TokenBucketRateLimiter, caller_identity, get_client_ip

__all__ = ["TokenBucketRateLimiter", "caller_identity", "get_client_ip"]
