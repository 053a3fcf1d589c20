"""
Domain utilities for the Invites Service.

Includes the origin guard, principal resolution and the clock shared by
the token and rate-limit packages.
"""

from .auth_middleware import AuthMiddleware, Principal
from .clock import Clock
from .origin_guard import CallerKind, OriginGuard

__all__ = [
    "AuthMiddleware",
    "Principal",
    "Clock",
    "CallerKind",
    "OriginGuard",
]
