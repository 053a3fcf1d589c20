"""
Adapters package for the Invites Service.

Wraps the collaborators this service does not own:

- Auth: verifies session credentials over HTTP (retry + circuit breaker)
- Property domain: ownership lookups and the tenant/property link

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .auth_client import AuthClient
from .properties import PropertyDirectory, PropertyLinker, PropertyRecord

__all__ = [
    "AuthClient",
    "PropertyDirectory",
    "PropertyLinker",
    "PropertyRecord",
]
