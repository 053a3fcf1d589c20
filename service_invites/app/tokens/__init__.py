"""
Invite token lifecycle.

- crypto: token generation, keyed hashing and constant-time verification.
- issuer: issuance and owner-facing token listing.
- validator: side-effect free, enumeration-safe preview.
- acceptor: atomic, idempotent redemption.
- revoker: revocation plus scheduled cleanup.
"""

from .crypto import TokenHasher, parse_token
from .issuer import TokenIssuer, IssuedToken, TokenSummary
from .validator import TokenValidator, ValidationOutcome, INVALID_RESPONSE
from .acceptor import TokenAcceptor, AcceptResult
from .revoker import TokenRevoker, TokenCleaner, CleanupScheduler, CleanupReport

__all__ = [
    "TokenHasher",
    "parse_token",
    "TokenIssuer",
    "IssuedToken",
    "TokenSummary",
    "TokenValidator",
    "ValidationOutcome",
    "INVALID_RESPONSE",
    "TokenAcceptor",
    "AcceptResult",
    "TokenRevoker",
    "TokenCleaner",
    "CleanupScheduler",
    "CleanupReport",
]
