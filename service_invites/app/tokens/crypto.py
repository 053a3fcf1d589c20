"""
Invite credential generation and verification.

A token is ``selector.verifier``. The selector (9 random bytes, 12
url-safe characters) is stored in clear and used only to find the row.
The verifier (16 random bytes, 128 bits) is never stored; the row keeps
``HMAC-SHA256(key, salt || verifier)`` and the per-token salt. Tokens are
high entropy, so a fast keyed hash is sufficient.
"""

import hashlib
import hmac
import re
import secrets
from dataclasses import dataclass

from shared.errors import ValidationError

SELECTOR_BYTES = 9
VERIFIER_BYTES = 16
SALT_BYTES = 16

TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{12}\.[A-Za-z0-9_-]{22}$")

# Used when no row matches, so the miss path still pays for one HMAC.
_DUMMY_SALT = "00" * SALT_BYTES


@dataclass(frozen=True)
class GeneratedToken:
    """Plaintext token plus the values that get persisted."""

    plaintext: str
    selector: str
    salt: str
    token_hash: str

    def __repr__(self) -> str:
        return f"GeneratedToken(selector={self.selector!r})"


@dataclass(frozen=True)
class ParsedToken:
    selector: str
    verifier: str

    def __repr__(self) -> str:
        return f"ParsedToken(selector={self.selector!r})"


class TokenHasher:
    """Keyed hashing of token verifiers."""

    def __init__(self, key: str):
        if not key:
            raise ValueError("hash key must not be empty")
        self._key = key.encode("utf-8")

    def hash(self, verifier: str, salt: str) -> str:
        mac = hmac.new(self._key, bytes.fromhex(salt) + verifier.encode("utf-8"), hashlib.sha256)
        return mac.hexdigest()

    def verify(self, verifier: str, salt: str, expected_hash: str) -> bool:
        """Constant-time comparison of a recomputed hash against the stored one."""
        return hmac.compare_digest(self.hash(verifier, salt), expected_hash)

    def burn(self, verifier: str) -> None:
        """Spend one HMAC on a lookup miss."""
        self.hash(verifier, _DUMMY_SALT)

    def generate(self) -> GeneratedToken:
        selector = secrets.token_urlsafe(SELECTOR_BYTES)
        verifier = secrets.token_urlsafe(VERIFIER_BYTES)
        salt = secrets.token_bytes(SALT_BYTES).hex()
        return GeneratedToken(
            plaintext=f"{selector}.{verifier}",
            selector=selector,
            salt=salt,
            token_hash=self.hash(verifier, salt),
        )


def parse_token(token: str) -> ParsedToken:
    """Split a presented token into selector and verifier.

    Raises ValidationError for anything that is not shaped like a token. The
    message never includes the submitted value.
    """
    if not isinstance(token, str) or not TOKEN_PATTERN.match(token.strip()):
        raise ValidationError("Malformed invite token")
    selector, verifier = token.strip().split(".", 1)
    return ParsedToken(selector=selector, verifier=verifier)
