"""
Caller classification that runs before any token operation.
"""

import re
from enum import Enum
from typing import List, Optional

from fastapi import Request

from shared.config import DEV_ORIGIN_PATTERN
from shared.errors import OriginNotAllowed
from shared.logging import get_logger

_DEV_ORIGIN = re.compile(DEV_ORIGIN_PATTERN, re.IGNORECASE)


class CallerKind(str, Enum):
    BROWSER = "browser"
    NATIVE = "native"


class OriginGuard:
    """Admits allowlisted browser origins and credentialed non-browser clients.

    - Origin present: it must exactly match the allowlist.
    - Origin absent, bearer credential present: trusted native client.
    - Neither: denied.

    Whether the credential is genuine is decided later by the auth
    collaborator; here only its presence matters.
    """

    def __init__(self, allowed_origins: List[str], allow_dev_origins: bool = False):
        self.allowed_origins = frozenset(origin.strip().lower() for origin in allowed_origins if origin.strip())
        self.allow_dev_origins = allow_dev_origins
        self.logger = get_logger("invites.origin_guard")

    def is_allowed_origin(self, origin: str) -> bool:
        normalized = origin.strip().lower()
        if normalized in self.allowed_origins:
            return True
        return self.allow_dev_origins and bool(_DEV_ORIGIN.match(normalized))

    def classify(self, origin: Optional[str], authorization: Optional[str]) -> CallerKind:
        if origin:
            if self.is_allowed_origin(origin):
                return CallerKind.BROWSER
            self.logger.warning("Origin rejected", origin=origin)
            raise OriginNotAllowed("Origin not allowed")

        if authorization and authorization.startswith("Bearer ") and authorization[7:].strip():
            return CallerKind.NATIVE

        self.logger.warning("Request without origin or credential rejected")
        raise OriginNotAllowed("Origin or credential required")

    def check_request(self, request: Request) -> CallerKind:
        return self.classify(request.headers.get("Origin"), request.headers.get("Authorization"))
