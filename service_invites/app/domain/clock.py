"""
Time source for token expiry and bucket refill.
"""

from datetime import datetime, timezone


class Clock:
    """Wall clock in UTC. Replace with a controllable subclass in tests."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def timestamp(self) -> float:
        return self.now().timestamp()
