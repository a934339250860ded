"""
Bearer token value object shared by the app and installation token caches.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional


# tokens count as expired this long before their literal expiry
TOKEN_EXPIRY_MARGIN = timedelta(minutes=1)


def utcnow() -> datetime:
    """
    The current time as a timezone-aware UTC datetime.
    """

    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO 8601 timestamp as returned by GitHub, eg.
    ``2024-01-01T12:00:00Z``
    """

    return _as_utc(datetime.fromisoformat(value.replace('Z', '+00:00')))


def _as_utc(when: datetime) -> datetime:
    if when.tzinfo is None:
        return when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc)


@dataclass(frozen=True)
class AuthToken:
    """
    An opaque bearer token and the instant at which it expires. Never
    mutated; an expired token is replaced, not refreshed in place.
    """

    token: str
    expires_at: datetime

    def __post_init__(self):
        # frozen, so normalize via object.__setattr__
        object.__setattr__(self, 'expires_at', _as_utc(self.expires_at))


    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """
        True if the token expires within TOKEN_EXPIRY_MARGIN of now
        """

        if now is None:
            now = utcnow()
        return _as_utc(now) + TOKEN_EXPIRY_MARGIN >= self.expires_at


    def __repr__(self) -> str:
        # keep the secret out of logs and tracebacks
        return f'AuthToken(token=<redacted>, expires_at={self.expires_at.isoformat()})'


# The end.
