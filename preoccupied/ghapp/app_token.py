"""
Signed GitHub App JWTs, cached until just before they expire.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

import logging
from datetime import timedelta
from typing import Optional, Union

import jwt

from .errors import SigningFailure
from .token import AuthToken, utcnow


logger = logging.getLogger(__name__)


# GitHub refuses app JWTs that live longer than ten minutes
APP_TOKEN_LIFETIME = timedelta(minutes=10)

# backdate iat to tolerate clock drift against GitHub
CLOCK_SKEW = timedelta(seconds=60)

ALGORITHM = 'RS256'


class AppTokenHolder:
    """
    Produces the app-level token for one GitHub App identity, reusing
    the cached token until it is about to expire.

    Signing is local and synchronous. Two flows that both find the
    cached token expired will each sign a valid token; the last one
    stored wins.
    """

    def __init__(self, app_id: Union[str, int], private_key: str):
        if not (app_id and private_key):
            raise ValueError('app_id and private_key must be set')

        self.app_id = str(app_id)
        self._private_key = private_key
        self._token: Optional[AuthToken] = None


    def get_app_token(self) -> AuthToken:
        """
        Return a valid app token, signing a fresh one if the cached
        token is missing or expired. Raises SigningFailure if the
        private key cannot be used.
        """

        now = utcnow()

        token = self._token
        if token is not None and not token.is_expired(now):
            return token

        token = self._token = self._sign(now)
        return token


    def _sign(self, now) -> AuthToken:
        expires_at = now + APP_TOKEN_LIFETIME
        payload = {
            'iat': int((now - CLOCK_SKEW).timestamp()),
            'exp': int(expires_at.timestamp()),
            'iss': self.app_id,
        }

        try:
            encoded = jwt.encode(payload, self._private_key, algorithm=ALGORITHM)
        except (jwt.PyJWTError, ValueError, TypeError, NotImplementedError) as e:
            raise SigningFailure(f'Unable to sign app token for app {self.app_id}: {e}') from e

        logger.debug(f'Signed new app token for app {self.app_id}, expires at {expires_at}')
        return AuthToken(encoded, expires_at.replace(microsecond=0))


    def __repr__(self) -> str:
        return f'AppTokenHolder(app_id={self.app_id!r})'


# The end.
