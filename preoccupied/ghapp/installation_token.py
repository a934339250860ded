"""
Installation access tokens, cached per installation id with concurrent
refreshes coalesced into a single fetch.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict

from cachetools import LRUCache

from .token import AuthToken, utcnow


logger = logging.getLogger(__name__)


DEFAULT_CACHE_SIZE = 1000


TokenFetcher = Callable[[int], Awaitable[AuthToken]]


class InstallationTokenCache:
    """
    Caches installation tokens keyed by installation id.

    Each key is in one of three states: absent, pending (a fetch task
    is registered in ``_pending``) or present (a token is held in the
    LRU cache). A pending task is registered in the same step that the
    miss is observed, with no await in between, so concurrent callers
    for one key always share a single fetch.
    """

    def __init__(self, maxsize: int = DEFAULT_CACHE_SIZE):
        if maxsize < 1:
            raise ValueError('maxsize must be at least 1')

        self._tokens: LRUCache = LRUCache(maxsize=maxsize)
        self._pending: Dict[int, asyncio.Future] = {}


    @property
    def maxsize(self) -> int:
        return self._tokens.maxsize


    async def get_installation_token(
            self,
            installation_id: int,
            fetch: TokenFetcher) -> AuthToken:
        """
        Return a valid token for installation_id. On a miss or an
        expired entry, ``fetch(installation_id)`` is invoked, unless a
        fetch for the same id is already in flight, in which case that
        fetch is awaited instead. A failed fetch raises its exception
        to every waiter and caches nothing.
        """

        token = self._tokens.get(installation_id)
        if token is not None and not token.is_expired(utcnow()):
            logger.debug(f'Using cached token for installation {installation_id}')
            return token

        pending = self._pending.get(installation_id)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch(installation_id, fetch))
            pending.add_done_callback(self._fetch_done)
            self._pending[installation_id] = pending
        else:
            logger.debug(f'Joining in-flight token fetch for installation {installation_id}')

        # shielded, so a waiter that gives up does not cancel the fetch
        # for everyone else
        return await asyncio.shield(pending)


    async def _fetch(self, installation_id: int, fetch: TokenFetcher) -> AuthToken:
        try:
            token = await fetch(installation_id)
            self._tokens[installation_id] = token
            logger.debug(f'Cached new token for installation {installation_id}, expires at {token.expires_at}')
            return token

        finally:
            self._pending.pop(installation_id, None)


    @staticmethod
    def _fetch_done(task: asyncio.Future) -> None:
        # retrieve the exception so a failure with no remaining waiters
        # doesn't get reported as never retrieved
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f'Installation token fetch failed: {task.exception()!r}')


    def invalidate(self, installation_id: int) -> None:
        """
        Forget any cached token for installation_id, eg. after GitHub
        rejected it. An in-flight fetch is left alone.
        """

        self._tokens.pop(installation_id, None)


    def clear(self) -> None:
        self._tokens.clear()


    def __contains__(self, installation_id: int) -> bool:
        return installation_id in self._tokens


    def __len__(self) -> int:
        return len(self._tokens)


# The end.
