"""
Unit tests for the installation token cache.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from preoccupied.ghapp.installation_token import InstallationTokenCache
from preoccupied.ghapp.token import AuthToken


def valid_token(value='abc'):
    return AuthToken(value, datetime.now(timezone.utc) + timedelta(hours=1))


class TestInstallationTokenCache:
    """
    Tests for InstallationTokenCache.get_installation_token.
    """

    def test_maxsize_must_be_positive(self):
        """
        Test ValueError when maxsize is below one.
        """

        with pytest.raises(ValueError, match='maxsize must be at least 1'):
            InstallationTokenCache(0)

    @pytest.mark.asyncio
    async def test_fetches_on_miss_then_caches(self, installation_token_cache):
        """
        Test that a miss fetches and a second call hits the cache.
        """

        fetch = AsyncMock(return_value=valid_token())

        token1 = await installation_token_cache.get_installation_token(42, fetch)
        token2 = await installation_token_cache.get_installation_token(42, fetch)

        assert token1.token == 'abc'
        assert token2 is token1
        fetch.assert_awaited_once_with(42)
        assert 42 in installation_token_cache

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self, installation_token_cache):
        """
        Test that two calls made before either resolves cause exactly one
        fetch, and both see the same token.
        """

        calls = 0
        release = asyncio.Event()

        async def fetch(installation_id):
            nonlocal calls
            calls += 1
            await release.wait()
            return valid_token()

        first = asyncio.ensure_future(installation_token_cache.get_installation_token(42, fetch))
        second = asyncio.ensure_future(installation_token_cache.get_installation_token(42, fetch))
        await asyncio.sleep(0)

        release.set()
        token1, token2 = await asyncio.gather(first, second)

        assert calls == 1
        assert token1 is token2
        assert token1.token == 'abc'

    @pytest.mark.asyncio
    async def test_many_concurrent_callers(self, installation_token_cache):
        """
        Test that many concurrent callers cause one fetch.
        """

        fetch = AsyncMock(return_value=valid_token('many'))

        tokens = await asyncio.gather(*(
            installation_token_cache.get_installation_token(7, fetch)
            for _ in range(25)))

        assert fetch.await_count == 1
        assert {t.token for t in tokens} == {'many'}

    @pytest.mark.asyncio
    async def test_different_keys_fetch_separately(self, installation_token_cache):
        """
        Test that each installation id gets its own fetch.
        """

        async def fetch(installation_id):
            return valid_token(f'token-{installation_id}')

        token1, token2 = await asyncio.gather(
            installation_token_cache.get_installation_token(1, fetch),
            installation_token_cache.get_installation_token(2, fetch))

        assert token1.token == 'token-1'
        assert token2.token == 'token-2'
        assert len(installation_token_cache) == 2

    @pytest.mark.asyncio
    async def test_failure_reaches_all_waiters(self, installation_token_cache):
        """
        Test that a failed fetch is raised to every waiter and nothing is
        cached, so the next call fetches again.
        """

        fetch = AsyncMock(side_effect=RuntimeError('token exchange denied'))

        results = await asyncio.gather(
            installation_token_cache.get_installation_token(42, fetch),
            installation_token_cache.get_installation_token(42, fetch),
            installation_token_cache.get_installation_token(42, fetch),
            return_exceptions=True)

        assert fetch.await_count == 1
        assert all(isinstance(r, RuntimeError) for r in results)
        assert results[0] is results[1] is results[2]
        assert 42 not in installation_token_cache

        fetch.side_effect = None
        fetch.return_value = valid_token('retry')

        token = await installation_token_cache.get_installation_token(42, fetch)
        assert token.token == 'retry'
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_expired_token_is_refetched(self, installation_token_cache):
        """
        Test that a token inside the safety margin is fetched again.
        """

        expiring = AuthToken('old', datetime.now(timezone.utc) + timedelta(seconds=30))
        fetch = AsyncMock(side_effect=[expiring, valid_token('new')])

        token1 = await installation_token_cache.get_installation_token(42, fetch)
        token2 = await installation_token_cache.get_installation_token(42, fetch)

        assert token1.token == 'old'
        assert token2.token == 'new'
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_token_reused_until_margin(self, installation_token_cache):
        """
        Test that a token is reused until the safety margin is reached.
        """

        now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        fetch = AsyncMock(return_value=AuthToken('abc', now + timedelta(hours=1)))

        with patch('preoccupied.ghapp.installation_token.utcnow', return_value=now):
            await installation_token_cache.get_installation_token(42, fetch)

        with patch('preoccupied.ghapp.installation_token.utcnow',
                   return_value=now + timedelta(minutes=58)):
            await installation_token_cache.get_installation_token(42, fetch)
        assert fetch.await_count == 1

        with patch('preoccupied.ghapp.installation_token.utcnow',
                   return_value=now + timedelta(minutes=59)):
            await installation_token_cache.get_installation_token(42, fetch)
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_evicts_least_recently_used(self):
        """
        Test that the least recently used installation is evicted.
        """

        cache = InstallationTokenCache(maxsize=2)

        async def fetch(installation_id):
            return valid_token(f'token-{installation_id}')

        await cache.get_installation_token(1, fetch)
        await cache.get_installation_token(2, fetch)

        # touch 1 so that 2 becomes the least recently used
        await cache.get_installation_token(1, fetch)
        await cache.get_installation_token(3, fetch)

        assert len(cache) == 2
        assert 1 in cache
        assert 2 not in cache
        assert 3 in cache

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_fetch(self, installation_token_cache):
        """
        Test that a caller giving up still lets the fetch finish and
        populate the cache.
        """

        release = asyncio.Event()
        fetch_calls = 0

        async def fetch(installation_id):
            nonlocal fetch_calls
            fetch_calls += 1
            await release.wait()
            return valid_token('late')

        waiter = asyncio.ensure_future(installation_token_cache.get_installation_token(42, fetch))
        await asyncio.sleep(0)
        waiter.cancel()

        with pytest.raises(asyncio.CancelledError):
            await waiter

        release.set()
        token = await installation_token_cache.get_installation_token(42, fetch)

        assert token.token == 'late'
        assert fetch_calls == 1
        assert 42 in installation_token_cache

    @pytest.mark.asyncio
    async def test_invalidate(self, installation_token_cache):
        """
        Test that invalidate and clear drop cached tokens.
        """

        fetch = AsyncMock(return_value=valid_token())

        await installation_token_cache.get_installation_token(42, fetch)
        installation_token_cache.invalidate(42)
        assert 42 not in installation_token_cache

        await installation_token_cache.get_installation_token(42, fetch)
        assert fetch.await_count == 2

        installation_token_cache.clear()
        assert len(installation_token_cache) == 0


# The end.
