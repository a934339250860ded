"""
Shared pytest fixtures for ghapp tests.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from preoccupied.ghapp.app_token import AppTokenHolder
from preoccupied.ghapp.installation_token import InstallationTokenCache


APP_ID = '106838'
INSTALLATION_ID = 17979017


@pytest.fixture(scope='session')
def rsa_key():
    """
    A freshly generated RSA key, shared across the session since
    generating one is slow.
    """

    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope='session')
def private_key_pem(rsa_key):
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode('ascii')


@pytest.fixture(scope='session')
def public_key_pem(rsa_key):
    return rsa_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode('ascii')


@pytest.fixture
def app_token_holder(private_key_pem):
    return AppTokenHolder(APP_ID, private_key_pem)


@pytest.fixture
def installation_token_cache():
    return InstallationTokenCache(maxsize=1000)


@pytest.fixture
def mock_env_vars(monkeypatch):
    """
    Clear GHAPP_* environment variables for testing.
    """

    env_vars_to_clear = [
        'GHAPP_CONFIG_PATH',
        'GHAPP_GITHUB_APP_ID',
        'GHAPP_GITHUB_PRIVATE_KEY',
        'GHAPP_GITHUB_KEYFILE',
        'GHAPP_GITHUB_BASE_URL',
        'GHAPP_TOKEN_CACHE_SIZE',
        'GHAPP_REQUEST_TIMEOUT',
    ]

    for var in env_vars_to_clear:
        monkeypatch.delenv(var, raising=False)

    return monkeypatch


class FakeGitHub:
    """
    Records requests and answers them from a table of handlers keyed by
    (method, path). Handlers take the request and return a response.
    """

    def __init__(self):
        self.handlers = {}
        self.requests = []


    def on(self, method, path, handler):
        self.handlers[(method, path)] = handler


    def reply(self, method, path, status_code=200, json_body=None, headers=None):
        self.on(method, path, lambda request: httpx.Response(
            status_code, json=json_body, headers=headers))


    def requests_to(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]


    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.handlers.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={'message': 'Not Found'})
        return handler(request)


    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def fake_github():
    """
    A FakeGitHub that hands out installation tokens valid for an hour
    """

    fake = FakeGitHub()
    expires_at = datetime.now(timezone.utc) + timedelta(hours=1)
    fake.reply('POST', f'/app/installations/{INSTALLATION_ID}/access_tokens',
               status_code=201,
               json_body={
                   'token': 'installation token',
                   'expires_at': expires_at.strftime('%Y-%m-%dT%H:%M:%SZ'),
               })
    return fake


# The end.
