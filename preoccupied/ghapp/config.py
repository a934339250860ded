"""
Configuration models and loading for the GitHub app client, plus the
context object that owns the process's token caches.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

import logging
import os
from typing import Any, Dict, Optional

import httpx
import yaml
from pydantic import BaseModel, Field

from .app_token import AppTokenHolder
from .github import (
    DEFAULT_TIMEOUT, GITHUB_API_URL, GitHubAppClient, InstallationId,
    InstallationTokenExchanger,
)
from .installation_token import DEFAULT_CACHE_SIZE, InstallationTokenCache
from .repository_id import transform_repository_id


logger = logging.getLogger(__name__)


CONFIG_PATH = os.environ.get('GHAPP_CONFIG_PATH', '/config/ghapp.yaml')


_config: Optional['AppConfig'] = None
_context: Optional['GitHubAppContext'] = None


class AppConfig(BaseModel):
    """
    GitHub App identity and client settings
    """

    github_app_id: Optional[str] = None
    github_private_key: Optional[str] = None
    github_keyfile: Optional[str] = None
    github_base_url: str = GITHUB_API_URL

    token_cache_size: int = Field(default=DEFAULT_CACHE_SIZE, ge=1)
    request_timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)

    transform_repository_ids: bool = False


    def private_key(self) -> str:
        """
        The PEM private key, read from github_keyfile if that is set.
        Keys passed through the environment often have their newlines
        escaped as a literal backslash-n, which is undone here.
        """

        if self.github_keyfile:
            with open(self.github_keyfile, 'r') as fk:
                return fk.read()

        if self.github_private_key:
            return self.github_private_key.replace('\\n', '\n')

        raise ValueError('github_private_key or github_keyfile must be set')


    def repository_id(self, repository_id: int, github_base_url: Optional[str] = None) -> str:
        return transform_repository_id(
            repository_id,
            github_base_url,
            enabled=self.transform_repository_ids)


class GitHubAppContext:
    """
    Owns the app token holder, installation token cache and token
    exchanger for one GitHub App, and builds clients that share them.
    Construct one per process (see get_context) or one per test, and
    aclose it when done.
    """

    def __init__(
            self,
            config: AppConfig,
            transport: Optional[httpx.AsyncBaseTransport] = None):

        if not config.github_app_id:
            raise ValueError('github_app_id must be set')

        self.config = config
        self.transport = transport
        self.app_token_holder = AppTokenHolder(config.github_app_id, config.private_key())
        self.installation_token_cache = InstallationTokenCache(config.token_cache_size)
        self.token_exchanger = InstallationTokenExchanger(
            self.app_token_holder,
            timeout=config.request_timeout,
            transport=transport)


    async def __aenter__(self) -> 'GitHubAppContext':
        return self


    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


    async def aclose(self) -> None:
        await self.token_exchanger.aclose()


    def client(
            self,
            installation_id: int,
            github_base_url: Optional[str] = None) -> GitHubAppClient:
        """
        A client acting as the given installation
        """

        installation = InstallationId(
            installation_id=installation_id,
            app_id=self.config.github_app_id,
            github_base_url=github_base_url or self.config.github_base_url)

        return GitHubAppClient(
            installation,
            self.app_token_holder,
            self.installation_token_cache,
            timeout=self.config.request_timeout,
            transport=self.transport,
            token_exchanger=self.token_exchanger)


def _config_from_env() -> Dict[str, Any]:
    """
    Build configuration dictionary from GHAPP_* environment variables.
    """

    config = {}
    pairs = (
        ('GHAPP_GITHUB_APP_ID', 'github_app_id'),
        ('GHAPP_GITHUB_PRIVATE_KEY', 'github_private_key'),
        ('GHAPP_GITHUB_KEYFILE', 'github_keyfile'),
        ('GHAPP_GITHUB_BASE_URL', 'github_base_url'),
        ('GHAPP_TOKEN_CACHE_SIZE', 'token_cache_size'),
        ('GHAPP_REQUEST_TIMEOUT', 'request_timeout'))

    for env_var, config_key in pairs:
        value = os.environ.get(env_var)
        if value is not None:
            config[config_key] = value

    return config


def get_config() -> AppConfig:
    """
    Get the global config object. Environment settings override those
    from the config file.
    """

    global _config

    if _config is None:
        env_config = _config_from_env()

        if os.path.exists(CONFIG_PATH):
            with open(CONFIG_PATH, 'r') as f:
                config_data = yaml.safe_load(f) or {}
            config_data.update(env_config)
        else:
            config_data = env_config

        _config = AppConfig.model_validate(config_data)
        logger.info(f'Loaded configuration for GitHub App {_config.github_app_id}')

    return _config


def get_context() -> GitHubAppContext:
    """
    Get the process-wide context, creating it from get_config() on
    first use.
    """

    global _context

    if _context is None:
        _context = GitHubAppContext(get_config())

    return _context


# The end.
