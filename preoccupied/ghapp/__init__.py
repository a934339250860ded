"""
GitHub App authentication and API client with cached, coalesced
token refresh.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

from preoccupied.ghapp.app_token import AppTokenHolder
from preoccupied.ghapp.config import AppConfig, GitHubAppContext, get_config, get_context
from preoccupied.ghapp.errors import (
    GitHubAppError, GitHubClientError, GraphQLQueryError,
    InstallationTokenError, RateLimitingError, SigningFailure,
)
from preoccupied.ghapp.github import (
    GitHubAppClient, InstallationId, InstallationTokenExchanger, Page,
)
from preoccupied.ghapp.installation_token import InstallationTokenCache
from preoccupied.ghapp.token import AuthToken


__all__ = [
    'AppConfig', 'AppTokenHolder', 'AuthToken', 'GitHubAppClient',
    'GitHubAppContext', 'GitHubAppError', 'GitHubClientError',
    'GraphQLQueryError', 'InstallationId', 'InstallationTokenCache',
    'InstallationTokenError', 'InstallationTokenExchanger', 'Page',
    'RateLimitingError', 'SigningFailure', 'get_config', 'get_context',
]


# The end.
