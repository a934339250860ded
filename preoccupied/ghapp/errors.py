"""
Exception kinds raised by the GitHub app token and client layers.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

from typing import Any, Dict, List, Optional

import httpx


class GitHubAppError(Exception):
    """
    Base for all errors raised by preoccupied.ghapp
    """


class SigningFailure(GitHubAppError):
    """
    The app JWT could not be signed, usually a malformed private key
    """


class InstallationTokenError(GitHubAppError):
    """
    Exchanging an app token for an installation token failed
    """

    def __init__(self, message: str, installation_id: int):
        super().__init__(message)
        self.installation_id = installation_id


class GitHubClientError(GitHubAppError):
    """
    A request to the GitHub API failed. ``status`` is None when no
    response was received at all.
    """

    def __init__(
            self,
            message: str,
            status: Optional[int] = None,
            response: Optional[httpx.Response] = None):

        super().__init__(message)
        self.status = status
        self.response = response


class RateLimitingError(GitHubClientError):
    """
    GitHub refused the request due to rate limiting. The original
    response is kept so callers may inspect the rate limit headers.
    """

    def __init__(self, response: httpx.Response):
        super().__init__('GitHub rate limit exceeded',
                         status=response.status_code,
                         response=response)


    @property
    def reset_at(self) -> Optional[int]:
        """
        Epoch seconds at which the rate limit resets, if GitHub said
        """

        value = self.response.headers.get('x-ratelimit-reset')
        return int(value) if value and value.isdigit() else None


    @property
    def retry_after(self) -> Optional[int]:
        value = self.response.headers.get('retry-after')
        return int(value) if value and value.isdigit() else None


class GraphQLQueryError(GitHubClientError):
    """
    A GraphQL response carried application-level errors
    """

    def __init__(self, message: str, errors: List[Dict[str, Any]],
                 response: Optional[httpx.Response] = None):

        super().__init__(message,
                         status=response.status_code if response is not None else None,
                         response=response)
        self.errors = errors


def graphql_error_message(errors: List[Dict[str, Any]]) -> str:
    """
    The first error's message, noting how many more there were
    """

    message = errors[0].get('message', 'Unknown GraphQL error')
    if len(errors) > 1:
        message += f' and {len(errors) - 1} more errors'
    return message


def is_rate_limited(errors: List[Dict[str, Any]]) -> bool:
    return any(err.get('type') == 'RATE_LIMITED' for err in errors)


def is_changed_files_error(err: BaseException) -> bool:
    """
    True if err is a GraphQL failure caused by GitHub giving up on
    computing the changedFiles field, which is worth retrying without
    that field.
    """

    if not isinstance(err, GraphQLQueryError):
        return False

    return any('changedFiles' in (e.get('message') or '') for e in err.errors)


def raise_for_status(response: httpx.Response) -> httpx.Response:
    """
    Normalize a failed REST response into GitHubClientError, or
    RateLimitingError when GitHub reports an exhausted rate limit.
    Returns the response unchanged on success.
    """

    status = response.status_code
    if status < 400:
        return response

    if status in (403, 429) and response.headers.get('x-ratelimit-remaining') == '0':
        raise RateLimitingError(response)

    reason = response.reason_phrase or 'error'
    try:
        detail = response.json().get('message')
    except (ValueError, AttributeError):
        detail = None

    message = f'GitHub returned {status} {reason} for {response.request.method} {response.request.url.path}'
    if detail:
        message = f'{message}: {detail}'

    raise GitHubClientError(message, status=status, response=response)


# The end.
