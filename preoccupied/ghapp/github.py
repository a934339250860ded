"""
GitHub API client authenticating as a GitHub App installation.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, Optional, Union
from urllib.parse import quote

import httpx

from .app_token import AppTokenHolder
from .errors import (
    GitHubClientError, GraphQLQueryError, InstallationTokenError,
    RateLimitingError, graphql_error_message, is_changed_files_error,
    is_rate_limited, raise_for_status,
)
from .installation_token import InstallationTokenCache
from .queries import (
    BRANCHES_QUERY_WITH_CHANGED_FILES, BRANCHES_QUERY_WITHOUT_CHANGED_FILES,
    COMMITS_QUERY_WITH_CHANGED_FILES, COMMITS_QUERY_WITHOUT_CHANGED_FILES,
    VIEWER_REPOSITORY_COUNT_QUERY,
)
from .token import AuthToken, parse_timestamp


logger = logging.getLogger(__name__)


GITHUB_API_URL = 'https://api.github.com'

DEFAULT_TIMEOUT = 20.0

ACCEPT = 'application/vnd.github.v3+json'


@dataclass(frozen=True)
class InstallationId:
    """
    Identifies one installation of one GitHub App on one GitHub
    instance (github.com or a GitHub Enterprise server).
    """

    installation_id: int
    app_id: Optional[Union[str, int]] = None
    github_base_url: str = GITHUB_API_URL


@dataclass(frozen=True)
class Page:
    """
    One page of a paginated REST listing
    """

    response: httpx.Response
    has_next_page: bool

    def json(self) -> Any:
        return self.response.json()


def has_next_page(response: httpx.Response) -> bool:
    """
    True if the Link header advertises a rel="next" page
    """

    return 'rel="next"' in response.headers.get('link', '')


def _path(template: str, **params: Any) -> str:
    return template.format(**{k: quote(str(v), safe='/') for k, v in params.items()})


class InstallationTokenExchanger:
    """
    Trades app tokens for installation tokens. Its HTTP clients are
    its own, one per GitHub base URL, so a fetch shared through the
    InstallationTokenCache does not depend on the GitHubAppClient
    that happened to start it still being open.
    """

    def __init__(
            self,
            app_token_holder: AppTokenHolder,
            timeout: float = DEFAULT_TIMEOUT,
            transport: Optional[httpx.AsyncBaseTransport] = None):

        self.app_token_holder = app_token_holder
        self._timeout = timeout
        self._transport = transport
        self._clients: Dict[str, httpx.AsyncClient] = {}


    def _http(self, github_base_url: str) -> httpx.AsyncClient:
        client = self._clients.get(github_base_url)
        if client is None:
            client = self._clients[github_base_url] = httpx.AsyncClient(
                base_url=github_base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return client


    async def create_installation_token(
            self,
            github_base_url: str,
            installation_id: int) -> AuthToken:
        """
        Ask GitHub, as the app, for a new access token scoped to the
        given installation. Raises InstallationTokenError on any
        failure of the exchange.
        """

        url = _path('/app/installations/{installation_id}/access_tokens',
                    installation_id=installation_id)
        token = self.app_token_holder.get_app_token()
        headers = {
            'Accept': ACCEPT,
            'Authorization': f'Bearer {token.token}',
        }

        try:
            response = await self._http(github_base_url).post(url, headers=headers)
            response.raise_for_status()
            data = response.json()
            token = AuthToken(data['token'], parse_timestamp(data['expires_at']))

        # RuntimeError is what httpx raises once its client is closed
        except (httpx.HTTPError, KeyError, ValueError, AttributeError,
                TypeError, RuntimeError) as e:
            raise InstallationTokenError(
                f'Failed to create token for installation {installation_id}: {e}',
                installation_id) from e

        logger.info(f'New token for installation {installation_id} expires at {token.expires_at}')
        return token


    async def aclose(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()


class GitHubAppClient:
    """
    Calls the GitHub API on behalf of a single installation. Requests
    are authenticated either as the app itself, using the app token
    from the AppTokenHolder, or as the installation, using a token
    from the InstallationTokenCache that is minted on demand by the
    InstallationTokenExchanger.

    The holder, the cache and the exchanger are meant to be shared
    between all clients of the process; see GitHubAppContext. A client
    given no exchanger creates and closes its own.
    """

    def __init__(
            self,
            installation: InstallationId,
            app_token_holder: AppTokenHolder,
            installation_token_cache: InstallationTokenCache,
            timeout: float = DEFAULT_TIMEOUT,
            transport: Optional[httpx.AsyncBaseTransport] = None,
            token_exchanger: Optional[InstallationTokenExchanger] = None):

        if installation.app_id is not None and str(installation.app_id) != app_token_holder.app_id:
            raise ValueError(f'Installation {installation.installation_id} belongs to app'
                             f' {installation.app_id}, not app {app_token_holder.app_id}')

        self.installation = installation
        self.app_token_holder = app_token_holder
        self.installation_token_cache = installation_token_cache

        self._owns_exchanger = token_exchanger is None
        if token_exchanger is None:
            token_exchanger = InstallationTokenExchanger(app_token_holder, timeout, transport)
        self.token_exchanger = token_exchanger

        self._http = httpx.AsyncClient(
            base_url=installation.github_base_url,
            timeout=timeout,
            transport=transport,
        )


    async def __aenter__(self) -> 'GitHubAppClient':
        return self


    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


    async def aclose(self) -> None:
        await self._http.aclose()
        if self._owns_exchanger:
            await self.token_exchanger.aclose()


    def _app_authentication_headers(self) -> Dict[str, str]:
        token = self.app_token_holder.get_app_token()
        return {
            'Accept': ACCEPT,
            'Authorization': f'Bearer {token.token}',
        }


    async def _installation_authentication_headers(self) -> Dict[str, str]:
        # bound to the exchanger and base url only, never to this client
        fetch = partial(self.token_exchanger.create_installation_token,
                        self.installation.github_base_url)

        token = await self.installation_token_cache.get_installation_token(
            self.installation.installation_id, fetch)
        return {
            'Accept': ACCEPT,
            'Authorization': f'Bearer {token.token}',
        }


    async def _request(
            self,
            method: str,
            url: str,
            headers: Dict[str, str],
            **kwargs: Any) -> httpx.Response:

        try:
            response = await self._http.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            raise GitHubClientError(f'{method} {url} failed: {e}') from e

        return raise_for_status(response)


    async def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        headers = await self._installation_authentication_headers()
        return await self._request('GET', url, headers, params=params)


    async def _patch(self, url: str, body: Dict[str, Any]) -> httpx.Response:
        headers = await self._installation_authentication_headers()
        return await self._request('PATCH', url, headers, json=body)


    async def graphql(
            self,
            query: str,
            variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run a GraphQL query as the installation and return its data.

        Raises RateLimitingError if any of the returned errors is a
        rate limit, otherwise GraphQLQueryError if there were errors.
        """

        headers = await self._installation_authentication_headers()
        body: Dict[str, Any] = {'query': query}
        if variables:
            body['variables'] = {k: v for k, v in variables.items() if v is not None}

        response = await self._request('POST', '/graphql', headers, json=body)
        result = response.json()

        errors = result.get('errors')
        if errors:
            if is_rate_limited(errors):
                raise RateLimitingError(response)
            raise GraphQLQueryError(graphql_error_message(errors), errors, response)

        return result.get('data')


    async def _graphql_with_fallback(
            self,
            query: str,
            fallback: str,
            variables: Dict[str, Any],
            what: str) -> Dict[str, Any]:

        try:
            return await self.graphql(query, variables)
        except GraphQLQueryError as e:
            if not is_changed_files_error(e):
                raise

        logger.warning(f'Retrying {what} graphql query without changedFiles')
        return await self.graphql(fallback, variables)


    async def get_pull_requests(self, owner: str, repo: str, **params: Any) -> httpx.Response:
        """
        Lists pull requests for the given repository. params are passed
        through as query parameters, eg. state, per_page, page.
        """

        return await self._get(_path('/repos/{owner}/{repo}/pulls', owner=owner, repo=repo),
                               params)


    async def get_pull_request(self, owner: str, repo: str, pull_number: int) -> httpx.Response:
        return await self._get(_path('/repos/{owner}/{repo}/pulls/{pull_number}',
                                     owner=owner, repo=repo, pull_number=pull_number))


    async def get_pull_request_reviews(self, owner: str, repo: str, pull_number: int) -> httpx.Response:
        return await self._get(_path('/repos/{owner}/{repo}/pulls/{pull_number}/reviews',
                                     owner=owner, repo=repo, pull_number=pull_number))


    async def get_user_by_username(self, username: str) -> httpx.Response:
        return await self._get(_path('/users/{username}', username=username))


    async def get_commit(self, owner: str, repo: str, ref: str) -> httpx.Response:
        return await self._get(_path('/repos/{owner}/{repo}/commits/{ref}',
                                     owner=owner, repo=repo, ref=ref))


    async def compare_references(
            self,
            owner: str,
            repo: str,
            base_ref: str,
            head_ref: str) -> httpx.Response:

        return await self._get(_path('/repos/{owner}/{repo}/compare/{basehead}',
                                     owner=owner, repo=repo,
                                     basehead=f'{base_ref}...{head_ref}'))


    async def get_ref(self, owner: str, repo: str, ref: str) -> httpx.Response:
        """
        Returns a single git reference. ref must be in the form
        heads/<branch name> or tags/<tag name>
        """

        return await self._get(_path('/repos/{owner}/{repo}/git/ref/{ref}',
                                     owner=owner, repo=repo, ref=ref))


    async def get_repositories_page(self, page: int = 1, per_page: int = 100) -> Page:
        """
        One page of the repositories this installation can access
        """

        response = await self._get('/installation/repositories',
                                   {'per_page': per_page, 'page': page})
        return Page(response, has_next_page(response))


    async def get_installation(self, installation_id: int) -> httpx.Response:
        """
        Fetch installation details. This is an app endpoint, so it is
        authenticated with the app token rather than an installation
        token.
        """

        return await self._request(
            'GET',
            _path('/app/installations/{installation_id}', installation_id=installation_id),
            self._app_authentication_headers())


    async def list_deployments(
            self,
            owner: str,
            repo: str,
            environment: str,
            per_page: int) -> httpx.Response:

        return await self._get(_path('/repos/{owner}/{repo}/deployments', owner=owner, repo=repo),
                               {'environment': environment, 'per_page': per_page})


    async def list_deployment_statuses(
            self,
            owner: str,
            repo: str,
            deployment_id: int,
            per_page: int) -> httpx.Response:

        return await self._get(_path('/repos/{owner}/{repo}/deployments/{deployment_id}/statuses',
                                     owner=owner, repo=repo, deployment_id=deployment_id),
                               {'per_page': per_page})


    async def update_issue(self, owner: str, repo: str, issue_number: int, body: str) -> httpx.Response:
        return await self._patch(_path('/repos/{owner}/{repo}/issues/{issue_number}',
                                       owner=owner, repo=repo, issue_number=issue_number),
                                 {'body': body})


    async def update_issue_comment(self, owner: str, repo: str, comment_id: int, body: str) -> httpx.Response:
        return await self._patch(_path('/repos/{owner}/{repo}/issues/comments/{comment_id}',
                                       owner=owner, repo=repo, comment_id=comment_id),
                                 {'body': body})


    async def get_number_of_repos_for_installation(self) -> Optional[int]:
        data = await self.graphql(VIEWER_REPOSITORY_COUNT_QUERY)
        viewer = (data or {}).get('viewer') or {}
        return (viewer.get('repositories') or {}).get('totalCount')


    async def get_branches_page(
            self,
            owner: str,
            repo: str,
            per_page: int,
            cursor: Optional[str] = None) -> Dict[str, Any]:
        """
        One page of branches with their recent commits. If GitHub
        cannot compute changedFiles for the commits, the query is
        retried once without that field.
        """

        variables = {'owner': owner, 'repo': repo, 'per_page': per_page, 'cursor': cursor}
        return await self._graphql_with_fallback(
            BRANCHES_QUERY_WITH_CHANGED_FILES,
            BRANCHES_QUERY_WITHOUT_CHANGED_FILES,
            variables, 'branch')


    async def get_commits_page(
            self,
            owner: str,
            repo: str,
            per_page: Optional[int] = None,
            cursor: Optional[str] = None) -> Dict[str, Any]:
        """
        One page of commits on the default branch, retried once without
        changedFiles if GitHub cannot compute that field.
        """

        variables = {'owner': owner, 'repo': repo, 'per_page': per_page, 'cursor': cursor}
        return await self._graphql_with_fallback(
            COMMITS_QUERY_WITH_CHANGED_FILES,
            COMMITS_QUERY_WITHOUT_CHANGED_FILES,
            variables, 'commit')


# The end.
