"""
Repository ids that stay unique across GitHub instances.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

import re
from typing import Optional
from urllib.parse import urlparse


GITHUB_CLOUD_BASE_URL = 'https://github.com'

# downstream repository ids are limited to 1024 characters
PREFIX_LIMIT = 512

_STRIP = re.compile(r'[\W_]', re.ASCII)


def _prefix(url: str) -> str:
    # host rather than hostname, so servers on different ports differ,
    # and the path in case a proxy routes to servers by path. Scheme and
    # query are dropped.
    parsed = urlparse(url)
    cleaned = _STRIP.sub('', (parsed.netloc + parsed.path).lower())
    return cleaned.encode('utf-8').hex()[:PREFIX_LIMIT]


def transform_repository_id(
        repository_id: int,
        github_base_url: Optional[str] = None,
        enabled: bool = True) -> str:
    """
    Repository ids from github.com are returned as-is. Ids from any
    other GitHub instance are prefixed with a hex digest of that
    instance's URL, so that the same numeric id on two servers never
    collides.
    """

    if not enabled or not github_base_url:
        return str(repository_id)

    prefix = _prefix(github_base_url)
    if prefix == _prefix(GITHUB_CLOUD_BASE_URL):
        return str(repository_id)

    return f'{prefix}-{repository_id}'


# The end.
