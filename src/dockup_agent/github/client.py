"""GitHub API client and authentication"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

import aiohttp

from ..constants import GitHubAPIDefaults
from ..error_handling import UpstreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GitHubResponse:
    """Status and body of a completed GitHub API call."""

    status: int
    body: str

    def json(self) -> Any:
        return json.loads(self.body) if self.body else None


@dataclass
class GitHubClient:
    """GitHub REST API client authenticating with a bearer token.

    The token is either a GitHub App JWT (for ``/app/...`` endpoints) or an
    installation token (for repository endpoints). The caller owns the
    session.
    """

    token: str
    session: aiohttp.ClientSession
    base_url: str = GitHubAPIDefaults.BASE_URL
    timeout: float = GitHubAPIDefaults.TIMEOUT_SECONDS

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": GitHubAPIDefaults.ACCEPT,
            "X-GitHub-Api-Version": GitHubAPIDefaults.API_VERSION,
            "User-Agent": GitHubAPIDefaults.USER_AGENT,
        }

    async def request(self, method: str, endpoint: str, **kwargs) -> GitHubResponse:
        """Send a request and read the whole body before releasing the connection.

        Raises:
            UpstreamError: On transport failures or timeouts
        """
        url = f"{self.base_url.rstrip('/')}/{endpoint.lstrip('/')}"
        try:
            async with self.session.request(
                method,
                url,
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                **kwargs,
            ) as response:
                body = await response.text()
                return GitHubResponse(status=response.status, body=body)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"GitHub {method} {endpoint} failed: {e!r}")
            raise UpstreamError(f"GitHub request {method} {endpoint} failed: {e!r}") from e

    async def get(self, endpoint: str, **kwargs) -> GitHubResponse:
        """Make GET request to GitHub API"""
        return await self.request("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, **kwargs) -> GitHubResponse:
        """Make POST request to GitHub API"""
        return await self.request("POST", endpoint, **kwargs)
