"""GitHub App authentication: JWT minting, installation-token cache, URL rewriting.

The broker moves through ``Unconfigured -> Minting -> Cached -> Minting``:
with no credential every call fails with ``GitHubAppNotConfiguredError``; a
cached token is served until its (margin-adjusted) expiry; after that the
next caller mints a new one. Callers racing on an expired cache may each mint
a token. Every minted token is valid on its own, so the last write wins.
"""

import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Tuple

import aiohttp
import jwt
from pydantic import ValidationError

from ..configuration.models import GitHubAppCredential
from ..constants import GitHubAPIDefaults, GitHubAppAuth
from ..error_handling import (
    GitHubAppNotConfiguredError,
    UnsupportedURLError,
    UpstreamAuthError,
    UpstreamError,
)
from ..security import load_rsa_private_key
from .client import GitHubClient, GitHubResponse
from .models import InstallationToken

logger = logging.getLogger(__name__)

_SSH_PREFIX = "git@github.com:"
_HTTPS_PREFIX = "https://github.com/"
_HTTP_PREFIX = "http://github.com/"
_TOKEN_IN_URL = re.compile(r"x-access-token:[^@\s]+@")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def redact_token_url(text: str) -> str:
    """Mask any installation token embedded in ``text``."""
    return _TOKEN_IN_URL.sub("x-access-token:***@", text)


def normalize_github_url(repo_url: str) -> str:
    """Reduce a GitHub remote URL to ``https://github.com/owner/repo`` form.

    SSH remotes are converted, credentials embedded in HTTPS remotes are
    dropped and plain http is upgraded.

    Raises:
        UnsupportedURLError: For anything that is not a github.com remote
    """
    url = repo_url
    if url.startswith(_SSH_PREFIX):
        url = _HTTPS_PREFIX + url[len(_SSH_PREFIX):]

    if url.startswith("https://") and "@github.com" in url:
        url = "https://github.com" + url.split("@github.com", 1)[1]

    if url.startswith(_HTTPS_PREFIX):
        return url
    if url.startswith(_HTTP_PREFIX):
        return _HTTPS_PREFIX + url[len(_HTTP_PREFIX):]
    raise UnsupportedURLError(repo_url)


def embed_token(repo_url: str, token: str) -> str:
    """Return ``repo_url`` rewritten to authenticate with ``token``."""
    path = normalize_github_url(repo_url)[len(_HTTPS_PREFIX):]
    return f"https://{GitHubAppAuth.TOKEN_URL_MARKER}{token}@github.com/{path}"


@dataclass(frozen=True)
class CachedInstallationToken:
    token: str
    expires_at: datetime
    # (app_id, installation_id) the token was minted for
    owner: Tuple[str, str]

    def is_valid(self, now: datetime, owner: Tuple[str, str]) -> bool:
        return self.owner == owner and now < self.expires_at


class TokenCache:
    """Holds at most one installation token."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entry: Optional[CachedInstallationToken] = None

    def get(self, now: datetime, owner: Tuple[str, str]) -> Optional[str]:
        with self._lock:
            entry = self._entry
        if entry is not None and entry.is_valid(now, owner):
            return entry.token
        return None

    def store(self, entry: CachedInstallationToken) -> None:
        with self._lock:
            self._entry = entry

    def clear(self) -> None:
        with self._lock:
            self._entry = None

    @property
    def entry(self) -> Optional[CachedInstallationToken]:
        with self._lock:
            return self._entry


class CredentialBroker:
    """Mints and caches GitHub App installation tokens.

    Args:
        credentials: Returns the current GitHub App credential snapshot, or
            None when the app is not configured
        session: Shared aiohttp session; a short-lived one is opened per
            request when omitted
        base_url: GitHub API root
        clock: Source of the current UTC time
    """

    def __init__(
        self,
        credentials: Callable[[], Optional[GitHubAppCredential]],
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = GitHubAPIDefaults.BASE_URL,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._credentials = credentials
        self.session = session
        self.base_url = base_url
        self._clock = clock
        self.cache = TokenCache()

    @property
    def is_configured(self) -> bool:
        return self._credentials() is not None

    def invalidate(self) -> None:
        self.cache.clear()

    def _require_credential(self) -> GitHubAppCredential:
        credential = self._credentials()
        if credential is None:
            raise GitHubAppNotConfiguredError()
        return credential

    def mint_jwt(self, credential: GitHubAppCredential, now: Optional[datetime] = None) -> str:
        """Sign an app JWT valid for ten minutes, backdated for clock skew.

        Raises:
            KeyParseError: If the private key is not an RSA PEM key
        """
        now = now or self._clock()
        key = load_rsa_private_key(credential.private_key)
        claims = {
            "iat": int((now - timedelta(seconds=GitHubAppAuth.JWT_CLOCK_SKEW_SECONDS)).timestamp()),
            "exp": int((now + timedelta(seconds=GitHubAppAuth.JWT_LIFETIME_SECONDS)).timestamp()),
            "iss": credential.app_id,
        }
        return jwt.encode(claims, key, algorithm="RS256")

    async def _request_installation_token(self, app_jwt: str, installation_id: str) -> GitHubResponse:
        endpoint = f"/app/installations/{installation_id}/access_tokens"
        if self.session is not None:
            client = GitHubClient(token=app_jwt, session=self.session, base_url=self.base_url)
            return await client.post(endpoint)
        async with aiohttp.ClientSession() as session:
            client = GitHubClient(token=app_jwt, session=session, base_url=self.base_url)
            return await client.post(endpoint)

    async def get_installation_token(self) -> str:
        """Return a valid installation token, minting one when the cache is stale.

        Raises:
            GitHubAppNotConfiguredError: If no credential is configured
            KeyParseError: If the private key cannot be used
            UpstreamAuthError: If GitHub does not answer 201 with a token
        """
        credential = self._require_credential()
        owner = (credential.app_id, credential.installation_id)
        now = self._clock()

        cached = self.cache.get(now, owner)
        if cached is not None:
            return cached

        app_jwt = self.mint_jwt(credential, now)
        try:
            response = await self._request_installation_token(app_jwt, credential.installation_id)
        except UpstreamError as e:
            raise UpstreamAuthError(f"failed to request token: {e}") from e

        if response.status != 201:
            raise UpstreamAuthError(
                f"GitHub API error (status {response.status}): {response.body}",
                status=response.status,
                body=response.body,
            )

        try:
            issued = InstallationToken.model_validate_json(response.body)
        except ValidationError as e:
            raise UpstreamAuthError(
                f"failed to decode token response: {e}", status=response.status, body=response.body
            ) from e

        expires_at = issued.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        expires_at -= timedelta(seconds=GitHubAppAuth.TOKEN_SAFETY_MARGIN_SECONDS)

        self.cache.store(CachedInstallationToken(token=issued.token, expires_at=expires_at, owner=owner))
        logger.info(f"🔑 Installation token refreshed for App ID {credential.app_id}, cached until {expires_at.isoformat()}")
        return issued.token

    async def get_github_token_url(self, repo_url: str) -> str:
        """Rewrite a repository URL to carry an installation token.

        URLs that already contain ``x-access-token:`` are returned unchanged.

        Raises:
            UnsupportedURLError: For remotes that are not on github.com
            GitHubAppNotConfiguredError, KeyParseError, UpstreamAuthError:
                As raised by ``get_installation_token``
        """
        if GitHubAppAuth.TOKEN_URL_MARKER in repo_url:
            return repo_url

        normalize_github_url(repo_url)
        token = await self.get_installation_token()
        return embed_token(repo_url, token)
