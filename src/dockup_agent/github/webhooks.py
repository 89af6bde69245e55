"""Push-webhook provisioning on GitHub repositories"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from ..constants import WebhookDefaults
from ..error_handling import UpstreamError
from .client import GitHubClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookResult:
    hook_id: int
    status: str  # "created" or "exists"

    @property
    def created(self) -> bool:
        return self.status == "created"


def _hook_payload(url: str, secret: str) -> dict:
    return {
        "name": WebhookDefaults.HOOK_NAME,
        "active": True,
        "events": list(WebhookDefaults.HOOK_EVENTS),
        "config": {
            "url": url,
            "content_type": "json",
            "secret": secret,
            "insecure_ssl": "0",
        },
    }


async def find_webhook(client: GitHubClient, repo: str, url: str) -> Optional[int]:
    """Return the id of the hook on ``repo`` that delivers to ``url``."""
    response = await client.get(f"/repos/{repo}/hooks")
    if response.status != 200:
        logger.debug(f"Listing hooks for {repo} returned {response.status}")
        return None

    try:
        hooks = response.json() or []
    except json.JSONDecodeError:
        return None
    if not isinstance(hooks, list):
        logger.debug(f"Listing hooks for {repo} returned a non-list body")
        return None

    for hook in hooks:
        if not isinstance(hook, dict):
            continue
        config = hook.get("config")
        if isinstance(config, dict) and config.get("url") == url:
            return hook.get("id")
    return None


async def create_push_webhook(client: GitHubClient, repo: str, url: str, secret: str) -> WebhookResult:
    """Create a push webhook, or find the existing one for the same URL.

    GitHub answers 422 (sometimes 400) when an identical hook exists; in that
    case the hooks are listed and matched by delivery URL.

    Raises:
        UpstreamError: With GitHub's status and body when neither path succeeds
    """
    response = await client.post(f"/repos/{repo}/hooks", json=_hook_payload(url, secret))

    if response.status == 201:
        try:
            hook_id = int(response.json()["id"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            hook_id = None
        if hook_id is not None:
            logger.info(f"✅ Webhook created for {repo} (ID: {hook_id})")
            return WebhookResult(hook_id=hook_id, status="created")

    if response.status in (400, 422):
        existing = await find_webhook(client, repo, url)
        if existing is not None:
            logger.info(f"✅ Webhook already exists for {repo} (ID: {existing})")
            return WebhookResult(hook_id=existing, status="exists")

    logger.error(f"❌ Failed to create webhook for {repo}: HTTP {response.status} - {response.body}")
    raise UpstreamError(
        f"GitHub API error (status {response.status}): {response.body}",
        status=response.status,
        body=response.body,
    )
