"""GitHub integration for DockUp Agent"""

from .auth import (
    CachedInstallationToken,
    CredentialBroker,
    TokenCache,
    embed_token,
    normalize_github_url,
    redact_token_url,
)
from .client import GitHubClient, GitHubResponse
from .models import CreateWebhookRequest, InstallationToken, PushEvent
from .webhooks import WebhookResult, create_push_webhook, find_webhook

__all__ = [
    "GitHubClient",
    "GitHubResponse",
    # App authentication
    "CredentialBroker",
    "CachedInstallationToken",
    "TokenCache",
    "embed_token",
    "normalize_github_url",
    "redact_token_url",
    # Webhook provisioning
    "WebhookResult",
    "create_push_webhook",
    "find_webhook",
    # Models
    "CreateWebhookRequest",
    "InstallationToken",
    "PushEvent",
]
