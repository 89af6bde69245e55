"""Configuration module for DockUp Agent.

Configuration is read from three JSON files:

    registry.json      required; ``{"<app>": {"path", "branch", "secret", "compose_file"?}}``
    github-app.json    optional; ``{"app_id", "installation_id", "private_key"}``
    metrics.json       optional; ``{"webhook_url", "vps_id"?}``

Each file is validated by a pydantic model and held in its own ``Guarded``
snapshot inside a ``ConfigStore``. ``ConfigStore.reload()`` swaps every
snapshot wholesale, so a deploy that captured an ``AppRegistration`` keeps
working with the values it started with.

Usage examples:
    >>> from dockup_agent.configuration import ConfigStore
    >>>
    >>> store = ConfigStore(registry_path=Path("registry.json"))
    >>> await store.load()
    >>> store.registry.lookup("my-app").branch
    'main'
"""

from .models import AppRegistration, GitHubAppCredential, MetricsConfig, Registry
from .store import ConfigStore, Guarded, ReloadSummary
from .vps import generate_vps_id

__all__ = [
    "AppRegistration",
    "GitHubAppCredential",
    "MetricsConfig",
    "Registry",
    "ConfigStore",
    "Guarded",
    "ReloadSummary",
    "generate_vps_id",
]
