"""Constants module for DockUp Agent.

Constants are grouped in small classes so related values stay together and
every numeric value in the code has a name.

Usage examples:
    >>> from dockup_agent.constants import GitHubAPIDefaults, DeployDefaults
    >>>
    >>> GitHubAPIDefaults.BASE_URL
    'https://api.github.com'
    >>> DeployDefaults.COMPOSE_FILE
    'docker-compose.yml'
"""

from typing import Final

AGENT_VERSION: Final[str] = "1.0.0"


class ConfigPaths:
    """Default on-disk locations of the agent's JSON configuration files."""

    CONFIG_DIR: Final[str] = "/etc/dockup"
    REGISTRY: Final[str] = "/etc/dockup/registry.json"
    GITHUB_APP: Final[str] = "/etc/dockup/github-app.json"
    METRICS: Final[str] = "/etc/dockup/metrics.json"


class ServerDefaults:
    """HTTP listener defaults."""

    HOST: Final[str] = "0.0.0.0"
    PORT: Final[int] = 8080
    # How long shutdown waits for in-flight deploys before cancelling them
    SHUTDOWN_GRACE_SECONDS: Final[float] = 300.0


class GitHubAPIDefaults:
    """GitHub REST API configuration."""

    BASE_URL: Final[str] = "https://api.github.com"
    ACCEPT: Final[str] = "application/vnd.github+json"
    API_VERSION: Final[str] = "2022-11-28"
    USER_AGENT: Final[str] = f"DockUp-Agent/{AGENT_VERSION}"
    TIMEOUT_SECONDS: Final[float] = 10.0


class GitHubAppAuth:
    """GitHub App JWT and installation-token lifetimes."""

    JWT_CLOCK_SKEW_SECONDS: Final[int] = 60
    JWT_LIFETIME_SECONDS: Final[int] = 600
    TOKEN_SAFETY_MARGIN_SECONDS: Final[int] = 300
    TOKEN_URL_MARKER: Final[str] = "x-access-token:"


class WebhookDefaults:
    """Webhook signature and provisioning values."""

    SIGNATURE_HEADER: Final[str] = "X-Hub-Signature-256"
    SIGNATURE_PREFIX: Final[str] = "sha256="
    BRANCH_REF_PREFIX: Final[str] = "refs/heads/"
    HOOK_NAME: Final[str] = "web"
    HOOK_EVENTS: Final[tuple] = ("push",)


class DeployDefaults:
    """Deploy pipeline defaults."""

    COMPOSE_FILE: Final[str] = "docker-compose.yml"
    REMOTE_NAME: Final[str] = "origin"
    # Fixed estimate of manual effort avoided per successful deploy
    MINUTES_SAVED_PER_DEPLOY: Final[int] = 20


class MetricsDefaults:
    """Telemetry delivery settings."""

    TIMEOUT_SECONDS: Final[float] = 5.0
    WEBHOOK_URL_ENV: Final[str] = "DOCKUP_METRICS_WEBHOOK_URL"
    TIMESTAMP_FORMAT: Final[str] = "%Y-%m-%dT%H:%M:%SZ"


class HostIdentity:
    """Sources probed when generating a VPS id."""

    OS_RELEASE_PATH: Final[str] = "/etc/os-release"
    MEMINFO_PATH: Final[str] = "/proc/meminfo"
    METADATA_TIMEOUT_SECONDS: Final[float] = 1.0
    METADATA_URLS: Final[tuple] = (
        "http://169.254.169.254/hetzner/v1/metadata/datacenter",
        "http://169.254.169.254/metadata/v1/region",
        "http://169.254.169.254/latest/meta-data/placement/availability-zone",
    )
    HOSTNAME_LOCATION_HINTS: Final[tuple] = ("fsn", "nyc", "fra")


__all__ = [
    "AGENT_VERSION",
    "ConfigPaths",
    "ServerDefaults",
    "GitHubAPIDefaults",
    "GitHubAppAuth",
    "WebhookDefaults",
    "DeployDefaults",
    "MetricsDefaults",
    "HostIdentity",
]
