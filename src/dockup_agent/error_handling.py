"""Error taxonomy for DockUp Agent.

Every failure the agent raises derives from ``DockupError`` and carries an
``ErrorKind`` so the HTTP layer can pick a status code without knowing each
concrete class.
"""

import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ErrorKind(Enum):
    """Classification of agent failures."""

    CONFIGURATION = "configuration"  # Missing or invalid configuration
    AUTHENTICATION = "authentication"  # Bad signature or bearer secret
    LOOKUP = "lookup"  # Unknown app or unreadable git remote
    UPSTREAM = "upstream"  # GitHub API returned a non-success response
    UNSUPPORTED = "unsupported"  # Input shape the agent cannot handle
    PIPELINE = "pipeline"  # Deploy command exited non-zero
    TELEMETRY = "telemetry"  # Metrics delivery failed


class DockupError(Exception):
    """Base class for all agent errors."""

    kind: ErrorKind = ErrorKind.CONFIGURATION


class ConfigurationError(DockupError):
    kind = ErrorKind.CONFIGURATION


class GitHubAppNotConfiguredError(ConfigurationError):
    def __init__(self, message: str = "GitHub App not configured"):
        super().__init__(message)


class KeyParseError(ConfigurationError):
    """Raised when the GitHub App private key is not a usable RSA PEM key."""


class AuthenticationError(DockupError):
    kind = ErrorKind.AUTHENTICATION


class AppNotFoundError(DockupError, LookupError):
    kind = ErrorKind.LOOKUP

    def __init__(self, app_name: str):
        self.app_name = app_name
        super().__init__(f"App not found: {app_name}")


class RemoteLookupError(DockupError, LookupError):
    """Raised when the checkout's ``remote.origin.url`` cannot be read."""

    kind = ErrorKind.LOOKUP


class UpstreamError(DockupError):
    kind = ErrorKind.UPSTREAM

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(message)


class UpstreamAuthError(UpstreamError):
    """Raised when GitHub refuses to issue an installation token."""


class UnsupportedURLError(DockupError, ValueError):
    kind = ErrorKind.UNSUPPORTED

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"unsupported repository URL format: {url}")


class PipelineError(DockupError):
    """Raised when a deploy step exits non-zero.

    ``output`` holds the combined stdout/stderr of every step that ran,
    ``step`` names the step that failed.
    """

    kind = ErrorKind.PIPELINE

    def __init__(self, returncode: int, output: str, step: str = ""):
        self.returncode = returncode
        self.output = output
        self.step = step
        super().__init__(f"deploy step '{step}' exited with status {returncode}")


class TelemetryError(DockupError):
    kind = ErrorKind.TELEMETRY


_STATUS_BY_KIND = {
    ErrorKind.CONFIGURATION: 503,
    ErrorKind.AUTHENTICATION: 403,
    ErrorKind.LOOKUP: 404,
    ErrorKind.UPSTREAM: 502,
    ErrorKind.UNSUPPORTED: 400,
    ErrorKind.PIPELINE: 500,
    ErrorKind.TELEMETRY: 500,
}


def classify_error(error: Exception) -> Optional[ErrorKind]:
    """Return the ``ErrorKind`` of an agent error, or None for foreign errors."""
    if isinstance(error, DockupError):
        return error.kind
    return None


def http_status_for(error: Exception) -> int:
    """Map an exception to the HTTP status the agent answers with."""
    kind = classify_error(error)
    if kind is None:
        logger.debug(f"Unclassified error {type(error).__name__}: {error}")
        return 500
    return _STATUS_BY_KIND[kind]
