"""Reloadable configuration snapshots shared by the agent's components"""

import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Generic, Mapping, Optional, TypeVar

from pydantic import ValidationError

from ..constants import ConfigPaths, MetricsDefaults
from ..error_handling import ConfigurationError, KeyParseError
from ..security import load_rsa_private_key
from .models import GitHubAppCredential, MetricsConfig, Registry
from .vps import generate_vps_id

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Guarded(Generic[T]):
    """Holds one immutable snapshot; writers swap it whole under a lock.

    Readers take the lock only long enough to copy the reference, so a
    reader sees either the previous snapshot or the new one, never a mix.
    """

    def __init__(self, value: T):
        self._lock = threading.Lock()
        self._value = value

    def get(self) -> T:
        with self._lock:
            return self._value

    def replace(self, value: T) -> T:
        """Install ``value`` and return the snapshot it replaced."""
        with self._lock:
            previous = self._value
            self._value = value
            return previous


@dataclass(frozen=True)
class ReloadSummary:
    app_count: int
    github_app_id: Optional[str]
    metrics_enabled: bool
    vps_id: Optional[str]


class ConfigStore:
    """Explicitly owned configuration handle with a ``load``/``reload`` lifecycle.

    The registry, the GitHub App credential and the metrics target live in
    independent ``Guarded`` holders. Each reload reads all three files and
    replaces each snapshot wholesale.
    """

    def __init__(
        self,
        registry_path: Path = Path(ConfigPaths.REGISTRY),
        github_app_path: Path = Path(ConfigPaths.GITHUB_APP),
        metrics_path: Path = Path(ConfigPaths.METRICS),
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.registry_path = Path(registry_path)
        self.github_app_path = Path(github_app_path)
        self.metrics_path = Path(metrics_path)
        self._environ = environ if environ is not None else os.environ
        self._registry: Guarded[Registry] = Guarded(Registry())
        self._github_app: Guarded[Optional[GitHubAppCredential]] = Guarded(None)
        self._metrics: Guarded[Optional[MetricsConfig]] = Guarded(None)

    @property
    def registry(self) -> Registry:
        return self._registry.get()

    @property
    def github_app(self) -> Optional[GitHubAppCredential]:
        return self._github_app.get()

    @property
    def metrics(self) -> Optional[MetricsConfig]:
        return self._metrics.get()

    def set_registry(self, registry: Registry) -> None:
        self._registry.replace(registry)

    def set_github_app(self, credential: Optional[GitHubAppCredential]) -> None:
        self._github_app.replace(credential)

    def set_metrics(self, config: Optional[MetricsConfig]) -> None:
        self._metrics.replace(config)

    def load_registry(self) -> Registry:
        """Read the registry file and install it.

        Raises:
            ConfigurationError: If the file is missing or invalid; the
                current snapshot is left in place
        """
        registry = Registry.load(self.registry_path)
        self._registry.replace(registry)
        return registry

    def load_github_app(self) -> Optional[GitHubAppCredential]:
        """Read the optional GitHub App credential file.

        A missing, unparseable or incomplete file, or a key that is not an
        RSA PEM key, leaves the agent without GitHub App credentials.
        """
        credential = self._read_github_app()
        self._github_app.replace(credential)
        return credential

    def _read_github_app(self) -> Optional[GitHubAppCredential]:
        try:
            with open(self.github_app_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"⚠️  Failed to parse GitHub App config: {e}")
            return None

        try:
            credential = GitHubAppCredential.model_validate(data)
        except ValidationError as e:
            logger.warning(f"⚠️  GitHub App config incomplete: {e.error_count()} invalid field(s)")
            return None

        try:
            load_rsa_private_key(credential.private_key)
        except KeyParseError as e:
            logger.warning(f"⚠️  GitHub App private key rejected: {e}")
            return None
        return credential

    async def load_metrics(self) -> Optional[MetricsConfig]:
        """Read the metrics config, creating or completing it when possible.

        A missing file is created when ``DOCKUP_METRICS_WEBHOOK_URL`` is set;
        a missing ``vps_id`` is generated and written back.
        """
        config = await self._read_metrics()
        self._metrics.replace(config)
        return config

    async def _read_metrics(self) -> Optional[MetricsConfig]:
        env_url = self._environ.get(MetricsDefaults.WEBHOOK_URL_ENV, "").strip()

        try:
            with open(self.metrics_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            if not env_url:
                logger.debug("Metrics not configured, telemetry disabled")
                return None
            config = MetricsConfig(webhook_url=env_url, vps_id=await generate_vps_id())
            if self._write_metrics(config):
                logger.info(f"📊 Metrics tracking auto-configured (VPS ID: {config.vps_id})")
            return config
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"⚠️  Failed to parse metrics config: {e}")
            return None

        try:
            config = MetricsConfig.model_validate(data or {})
        except ValidationError as e:
            logger.warning(f"⚠️  Invalid metrics config: {e}")
            return None

        if not config.webhook_url and env_url:
            config = config.model_copy(update={"webhook_url": env_url})
        if not config.enabled:
            logger.info("Metrics webhook URL not set, telemetry disabled")
            return None

        if not config.vps_id:
            config = config.model_copy(update={"vps_id": await generate_vps_id()})
            if self._write_metrics(config):
                logger.info("💾 Saved auto-generated VPS ID to config")

        logger.info(f"📊 Metrics tracking enabled (VPS ID: {config.vps_id})")
        return config

    def _write_metrics(self, config: MetricsConfig) -> bool:
        try:
            self.metrics_path.parent.mkdir(parents=True, exist_ok=True)
            self.metrics_path.write_text(json.dumps(config.to_file_dict(), indent=2), encoding="utf-8")
            os.chmod(self.metrics_path, 0o600)
        except OSError as e:
            logger.warning(f"⚠️  Failed to write metrics config {self.metrics_path}: {e}")
            return False
        return True

    async def load(self) -> ReloadSummary:
        """Load every configuration block.

        Raises:
            ConfigurationError: If the registry cannot be loaded
        """
        registry = self.load_registry()
        credential = self.load_github_app()
        metrics = await self.load_metrics()
        return ReloadSummary(
            app_count=len(registry),
            github_app_id=credential.app_id if credential else None,
            metrics_enabled=metrics is not None,
            vps_id=metrics.vps_id if metrics else None,
        )

    async def reload(self) -> ReloadSummary:
        """Reload all configuration; a registry failure keeps the old snapshots."""
        try:
            summary = await self.load()
        except ConfigurationError as e:
            logger.error(f"❌ Failed to reload config: {e}")
            raise

        if summary.github_app_id:
            logger.info(f"✅ GitHub App config reloaded (App ID: {summary.github_app_id})")
        else:
            logger.warning("⚠️  GitHub App config not found or invalid")
        if summary.metrics_enabled:
            logger.info(f"✅ Metrics config reloaded (VPS ID: {summary.vps_id})")
        logger.info(f"♻️  Registry reloaded, now watching {summary.app_count} apps")
        return summary
