"""Pydantic models for the agent's JSON configuration files"""

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..constants import DeployDefaults
from ..error_handling import AppNotFoundError, ConfigurationError

logger = logging.getLogger(__name__)


class AppRegistration(BaseModel):
    """Deployment settings of one registered application."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    path: str
    branch: str
    secret: str
    compose_file: str = DeployDefaults.COMPOSE_FILE

    @field_validator("name", "path", "branch", "secret")
    @classmethod
    def _required(cls, value: str, info) -> str:
        if not value or not value.strip():
            raise ValueError(f"{info.field_name} must not be empty")
        return value

    @field_validator("compose_file", mode="before")
    @classmethod
    def _default_compose_file(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DeployDefaults.COMPOSE_FILE
        return value


class GitHubAppCredential(BaseModel):
    model_config = ConfigDict(frozen=True)

    app_id: str
    installation_id: str
    private_key: str

    @field_validator("app_id", "installation_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("app_id", "installation_id", "private_key")
    @classmethod
    def _required(cls, value: str, info) -> str:
        if not value or not value.strip():
            raise ValueError(f"{info.field_name} must not be empty")
        return value

    def __repr__(self) -> str:
        return f"GitHubAppCredential(app_id={self.app_id!r}, installation_id={self.installation_id!r})"


class MetricsConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    webhook_url: str = Field(
        default="",
        validation_alias=AliasChoices("webhook_url", "n8n_webhook_url"),
    )
    vps_id: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def to_file_dict(self) -> Dict[str, str]:
        data = {"webhook_url": self.webhook_url}
        if self.vps_id:
            data["vps_id"] = self.vps_id
        return data


class Registry:
    """Immutable snapshot of registered applications keyed by name.

    A reload builds a new ``Registry`` and swaps it in whole; instances are
    never mutated after construction.
    """

    def __init__(self, apps: Optional[Mapping[str, AppRegistration]] = None):
        self._apps: Mapping[str, AppRegistration] = MappingProxyType(dict(apps or {}))

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "Registry":
        """Build a registry from the decoded ``registry.json`` object.

        Raises:
            ConfigurationError: If the document is not an object or an entry
                fails validation
        """
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ConfigurationError("registry must be a JSON object keyed by app name")

        apps: Dict[str, AppRegistration] = {}
        for name, entry in data.items():
            if not isinstance(entry, Mapping):
                raise ConfigurationError(f"registry entry for {name!r} must be an object")
            try:
                apps[name] = AppRegistration.model_validate({**entry, "name": name})
            except ValidationError as e:
                raise ConfigurationError(f"invalid registry entry for {name!r}: {e}") from e
        return cls(apps)

    @classmethod
    def load(cls, path: Path) -> "Registry":
        """Read and validate a registry file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            raise ConfigurationError(f"failed to open config file {path}: {e}") from e

        # An empty file is an empty registry
        if not text.strip():
            return cls()
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"failed to parse JSON config file {path}: {e}") from e
        return cls.from_mapping(data)

    def lookup(self, name: str) -> AppRegistration:
        try:
            return self._apps[name]
        except KeyError:
            raise AppNotFoundError(name) from None

    def get(self, name: str) -> Optional[AppRegistration]:
        return self._apps.get(name)

    @property
    def names(self) -> list[str]:
        return sorted(self._apps)

    def __contains__(self, name: object) -> bool:
        return name in self._apps

    def __iter__(self) -> Iterator[AppRegistration]:
        return iter(self._apps.values())

    def __len__(self) -> int:
        return len(self._apps)

    def __repr__(self) -> str:
        return f"Registry({self.names!r})"
