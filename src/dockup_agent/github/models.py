"""Pydantic models for GitHub payloads handled by the agent"""

from datetime import datetime

from pydantic import BaseModel, Field


class Repository(BaseModel):
    name: str = ""


class PushEvent(BaseModel):
    """The subset of a GitHub ``push`` webhook payload the agent reads."""

    ref: str = ""
    repository: Repository = Field(default_factory=Repository)


class CreateWebhookRequest(BaseModel):
    repo: str = ""  # owner/repo
    url: str = ""
    secret: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.repo and self.url and self.secret)


class InstallationToken(BaseModel):
    """Response of ``POST /app/installations/{id}/access_tokens``."""

    token: str
    expires_at: datetime
