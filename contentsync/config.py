"""Application configuration loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Content sync engine settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/contentsync.db"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # GitHub
    github_webhook_secret: str = ""
    github_token: str = ""
    github_repo_owner: str = ""
    github_repo_name: str = ""
    github_api_url: str = "https://api.github.com"
    fetch_timeout_seconds: float = Field(default=10.0, gt=0)

    # Content layout
    content_branch: str = "main"
    content_root: str = "content"
    content_extension: str = ".md"

    # Derived fields
    words_per_minute: int = Field(default=200, ge=1)
    excerpt_max_length: int = Field(default=160, ge=1)

    # Sync
    sync_max_workers: int = Field(default=8, ge=1, le=64)

    # Rendering
    pandoc_mode: Literal["server", "subprocess"] = "server"
    pandoc_port: int = Field(default=3031, ge=1, le=65535)
    pandoc_timeout_seconds: int = Field(default=10, ge=1)

    @property
    def repository(self) -> str:
        """``owner/name`` of the content repository."""
        return f"{self.github_repo_owner}/{self.github_repo_name}"

    def validate_required(self, *, webhook: bool = True) -> None:
        """Fail fast when values the sync engine cannot run without are missing.

        The webhook secret is only required when serving webhooks.
        """
        missing: list[str] = []
        if webhook and not self.github_webhook_secret:
            missing.append("GITHUB_WEBHOOK_SECRET")
        if not self.github_repo_owner:
            missing.append("GITHUB_REPO_OWNER")
        if not self.github_repo_name:
            missing.append("GITHUB_REPO_NAME")

        if missing:
            joined = ", ".join(missing)
            raise ValueError(f"Missing required configuration: {joined}")
