"""Tests for application configuration."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from contentsync.config import Settings


class TestSettings:
    def test_default_settings(self) -> None:
        s = Settings(_env_file=None)
        assert s.debug is False
        assert s.port == 8000
        assert s.content_branch == "main"
        assert s.content_root == "content"
        assert s.pandoc_mode == "server"
        assert s.words_per_minute == 200
        assert s.excerpt_max_length == 160

    def test_custom_settings(self) -> None:
        s = Settings(
            _env_file=None,
            github_repo_owner="acme",
            github_repo_name="site",
            sync_max_workers=2,
        )
        assert s.repository == "acme/site"
        assert s.sync_max_workers == 2

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GITHUB_REPO_OWNER", "env-owner")
        monkeypatch.setenv("PANDOC_MODE", "subprocess")
        s = Settings(_env_file=None)
        assert s.github_repo_owner == "env-owner"
        assert s.pandoc_mode == "subprocess"

    def test_settings_from_fixture(self, test_settings: Settings) -> None:
        assert test_settings.github_webhook_secret == "test-webhook-secret"
        assert test_settings.database_url.startswith("sqlite+aiosqlite:///")


class TestValidateRequired:
    def test_lists_every_missing_value(self) -> None:
        with pytest.raises(ValueError, match="Missing required configuration") as exc_info:
            Settings(_env_file=None).validate_required()
        message = str(exc_info.value)
        assert "GITHUB_WEBHOOK_SECRET" in message
        assert "GITHUB_REPO_OWNER" in message
        assert "GITHUB_REPO_NAME" in message

    def test_secret_optional_without_webhook(self) -> None:
        s = Settings(_env_file=None, github_repo_owner="acme", github_repo_name="site")
        s.validate_required(webhook=False)
        with pytest.raises(ValueError, match="GITHUB_WEBHOOK_SECRET"):
            s.validate_required()

    def test_complete_configuration(self, test_settings: Settings) -> None:
        test_settings.validate_required()


class TestCliEntry:
    def test_cli_entry_uses_app_settings(self) -> None:
        """cli_entry() should use the global app's settings, not create a new Settings()."""
        from contentsync.main import app, cli_entry

        original_settings = getattr(app.state, "settings", None)
        app.state.settings = Settings(_env_file=None, host="127.0.0.1", port=9999, debug=True)

        try:
            with patch("uvicorn.run") as mock_run:
                cli_entry()

            mock_run.assert_called_once_with(
                "contentsync.main:app",
                host="127.0.0.1",
                port=9999,
                reload=True,
            )
        finally:
            app.state.settings = original_settings
