"""Tests for Dependabot Tracker configuration."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from dependabot_tracker.config import (
    ConfigError,
    TrackerConfig,
    generate_default_config,
)

ENV_VARS = ["PAT", "GITHUB_TOKEN", "GH_TOKEN", "GH_USERNAME", "GITHUB_ACCOUNT"]


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove credential variables and the gh CLI fallback."""
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(
        subprocess, "run", MagicMock(side_effect=FileNotFoundError("gh"))
    )
    return monkeypatch


class TestTrackerConfig:
    """Tests for TrackerConfig."""

    def test_default_config(self) -> None:
        """Test default configuration values."""
        config = TrackerConfig()

        assert config.github.api_url == "https://api.github.com"
        assert config.github.per_page == 100
        assert config.polling.max_concurrency == 4
        assert config.polling.max_transient_attempts == 3
        assert config.repositories == []

    def test_load_nonexistent(self) -> None:
        """Test loading from nonexistent file returns defaults."""
        config = TrackerConfig.load("/nonexistent/path/config.yaml")
        assert config.repositories == []

    def test_load_yaml(self, tmp_path: Path) -> None:
        """Test loading sections and repositories from YAML."""
        path = tmp_path / "tracker.yaml"
        path.write_text(
            "github:\n"
            "  account: octo\n"
            "polling:\n"
            "  interval_seconds: 60\n"
            "repositories:\n"
            "  - octo/hello\n"
            "  - world\n"
        )

        loaded = TrackerConfig.load(path)
        assert loaded.github.account == "octo"
        assert loaded.polling.interval_seconds == 60
        assert loaded.repositories == ["octo/hello", "world"]

    def test_load_json_repository_list(self, tmp_path: Path) -> None:
        """Test a bare JSON list of repositories loads as the registry."""
        path = tmp_path / "repositories.json"
        path.write_text(json.dumps([{"full_name": "octo/hello"}, {"full_name": "octo/world"}]))

        config = TrackerConfig.load(path)
        registry = config.build_registry("octo")
        assert [t.full_name for t in registry] == ["octo/hello", "octo/world"]

    def test_generated_default_config_loads(self, tmp_path: Path) -> None:
        """Test the default template parses."""
        path = tmp_path / "nested" / "dependabot-tracker.yaml"
        generate_default_config(path)

        assert path.exists()
        config = TrackerConfig.load(path)
        assert config.repositories == []
        assert config.polling.interval_seconds == 300

    @pytest.mark.parametrize(
        "content",
        ["polling: [unclosed", "polling:\n  max_concurrency: 0\n", "just a string\n"],
    )
    def test_load_invalid(self, tmp_path: Path, content: str) -> None:
        """Test malformed or out-of-range files raise ConfigError."""
        path = tmp_path / "tracker.yaml"
        path.write_text(content)
        with pytest.raises(ConfigError):
            TrackerConfig.load(path)

    def test_build_registry_invalid_entry(self) -> None:
        """Test unresolvable entries raise ConfigError."""
        config = TrackerConfig(repositories=["bare-name"])
        with patch.object(TrackerConfig, "get_account", return_value=None):
            with pytest.raises(ConfigError):
                config.build_registry()


class TestCredentials:
    """Tests for credential resolution."""

    def test_token_from_config(self, clean_env: pytest.MonkeyPatch) -> None:
        """Test getting token from config."""
        config = TrackerConfig()
        config.github.token = "test-token"

        assert config.get_github_token() == "test-token"

    def test_token_from_env(self, clean_env: pytest.MonkeyPatch) -> None:
        """Test getting token from environment."""
        clean_env.setenv("PAT", "env-token")
        assert TrackerConfig().get_github_token() == "env-token"

    def test_token_from_gh_cli(self, clean_env: pytest.MonkeyPatch) -> None:
        """Test falling back to gh auth token."""
        result = MagicMock(returncode=0, stdout="gh-token\n")
        clean_env.setattr(subprocess, "run", MagicMock(return_value=result))
        assert TrackerConfig().get_github_token() == "gh-token"

    def test_account_from_env(self, clean_env: pytest.MonkeyPatch) -> None:
        """Test getting account from environment."""
        clean_env.setenv("GH_USERNAME", "octo")
        assert TrackerConfig().get_account() == "octo"

    def test_get_credentials(self, clean_env: pytest.MonkeyPatch) -> None:
        """Test resolving both credentials."""
        clean_env.setenv("GITHUB_TOKEN", "tok")
        clean_env.setenv("GH_USERNAME", "octo")

        credentials = TrackerConfig().get_credentials()
        assert credentials.token == "tok"
        assert credentials.account == "octo"

    def test_missing_token(self, clean_env: pytest.MonkeyPatch) -> None:
        """Test missing token raises ConfigError."""
        clean_env.setenv("GH_USERNAME", "octo")
        with pytest.raises(ConfigError, match="token"):
            TrackerConfig().get_credentials()

    def test_missing_account(self, clean_env: pytest.MonkeyPatch) -> None:
        """Test missing account raises ConfigError."""
        clean_env.setenv("PAT", "tok")
        with pytest.raises(ConfigError, match="account"):
            TrackerConfig().get_credentials()
