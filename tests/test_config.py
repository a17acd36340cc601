import pytest
from pathlib import Path

from config.settings import ConfigurationError, Settings, load_settings


def test_load_settings_success(mock_env):
    """Test loading settings with valid environment variables."""
    settings = load_settings()

    assert isinstance(settings, Settings)
    assert settings.github.owner == "acme"
    assert settings.github.repo == "handbook"
    assert settings.github.token == "ghp_test_token"
    assert settings.github.branch == "main"
    assert settings.github.api_url == "https://api.github.com"
    assert settings.sync.commit_message == "Test sync"
    assert settings.sync.max_retries == 3
    assert settings.storage.database_path == Path("data/workspace.db")


def test_token_not_in_repr(mock_env):
    """Test the token is redacted everywhere settings are printed."""
    settings = load_settings()

    assert "ghp_test_token" not in repr(settings)
    assert "REDACTED" in repr(settings.github)


def test_load_settings_missing_token(mock_env, monkeypatch):
    """Test error when the GitHub token is missing."""
    monkeypatch.delenv("GITHUB_TOKEN")

    with pytest.raises(ConfigurationError, match="GITHUB_TOKEN is required"):
        load_settings()


def test_load_settings_missing_repo(mock_env, monkeypatch):
    """Test error when the repository is missing."""
    monkeypatch.delenv("GITHUB_REPO")

    with pytest.raises(ConfigurationError, match="GITHUB_REPO is required"):
        load_settings()


def test_load_settings_invalid_url(mock_env, monkeypatch):
    """Test error when the API URL is not HTTPS."""
    monkeypatch.setenv("GITHUB_API_URL", "http://insecure.test")

    with pytest.raises(ConfigurationError, match="must use HTTPS"):
        load_settings()


def test_load_settings_invalid_number(mock_env, monkeypatch):
    """Test malformed numbers are configuration errors."""
    monkeypatch.setenv("SYNC_MAX_RETRIES", "many")

    with pytest.raises(ConfigurationError, match="Failed to load configuration"):
        load_settings()


def test_env_file(mock_env, monkeypatch, tmp_path):
    """Test values from a .env file fill in unset variables only."""
    monkeypatch.delenv("GITHUB_TOKEN")
    env_file = tmp_path / "custom.env"
    env_file.write_text(
        "# local overrides\n"
        "GITHUB_TOKEN=\"from_file\"\n"
        "GITHUB_OWNER=ignored\n"
        "GITHUB_BRANCH='drafts'\n"
        "not a setting\n"
    )

    settings = load_settings(env_file=env_file)

    assert settings.github.token == "from_file"
    assert settings.github.owner == "acme"
    assert settings.github.branch == "drafts"
