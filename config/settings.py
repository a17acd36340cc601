"""
Configuration settings with environment variable loading.

The GitHub token MUST be provided via environment variables.
Never log or expose tokens in any output.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


@dataclass(frozen=True)
class GitHubConfig:
    """Remote repository configuration."""
    owner: str
    repo: str
    token: str
    branch: str = "main"
    api_url: str = "https://api.github.com"
    workspace_path: str = ""

    def __post_init__(self):
        if not self.token:
            raise ConfigurationError("GITHUB_TOKEN is required")
        if not self.owner:
            raise ConfigurationError("GITHUB_OWNER is required")
        if not self.repo:
            raise ConfigurationError("GITHUB_REPO is required")
        if not self.branch:
            raise ConfigurationError("GITHUB_BRANCH must not be empty")
        if not self.api_url.startswith("https://"):
            raise ConfigurationError("GITHUB_API_URL must use HTTPS")

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def __repr__(self) -> str:
        """Never expose token in repr."""
        return (
            f"GitHubConfig(repo='{self.full_name}', branch='{self.branch}', "
            f"api_url='{self.api_url}', token='***REDACTED***')"
        )


@dataclass(frozen=True)
class SyncConfig:
    """Sync engine configuration."""
    commit_message: str = "Sync offline changes"
    max_retries: int = 3
    connectivity_timeout: float = 5.0

    def __post_init__(self):
        if not self.commit_message.strip():
            raise ConfigurationError("SYNC_COMMIT_MESSAGE must not be empty")
        if self.max_retries < 0:
            raise ConfigurationError("SYNC_MAX_RETRIES must not be negative")
        if self.connectivity_timeout <= 0:
            raise ConfigurationError("SYNC_CONNECTIVITY_TIMEOUT must be positive")


@dataclass(frozen=True)
class StorageConfig:
    """Persistent storage configuration."""
    database_path: Path = field(default_factory=lambda: Path("data/workspace.db"))

    def __post_init__(self):
        object.__setattr__(self, 'database_path', Path(self.database_path))


@dataclass(frozen=True)
class Settings:
    """
    Application settings container.

    All configuration is loaded from environment variables.
    Secrets are never logged or exposed.
    """
    github: GitHubConfig
    sync: SyncConfig
    storage: StorageConfig
    log_level: str = "INFO"

    def __repr__(self) -> str:
        return (
            f"Settings(\n"
            f"  github={self.github},\n"
            f"  sync={self.sync},\n"
            f"  storage={self.storage}\n"
            f")"
        )


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """
    Load settings from environment variables.

    Optionally loads from a .env file first.

    Args:
        env_file: Optional path to .env file

    Returns:
        Configured Settings instance

    Raises:
        ConfigurationError: If required configuration is missing
    """
    if env_file and env_file.exists():
        _load_env_file(env_file)
    elif Path(".env").exists():
        _load_env_file(Path(".env"))

    try:
        github = GitHubConfig(
            owner=os.getenv("GITHUB_OWNER", ""),
            repo=os.getenv("GITHUB_REPO", ""),
            token=os.getenv("GITHUB_TOKEN", ""),
            branch=os.getenv("GITHUB_BRANCH", "main"),
            api_url=os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/"),
            workspace_path=os.getenv("GITHUB_WORKSPACE_PATH", "").strip("/"),
        )

        sync = SyncConfig(
            commit_message=os.getenv("SYNC_COMMIT_MESSAGE", "Sync offline changes"),
            max_retries=int(os.getenv("SYNC_MAX_RETRIES", "3")),
            connectivity_timeout=float(os.getenv("SYNC_CONNECTIVITY_TIMEOUT", "5.0")),
        )

        storage = StorageConfig(
            database_path=Path(os.getenv("STORAGE_DATABASE_PATH", "data/workspace.db")),
        )

        log_level = os.getenv("LOG_LEVEL", "INFO").upper()

        settings = Settings(
            github=github,
            sync=sync,
            storage=storage,
            log_level=log_level,
        )

        logger.info("Configuration loaded successfully")
        logger.debug(f"Settings: {settings}")

        return settings

    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(f"Failed to load configuration: {e}") from e


def _load_env_file(path: Path) -> None:
    """
    Load environment variables from a file.

    Simple .env parser that handles:
    - KEY=value
    - KEY="quoted value"
    - # comments
    - Empty lines
    """
    logger.debug(f"Loading environment from {path}")

    with open(path) as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()

            if not line or line.startswith("#"):
                continue

            if "=" not in line:
                logger.warning(f"Invalid line {line_num} in {path}: no '=' found")
                continue

            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip()

            if value.startswith('"') and value.endswith('"'):
                value = value[1:-1]
            elif value.startswith("'") and value.endswith("'"):
                value = value[1:-1]

            # Env vars take precedence
            if key not in os.environ:
                os.environ[key] = value
