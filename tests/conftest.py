"""
Pytest configuration and shared fixtures.

Provides a temporary workspace store and an in-memory remote repository.
"""

import pytest
from pathlib import Path
from typing import Callable, Generator, Optional
import tempfile

from src.github.models import CommitResult, FileChange, RemoteFile, blob_revision
from src.storage.models import ChangeAction
from src.storage.queue_store import QueueStore
from src.sync.engine import SyncCoordinator
from src.sync.errors import ConnectivityError, RemoteRejectedError


# ============================================================================
# Remote Fixtures
# ============================================================================

class FakeGateway:
    """
    In-memory remote repository.

    Files are stored as path → content; revisions are git blob ids, like
    GitHub reports them. Failures and hooks are injected per test.
    """

    def __init__(self, files: Optional[dict[str, str]] = None):
        self.files: dict[str, str] = dict(files or {})
        self.online = True
        self.commit_error: Optional[Exception] = None
        self.fetch_error: Optional[Exception] = None
        self.on_fetch: Optional[Callable[[str], None]] = None
        self.before_commit: Optional[Callable[[], None]] = None
        self.commits: list[list[FileChange]] = []
        self.fetched: list[str] = []
        self.closed = False

    def revision(self, path: str) -> Optional[str]:
        if path not in self.files:
            return None
        return blob_revision(self.files[path])

    def check_connectivity(self) -> bool:
        return self.online

    def fetch_latest(self, path: str) -> Optional[RemoteFile]:
        self.fetched.append(path)
        if self.on_fetch is not None:
            self.on_fetch(path)
        if not self.online:
            raise ConnectivityError("network unreachable")
        if self.fetch_error is not None:
            raise self.fetch_error
        if path not in self.files:
            return None
        content = self.files[path]
        return RemoteFile(path=path, content=content, revision=blob_revision(content))

    def commit(
        self,
        files: list[FileChange],
        message: str,
        expected: Optional[dict[str, Optional[str]]] = None,
    ) -> CommitResult:
        if self.before_commit is not None:
            self.before_commit()
        if not self.online:
            raise ConnectivityError("network unreachable")
        if self.commit_error is not None:
            raise self.commit_error
        for path, revision in (expected or {}).items():
            if self.revision(path) != revision:
                raise RemoteRejectedError(f"Stale revision for {path}", status_code=409)
        for change in files:
            if change.action is ChangeAction.DELETE:
                self.files.pop(change.path, None)
            else:
                self.files[change.path] = change.content or ""
        self.commits.append(list(files))
        return CommitResult.for_changes(
            revision=f"commit-{len(self.commits)}",
            message=message,
            changes=files,
        )

    def close(self) -> None:
        self.closed = True

    def push_remote(self, path: str, content: Optional[str]) -> None:
        """Simulate someone else committing to the branch."""
        if content is None:
            self.files.pop(path, None)
        else:
            self.files[path] = content


@pytest.fixture
def gateway() -> FakeGateway:
    """Create an empty in-memory remote."""
    return FakeGateway()


# ============================================================================
# Storage Fixtures
# ============================================================================

@pytest.fixture
def temp_db_path() -> Generator[Path, None, None]:
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp) / "workspace.db"


@pytest.fixture
def queue_store(temp_db_path: Path) -> QueueStore:
    """Create a fresh QueueStore with temp database."""
    return QueueStore(temp_db_path)


# ============================================================================
# Coordinator Fixtures
# ============================================================================

@pytest.fixture
def coordinator(gateway: FakeGateway, queue_store: QueueStore) -> Generator[SyncCoordinator, None, None]:
    """Create an opened coordinator over the fake remote."""
    coordinator = SyncCoordinator(gateway=gateway, store=queue_store)
    coordinator.open()
    yield coordinator
    coordinator.close()


def seed_remote(
    gateway: FakeGateway,
    store: QueueStore,
    path: str,
    content: str,
) -> str:
    """Put a file on the remote and record it as the last known version."""
    gateway.files[path] = content
    revision = blob_revision(content)
    store.put_cached(path, content, revision)
    return revision


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def mock_env(monkeypatch, tmp_path):
    """Set a complete, valid configuration environment."""
    monkeypatch.chdir(tmp_path)
    for key in (
        "GITHUB_BRANCH",
        "GITHUB_API_URL",
        "GITHUB_WORKSPACE_PATH",
        "SYNC_COMMIT_MESSAGE",
        "SYNC_MAX_RETRIES",
        "SYNC_CONNECTIVITY_TIMEOUT",
        "STORAGE_DATABASE_PATH",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_test_token")
    monkeypatch.setenv("GITHUB_OWNER", "acme")
    monkeypatch.setenv("GITHUB_REPO", "handbook")
    monkeypatch.setenv("SYNC_COMMIT_MESSAGE", "Test sync")
