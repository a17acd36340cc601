"""
Tests for the command line entry point.
"""

import pytest

import src.main as cli
from src.sync.errors import RemoteRejectedError

from conftest import FakeGateway


@pytest.fixture
def remote(mock_env, monkeypatch) -> FakeGateway:
    """Route the CLI's gateway to an in-memory remote."""
    fake = FakeGateway()
    monkeypatch.setattr(cli, "GitHubGateway", lambda **kwargs: fake)
    return fake


def test_enqueue_then_sync(remote: FakeGateway, tmp_path):
    """Test queuing a file and syncing it."""
    local = tmp_path / "guide.md"
    local.write_text("hello\n", encoding="utf-8")

    assert cli.main(["--enqueue", "guide.md", "--action", "create", "--file", str(local)]) == 0
    assert remote.files == {}

    assert cli.main([]) == 0
    assert remote.files == {"guide.md": "hello\n"}
    assert remote.closed


def test_status(remote: FakeGateway, tmp_path):
    """Test the status view does not contact the remote."""
    assert cli.main(["--enqueue", "old.md", "--action", "delete"]) == 0
    assert cli.main(["--status"]) == 0
    assert remote.fetched == []


def test_enqueue_requires_file(remote: FakeGateway):
    """Test create/update need the new content."""
    assert cli.main(["--enqueue", "guide.md", "--action", "update"]) == 1


def test_offline_exit_code(remote: FakeGateway):
    """Test an unreachable remote exits with the offline code."""
    cli.main(["--enqueue", "old.md", "--action", "delete"])
    remote.online = False

    assert cli.main([]) == 3


def test_error_exit_code(remote: FakeGateway, tmp_path):
    """Test a rejected commit exits with the error code."""
    local = tmp_path / "a.md"
    local.write_text("a\n", encoding="utf-8")
    cli.main(["--enqueue", "a.md", "--action", "create", "--file", str(local)])
    remote.commit_error = RemoteRejectedError("Resource not accessible by integration", status_code=403)

    assert cli.main([]) == 1


def test_conflict_exit_code(remote: FakeGateway, tmp_path):
    """Test colliding edits exit with the conflict code."""
    local = tmp_path / "a.md"
    local.write_text("mine\n", encoding="utf-8")
    cli.main(["--enqueue", "a.md", "--action", "create", "--file", str(local)])
    remote.push_remote("a.md", "theirs\n")

    assert cli.main([]) == 2


def test_discard_needs_yes(remote: FakeGateway):
    """Test discarding without confirmation is refused."""
    cli.main(["--enqueue", "old.md", "--action", "delete"])

    assert cli.main(["--discard", "old.md"]) == 1
    assert cli.main(["--discard", "old.md", "--yes"]) == 0
    assert cli.main([]) == 0
    assert remote.fetched == []


def test_missing_configuration(monkeypatch, tmp_path):
    """Test missing settings exit with the error code."""
    monkeypatch.chdir(tmp_path)
    for key in ("GITHUB_TOKEN", "GITHUB_OWNER", "GITHUB_REPO"):
        monkeypatch.delenv(key, raising=False)

    assert cli.main([]) == 1
