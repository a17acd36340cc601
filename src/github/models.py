"""
Data models for the GitHub repository gateway.

Maps GitHub REST API responses to the shapes the sync engine consumes.
"""

import base64
import hashlib
from dataclasses import dataclass, field
from typing import Optional

from ..storage.models import ChangeAction


def blob_revision(content: str) -> str:
    """
    Compute the git blob id GitHub reports as a file's sha.

    Args:
        content: File content (UTF-8 encoded before hashing)

    Returns:
        Hex sha1 of the git blob object
    """
    data = content.encode("utf-8")
    header = f"blob {len(data)}\0".encode("ascii")
    return hashlib.sha1(header + data).hexdigest()


@dataclass(frozen=True)
class RemoteFile:
    """
    Latest remote version of a file.

    Attributes:
        path: Repository-relative path (without the workspace prefix)
        content: Decoded file content
        revision: Blob sha of this version
    """
    path: str
    content: str
    revision: str

    @classmethod
    def from_api_response(cls, data: dict, path: str) -> "RemoteFile":
        """
        Create from a Contents API file response.

        Args:
            data: Parsed JSON of GET /repos/{owner}/{repo}/contents/{path}
            path: Path relative to the workspace

        Raises:
            ValueError: If the response does not describe a file
        """
        if data.get("type") != "file":
            raise ValueError(f"{path} is not a file (type: {data.get('type')})")

        encoded = data.get("content") or ""
        encoding = data.get("encoding", "base64")
        if encoding != "base64":
            raise ValueError(f"Unsupported content encoding for {path}: {encoding}")

        content = base64.b64decode(encoded).decode("utf-8")
        return cls(path=path, content=content, revision=data["sha"])


@dataclass(frozen=True)
class FileChange:
    """One file of a commit batch."""
    path: str
    action: ChangeAction
    content: Optional[str] = None

    def to_tree_item(self, full_path: str) -> dict:
        """Convert to a Git Data API tree entry."""
        if self.action is ChangeAction.DELETE:
            return {"path": full_path, "mode": "100644", "type": "blob", "sha": None}
        return {
            "path": full_path,
            "mode": "100644",
            "type": "blob",
            "content": self.content or "",
        }


@dataclass(frozen=True)
class CommitResult:
    """
    Outcome of an accepted commit.

    Attributes:
        revision: Commit sha
        message: Commit message
        url: Web URL of the commit (empty if unknown)
        file_revisions: New blob sha per created/updated path
    """
    revision: str
    message: str
    url: str = ""
    file_revisions: dict[str, str] = field(default_factory=dict)

    @classmethod
    def for_changes(
        cls,
        revision: str,
        message: str,
        changes: list[FileChange],
        url: str = "",
    ) -> "CommitResult":
        """Build a result whose file revisions are derived from the committed content."""
        return cls(
            revision=revision,
            message=message,
            url=url,
            file_revisions={
                c.path: blob_revision(c.content or "")
                for c in changes
                if c.action is not ChangeAction.DELETE
            },
        )
