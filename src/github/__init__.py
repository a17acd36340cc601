"""GitHub repository gateway module."""

from .client import GitHubGateway
from .models import CommitResult, FileChange, RemoteFile

__all__ = ["GitHubGateway", "CommitResult", "FileChange", "RemoteFile"]
