"""
GitHub repository gateway.

Reads files through the Contents API and commits batches atomically
through the Git Data API. The token is passed via configuration and
never logged.
"""

import logging
from typing import Optional
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..sync.errors import ConnectivityError, RemoteRejectedError
from .models import CommitResult, FileChange, RemoteFile

logger = logging.getLogger(__name__)


class GitHubGateway:
    """
    Remote gateway for one branch of a GitHub repository.

    Handles:
    - Authentication via token
    - Retry logic for transient failures on reads
    - Atomic multi-file commits (tree → commit → non-forced ref update)
    - Mapping of transport and HTTP failures to sync errors

    Usage:
        gateway = GitHubGateway(owner="acme", repo="models", token="...")

        remote = gateway.fetch_latest("tables/orders.yaml")
        gateway.commit([FileChange(...)], "Sync offline changes")
    """

    CONTENTS_ENDPOINT = "/repos/{owner}/{repo}/contents/{path}"
    BRANCH_ENDPOINT = "/repos/{owner}/{repo}/branches/{branch}"
    COMMIT_ENDPOINT = "/repos/{owner}/{repo}/git/commits/{sha}"
    TREES_ENDPOINT = "/repos/{owner}/{repo}/git/trees"
    COMMITS_ENDPOINT = "/repos/{owner}/{repo}/git/commits"
    REF_ENDPOINT = "/repos/{owner}/{repo}/git/refs/heads/{branch}"

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        branch: str = "main",
        api_url: str = "https://api.github.com",
        workspace_path: str = "",
        timeout: float = 30.0,
        max_retries: int = 3,
        connectivity_timeout: float = 5.0,
    ):
        """
        Initialize GitHub gateway.

        Args:
            owner: Repository owner
            repo: Repository name
            token: Personal access or app token (never logged)
            branch: Branch to read from and commit to
            api_url: REST API root
            workspace_path: Repository folder all paths are relative to
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient read failures
            connectivity_timeout: Timeout of the connectivity probe
        """
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.api_url = api_url.rstrip("/")
        self.workspace_path = workspace_path.strip("/")
        self.timeout = timeout
        self.connectivity_timeout = connectivity_timeout
        self._token = token  # Private, never logged

        self._session = requests.Session()

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

        self._session.headers.update({
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        })

        logger.info(f"GitHub gateway initialized for {self.owner}/{self.repo}@{self.branch}")

    def __repr__(self) -> str:
        """Never expose token in repr."""
        return f"GitHubGateway(repo='{self.owner}/{self.repo}', branch='{self.branch}')"

    def full_path(self, path: str) -> str:
        """Prefix a workspace-relative path with the workspace folder."""
        path = path.lstrip("/")
        if self.workspace_path:
            return f"{self.workspace_path}/{path}"
        return path

    def _endpoint(self, template: str, **params) -> str:
        return template.format(owner=self.owner, repo=self.repo, **params)

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> dict | list:
        """
        Make authenticated request to the GitHub API.

        Args:
            method: HTTP method
            endpoint: API endpoint path
            params: Query parameters
            json: JSON body

        Returns:
            Parsed JSON response

        Raises:
            RemoteRejectedError: If GitHub answers with an error status
            ConnectivityError: If GitHub cannot be reached
        """
        url = f"{self.api_url}{endpoint}"

        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json,
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()

        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            error_msg = f"GitHub API error: {e}"
            try:
                error_body = e.response.json()
                if "message" in error_body:
                    error_msg = f"GitHub API error ({status_code}): {error_body['message']}"
            except (ValueError, AttributeError):
                pass

            logger.error(error_msg)
            raise RemoteRejectedError(error_msg, status_code=status_code) from e

        except requests.exceptions.RequestException as e:
            error_msg = f"GitHub request failed: {e}"
            logger.error(error_msg)
            raise ConnectivityError(error_msg) from e

    def check_connectivity(self) -> bool:
        """
        Probe whether the API is reachable.

        Any HTTP answer counts as reachable; auth problems surface on the
        real calls instead.
        """
        try:
            requests.head(self.api_url, timeout=self.connectivity_timeout)
            return True
        except requests.exceptions.RequestException as e:
            logger.info(f"GitHub unreachable: {e}")
            return False

    def fetch_latest(self, path: str) -> Optional[RemoteFile]:
        """
        Fetch the latest version of a file on the branch.

        Args:
            path: Workspace-relative path

        Returns:
            RemoteFile, or None if the file does not exist remotely

        Raises:
            RemoteRejectedError: If the path is not a regular file or access fails
        """
        return self._fetch(path, self.branch)

    def _fetch(self, path: str, ref: str) -> Optional[RemoteFile]:
        endpoint = self._endpoint(
            self.CONTENTS_ENDPOINT,
            path=quote(self.full_path(path)),
        )

        try:
            data = self._make_request("GET", endpoint, params={"ref": ref})
        except RemoteRejectedError as e:
            if e.status_code == 404:
                logger.debug(f"{path} does not exist at {ref}")
                return None
            raise

        if isinstance(data, list):
            raise RemoteRejectedError(f"Path {path} is a directory, not a file")

        try:
            remote = RemoteFile.from_api_response(data, path=path)
        except (KeyError, ValueError) as e:
            raise RemoteRejectedError(f"Cannot read {path}: {e}") from e

        logger.debug(f"Fetched {path} at revision {remote.revision}")
        return remote

    def commit(
        self,
        files: list[FileChange],
        message: str,
        expected: Optional[dict[str, Optional[str]]] = None,
    ) -> CommitResult:
        """
        Commit a batch of file changes as a single commit.

        The branch only moves when the final ref update succeeds, and that
        update is not forced: if someone pushed in between, GitHub rejects
        it and nothing of the batch becomes visible.

        With `expected`, every listed path must still be at the given blob
        revision (None: absent) in the commit the batch is built on, so an
        edit pushed after the caller read the file is never overwritten.

        Args:
            files: Changes to commit
            message: Commit message
            expected: Path → revision the changes were based on

        Returns:
            CommitResult with the new commit and blob revisions

        Raises:
            RemoteRejectedError: If any step is refused, a path is stale or
                the branch moved
            ConnectivityError: If GitHub cannot be reached
        """
        if not files:
            raise ValueError("commit requires at least one file")

        logger.info(f"Committing {len(files)} files to {self.owner}/{self.repo}@{self.branch}")

        branch_data = self._make_request(
            "GET",
            self._endpoint(self.BRANCH_ENDPOINT, branch=quote(self.branch, safe="")),
        )
        parent_sha = branch_data["commit"]["sha"]

        if expected:
            self._verify_revisions(parent_sha, expected)

        parent_commit = self._make_request(
            "GET",
            self._endpoint(self.COMMIT_ENDPOINT, sha=parent_sha),
        )
        base_tree = parent_commit["tree"]["sha"]

        tree = self._make_request(
            "POST",
            self._endpoint(self.TREES_ENDPOINT),
            json={
                "base_tree": base_tree,
                "tree": [f.to_tree_item(self.full_path(f.path)) for f in files],
            },
        )

        new_commit = self._make_request(
            "POST",
            self._endpoint(self.COMMITS_ENDPOINT),
            json={
                "message": message,
                "tree": tree["sha"],
                "parents": [parent_sha],
            },
        )

        self._make_request(
            "PATCH",
            self._endpoint(self.REF_ENDPOINT, branch=self.branch),
            json={"sha": new_commit["sha"], "force": False},
        )

        result = CommitResult.for_changes(
            revision=new_commit["sha"],
            message=message,
            changes=files,
            url=new_commit.get("html_url", ""),
        )
        logger.info(f"Committed {result.revision}")
        return result

    def _verify_revisions(self, ref: str, expected: dict[str, Optional[str]]) -> None:
        """
        Check that each path is at its expected revision in `ref`.

        Raises:
            RemoteRejectedError: With status 409 for the first stale path
        """
        for path, revision in expected.items():
            current = self._fetch(path, ref)
            current_revision = current.revision if current else None
            if current_revision != revision:
                message = (
                    f"Stale revision for {path}: expected {revision or 'absent'}, "
                    f"found {current_revision or 'absent'}"
                )
                logger.warning(message)
                raise RemoteRejectedError(message, status_code=409)

    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()
        logger.debug("GitHub gateway session closed")

    def __enter__(self) -> "GitHubGateway":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
