"""
GitHub REST client.

Pull requests, repository info, file contents and the git-data
endpoints (refs, commits, trees, blobs) the remote backend builds its
single atomic commit from.
"""

from __future__ import annotations

import base64
from typing import Any

import httpx
from loguru import logger

from jira_to_pr.config_loader import GitHubConfig
from jira_to_pr.models import PullRequest

GITHUB_API_URL = "https://api.github.com"


class GitHubError(Exception):
    def __init__(self, message: str, status: int | None = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class GitHubClient:
    def __init__(
        self,
        config: GitHubConfig,
        transport: httpx.BaseTransport | None = None,
        timeout_s: float = 30.0,
    ):
        self.owner = config.owner
        self.repo = config.repo
        self.base_branch = config.base_branch
        self._client = httpx.Client(
            base_url=GITHUB_API_URL,
            headers={
                "Authorization": f"Bearer {config.token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=timeout_s,
            transport=transport,
        )

    @property
    def _repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        logger.debug(f"[GITHUB] {method} {path}")
        response = self._client.request(method, path, **kwargs)
        if response.is_error:
            raise GitHubError(
                f"GitHub API error {response.status_code} on {method} {path}",
                status=response.status_code,
                body=response.text,
            )
        return response.json() if response.content else None

    # --- Repository -------------------------------------------------------

    def get_repo_info(self) -> dict[str, Any]:
        data = self._request("GET", self._repo_path)
        return {
            "default_branch": data.get("default_branch"),
            "size": data.get("size", 0),
            "language": data.get("language"),
        }

    def get_file_content(self, path: str, ref: str | None = None) -> str | None:
        """Decoded file content on ref (base branch by default), None if absent."""
        try:
            data = self._request(
                "GET",
                f"{self._repo_path}/contents/{path}",
                params={"ref": ref or self.base_branch},
            )
        except GitHubError as e:
            if e.status == 404:
                return None
            raise

        if not isinstance(data, dict) or "content" not in data:
            return None
        try:
            return base64.b64decode(data["content"]).decode("utf-8")
        except UnicodeDecodeError as e:
            logger.debug(f"[GITHUB] Could not decode {path}: {e}")
            return None

    def create_pull_request(
        self, title: str, body: str, head: str, base: str | None = None
    ) -> PullRequest:
        data = self._request(
            "POST",
            f"{self._repo_path}/pulls",
            json={"title": title, "body": body, "head": head, "base": base or self.base_branch},
        )
        logger.info(f"[GITHUB] Created PR #{data['number']}: {data['html_url']}")
        return PullRequest(url=data["html_url"], number=data["number"])

    # --- Git data ---------------------------------------------------------

    def get_ref(self, branch: str) -> str:
        """SHA the branch currently points at."""
        data = self._request("GET", f"{self._repo_path}/git/ref/heads/{branch}")
        return data["object"]["sha"]

    def create_ref(self, branch: str, sha: str) -> None:
        self._request(
            "POST",
            f"{self._repo_path}/git/refs",
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )

    def update_ref(self, branch: str, sha: str) -> None:
        self._request(
            "PATCH",
            f"{self._repo_path}/git/refs/heads/{branch}",
            json={"sha": sha, "force": False},
        )

    def get_commit(self, sha: str) -> dict[str, Any]:
        return self._request("GET", f"{self._repo_path}/git/commits/{sha}")

    def get_tree(self, sha: str, recursive: bool = True) -> list[dict[str, Any]]:
        params = {"recursive": "1"} if recursive else None
        data = self._request("GET", f"{self._repo_path}/git/trees/{sha}", params=params)
        if data.get("truncated"):
            logger.warning(f"[GITHUB] Tree {sha[:7]} listing was truncated by the API")
        return data.get("tree", [])

    def create_blob(self, content: str) -> str:
        data = self._request(
            "POST",
            f"{self._repo_path}/git/blobs",
            json={
                "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
                "encoding": "base64",
            },
        )
        return data["sha"]

    def create_tree(self, base_tree: str, entries: list[dict[str, Any]]) -> str:
        data = self._request(
            "POST",
            f"{self._repo_path}/git/trees",
            json={"base_tree": base_tree, "tree": entries},
        )
        return data["sha"]

    def create_commit(self, message: str, tree: str, parents: list[str]) -> str:
        data = self._request(
            "POST",
            f"{self._repo_path}/git/commits",
            json={"message": message, "tree": tree, "parents": parents},
        )
        return data["sha"]
