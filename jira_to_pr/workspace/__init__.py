"""
jira-to-pr File Operations

One interface, two backends:

  - LocalFileOperations works on the operator's checkout with the git
    CLI and supports staged local review (apply, test, discard, commit).
  - RemoteFileOperations talks only to the GitHub git-data API and
    publishes every change set as a single atomic commit.

The review state machine drives both through the same calls and asks
supports_local_review() which transitions it may offer.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from jira_to_pr.models import ChangeRecord, FileChange
from jira_to_pr.workspace.git import WorkspaceError

if TYPE_CHECKING:
    from jira_to_pr.github import GitHubClient

__all__ = [
    "FileOperations",
    "LocalReviewUnsupportedError",
    "PR_TEMPLATE_PATHS",
    "ReadyStatus",
    "WorkspaceError",
    "create_file_operations",
]

PR_TEMPLATE_PATHS = (
    ".github/PULL_REQUEST_TEMPLATE.md",
    ".github/pull_request_template.md",
    "docs/PULL_REQUEST_TEMPLATE.md",
    "docs/pull_request_template.md",
    "PULL_REQUEST_TEMPLATE.md",
    "pull_request_template.md",
)


class LocalReviewUnsupportedError(Exception):
    pass


@dataclass(frozen=True)
class ReadyStatus:
    ready: bool
    message: str | None = None


class FileOperations(ABC):

    @abstractmethod
    def list_files(self) -> list[str]:
        ...

    @abstractmethod
    def read_file(self, path: str) -> str | None:
        """File content, or None when the path does not exist."""
        ...

    @abstractmethod
    def get_pr_template(self) -> str | None:
        ...

    @abstractmethod
    def create_branch(self, name: str) -> None:
        ...

    @abstractmethod
    def apply_and_commit(self, branch: str, changes: list[FileChange], message: str) -> None:
        ...

    @abstractmethod
    def check_ready(self) -> ReadyStatus:
        ...

    def supports_local_review(self) -> bool:
        return False

    # --- Local review (overridden by backends that support it) ----------

    def apply_locally(self, changes: list[FileChange]) -> list[ChangeRecord]:
        raise LocalReviewUnsupportedError("Local review not supported in remote mode")

    def discard(self, records: list[ChangeRecord]) -> None:
        raise LocalReviewUnsupportedError("Discard not supported in remote mode")

    def commit_and_push(self, branch: str, message: str, paths: list[str]) -> None:
        raise LocalReviewUnsupportedError(
            "commit_and_push not supported in remote mode, use apply_and_commit"
        )


def create_file_operations(
    github: "GitHubClient",
    remote: bool,
    repo_path: Path | None = None,
    base_branch: str = "main",
) -> FileOperations:
    if remote:
        from jira_to_pr.workspace.remote import RemoteFileOperations
        return RemoteFileOperations(github, base_branch=base_branch)

    from jira_to_pr.workspace.local import LocalFileOperations
    return LocalFileOperations(repo_path or Path.cwd(), base_branch=base_branch, github=github)
