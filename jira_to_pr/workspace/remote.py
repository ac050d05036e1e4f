"""
Remote backend: no local checkout, only the GitHub git-data API.

Every change set lands as exactly one commit. Blobs, tree and commit are
created first and the branch ref is moved last, so a failure anywhere
before that final PATCH leaves the branch where it was.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from jira_to_pr.github import GitHubClient
from jira_to_pr.models import FileChange
from jira_to_pr.workspace import PR_TEMPLATE_PATHS, FileOperations, ReadyStatus

IGNORED_PREFIXES = ("node_modules/", ".git/", "dist/", "build/", ".next/", "coverage/")


class RemoteFileOperations(FileOperations):
    def __init__(self, github: GitHubClient, base_branch: str = "main"):
        self.github = github
        self.base_branch = base_branch

    def list_files(self) -> list[str]:
        tip = self.github.get_ref(self.base_branch)
        tree_sha = self.github.get_commit(tip)["tree"]["sha"]
        entries = self.github.get_tree(tree_sha, recursive=True)
        files = [
            e["path"] for e in entries
            if e.get("type") == "blob" and e.get("path")
            and not e["path"].startswith(IGNORED_PREFIXES)
        ]
        logger.debug(f"[REMOTE] {len(files)} files on {self.base_branch}")
        return files

    def read_file(self, path: str) -> str | None:
        return self.github.get_file_content(path, ref=self.base_branch)

    def get_pr_template(self) -> str | None:
        for rel in PR_TEMPLATE_PATHS:
            content = self.read_file(rel)
            if content:
                return content
        return None

    def check_ready(self) -> ReadyStatus:
        return ReadyStatus(True)

    def create_branch(self, name: str) -> None:
        base_sha = self.github.get_ref(self.base_branch)
        self.github.create_ref(name, base_sha)
        logger.info(f"[REMOTE] Created branch {name} at {base_sha[:7]}")

    def apply_and_commit(self, branch: str, changes: list[FileChange], message: str) -> None:
        parent_sha = self.github.get_ref(branch)
        base_tree = self.github.get_commit(parent_sha)["tree"]["sha"]

        entries: list[dict[str, Any]] = []
        for change in changes:
            if change.operation == "delete":
                sha = None
            else:
                sha = self.github.create_blob(change.content or "")
            entries.append({"path": change.path, "mode": "100644", "type": "blob", "sha": sha})

        tree_sha = self.github.create_tree(base_tree, entries)
        commit_sha = self.github.create_commit(message, tree_sha, [parent_sha])
        self.github.update_ref(branch, commit_sha)
        logger.info(f"[REMOTE] {branch} -> {commit_sha[:7]} ({len(changes)} files)")
