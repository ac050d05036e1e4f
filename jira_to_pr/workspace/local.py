"""
Local backend: the operator's working tree plus the git CLI.

Supports staged review: apply_locally() captures a byte-exact pre-image
of every touched path before writing, and discard() puts each of them
back. The records are returned to the caller; this class keeps no
per-review state.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from jira_to_pr.config_loader import CONFIG_FILE_NAME, ENV_FILE_NAME, TOOL_CONFIG_FILES
from jira_to_pr.models import ChangeRecord, FileChange
from jira_to_pr.workspace import PR_TEMPLATE_PATHS, FileOperations, ReadyStatus
from jira_to_pr.workspace.git import GitRepo

if TYPE_CHECKING:
    from jira_to_pr.github import GitHubClient

SKIP_DIRS = {
    ".git", "node_modules", "dist", "build", ".next", "coverage",
    "__pycache__", ".venv", "venv", ".tox", ".mypy_cache", ".pytest_cache",
}

# The tool's own files may be dirty without blocking a run
READY_IGNORED = {*TOOL_CONFIG_FILES, ".gitignore"}


class LocalFileOperations(FileOperations):
    def __init__(
        self,
        repo_path: Path,
        base_branch: str = "main",
        github: "GitHubClient | None" = None,
    ):
        self.root = repo_path.resolve()
        self.base_branch = base_branch
        self.github = github
        self.git = GitRepo(self.root)

    def supports_local_review(self) -> bool:
        return True

    # --- Reading ----------------------------------------------------------

    def list_files(self) -> list[str]:
        if self.git.is_repo():
            candidates = self.git.ls_files()
        else:
            candidates = self._walk()

        files = [
            p for p in candidates
            if not any(part in SKIP_DIRS for part in Path(p).parts[:-1])
            and (self.root / p).is_file()
        ]
        return sorted(files)

    def _walk(self) -> list[str]:
        found = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = [d for d in dirnames if d not in SKIP_DIRS]
            rel = Path(dirpath).relative_to(self.root)
            for name in filenames:
                found.append((rel / name).as_posix())
        return found

    def read_file(self, path: str) -> str | None:
        try:
            return (self.root / path).read_bytes().decode("utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"[WORKSPACE] Could not read {path}: {e}")
            return None

    def get_pr_template(self) -> str | None:
        for rel in PR_TEMPLATE_PATHS:
            content = self.read_file(rel)
            if content and content.strip():
                return content

        if self.github is not None:
            for rel in PR_TEMPLATE_PATHS:
                content = self.github.get_file_content(rel)
                if content:
                    return content
        return None

    def check_ready(self) -> ReadyStatus:
        if not self.git.is_repo():
            return ReadyStatus(False, f"{self.root} is not a git repository")

        dirty = [p for p in self.git.changed_paths() if p not in READY_IGNORED]
        if dirty:
            logger.debug(f"[WORKSPACE] Dirty paths: {dirty}")
            return ReadyStatus(False, "Please commit or stash your changes before running jira-to-pr")
        return ReadyStatus(True)

    # --- Writing ----------------------------------------------------------

    def create_branch(self, name: str) -> None:
        self.git.checkout(self.base_branch)
        self.git.pull("origin", self.base_branch)
        self.git.checkout_new(name)
        logger.info(f"[WORKSPACE] Created branch {name} from {self.base_branch}")

    def _write(self, change: FileChange) -> None:
        target = self.root / change.path
        if change.operation == "delete":
            target.unlink(missing_ok=True)
        else:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes((change.content or "").encode("utf-8"))

    def _missing_parents(self, path: str) -> list[str]:
        missing = []
        parent = (self.root / path).parent
        while parent != self.root and not parent.exists():
            missing.append(parent.relative_to(self.root).as_posix())
            parent = parent.parent
        return missing

    def apply_locally(self, changes: list[FileChange]) -> list[ChangeRecord]:
        records = []
        for change in changes:
            target = self.root / change.path
            existed = target.is_file()
            records.append(ChangeRecord(
                change=change,
                pre_image=target.read_bytes() if existed else None,
                existed=existed,
                created_dirs=[] if change.operation == "delete" else self._missing_parents(change.path),
            ))

        # Pre-images are all captured before the first write
        for change in changes:
            self._write(change)

        logger.info(f"[WORKSPACE] Applied {len(changes)} changes to the working tree")
        return records

    def discard(self, records: list[ChangeRecord]) -> None:
        for record in records:
            target = self.root / record.change.path
            if not record.existed:
                try:
                    target.unlink()
                except FileNotFoundError:
                    pass
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(record.pre_image or b"")

        # Deepest first; a directory that gained other files is left alone
        created = {d for record in records for d in record.created_dirs}
        for rel in sorted(created, key=lambda d: d.count("/"), reverse=True):
            directory = self.root / rel
            if directory.is_dir() and not any(directory.iterdir()):
                directory.rmdir()

        logger.info(f"[WORKSPACE] Restored {len(records)} paths")

    def commit_and_push(self, branch: str, message: str, paths: list[str]) -> None:
        self.git.add(paths)
        sha = self.git.commit(message)
        logger.info(f"[WORKSPACE] Committed {sha[:7]} on {branch}")
        self.git.push(branch)

    def apply_and_commit(self, branch: str, changes: list[FileChange], message: str) -> None:
        for change in changes:
            self._write(change)
        self.commit_and_push(branch, message, [c.path for c in changes])


def ensure_gitignore_entries(repo_path: Path) -> list[str]:
    """Add the tool's config files to .gitignore; returns the entries added."""
    gitignore = repo_path / ".gitignore"
    content = gitignore.read_text() if gitignore.exists() else ""
    lines = [line.strip() for line in content.split("\n")]

    added = []
    for name in (ENV_FILE_NAME, CONFIG_FILE_NAME):
        if name not in lines:
            if content and not content.endswith("\n"):
                content += "\n"
            content += name + "\n"
            added.append(name)

    if added:
        gitignore.write_text(content)
    return added
