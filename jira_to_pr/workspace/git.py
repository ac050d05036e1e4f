"""
Thin subprocess wrapper around the git CLI for the local backend.
"""

from __future__ import annotations

import subprocess
from pathlib import Path

from loguru import logger


class WorkspaceError(Exception):
    pass


class GitRepo:
    def __init__(self, path: Path):
        self.path = path.resolve()

    def run(self, *args: str, check: bool = True, timeout: int = 120) -> str:
        cmd = ["git", *args]
        logger.debug(f"[WORKSPACE] {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd, cwd=self.path, capture_output=True, text=True, timeout=timeout
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise WorkspaceError(f"Git failed: {' '.join(cmd)}\n{e}") from e
        if check and result.returncode != 0:
            raise WorkspaceError(f"Git failed: {' '.join(cmd)}\n{result.stderr}")
        return result.stdout

    def is_repo(self) -> bool:
        try:
            return self.run("rev-parse", "--is-inside-work-tree").strip() == "true"
        except WorkspaceError:
            return False

    def ls_files(self) -> list[str]:
        """Tracked plus untracked-but-not-ignored paths."""
        out = self.run("ls-files", "--cached", "--others", "--exclude-standard", "-z")
        return [p for p in out.split("\0") if p]

    def changed_paths(self) -> list[str]:
        """Paths with any staged, unstaged or untracked change."""
        out = self.run("status", "--porcelain", "-z", "--untracked-files=all")
        paths = []
        entries = out.split("\0")
        i = 0
        while i < len(entries):
            entry = entries[i]
            i += 1
            if len(entry) < 4:
                continue
            status, path = entry[:2], entry[3:]
            paths.append(path)
            # Renames and copies carry the source path as the next entry
            if "R" in status or "C" in status:
                i += 1
        return paths

    def checkout(self, branch: str) -> None:
        self.run("checkout", branch)

    def checkout_new(self, branch: str) -> None:
        self.run("checkout", "-b", branch)

    def pull(self, remote: str, branch: str) -> None:
        self.run("pull", remote, branch)

    def add(self, paths: list[str]) -> None:
        self.run("add", "-A", "--", *paths)

    def commit(self, message: str) -> str:
        self.run("commit", "-m", message)
        return self.run("rev-parse", "HEAD").strip()

    def push(self, branch: str, remote: str = "origin") -> None:
        self.run("push", "--set-upstream", remote, branch)
        logger.info(f"[WORKSPACE] Pushed {branch} to {remote}")

    def remote_url(self, remote: str = "origin") -> str | None:
        try:
            return self.run("remote", "get-url", remote).strip() or None
        except WorkspaceError:
            return None
