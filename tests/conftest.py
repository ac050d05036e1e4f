from __future__ import annotations

import os
import subprocess
from pathlib import Path

import pytest

# Use litellm's bundled model cost map; the remote fetch hangs/deadlocks offline.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from jira_to_pr.models import ChangeRecord, ChangeSet, FileChange, PullRequest, Ticket
from jira_to_pr.review import ReviewAction, ReviewPhase, ReviewPrompter
from jira_to_pr.workspace import FileOperations, ReadyStatus


def make_change_set(*changes: FileChange, **meta) -> ChangeSet:
    return ChangeSet(
        changes=list(changes),
        explanation=meta.get("explanation", "Adds the thing"),
        branch_name=meta.get("branch_name", "feature/proj-1-thing"),
        commit_message=meta.get("commit_message", "feat(PROJ-1): thing"),
        pr_title=meta.get("pr_title", "[PROJ-1] Thing"),
        pr_body=meta.get("pr_body", "Body"),
    )


def make_ticket(**overrides) -> Ticket:
    data = {
        "key": "PROJ-1",
        "summary": "Add login button",
        "description": "The header needs a login button.",
        "acceptance_criteria": "- Button is visible",
    }
    data.update(overrides)
    return Ticket(**data)


class MemoryOps(FileOperations):
    """In-memory backend recording every call."""

    def __init__(self, files: dict[str, str] | None = None, local: bool = True):
        self.files = dict(files or {})
        self.local = local
        self.calls: list[tuple] = []

    def supports_local_review(self) -> bool:
        return self.local

    def list_files(self) -> list[str]:
        return sorted(self.files)

    def read_file(self, path: str) -> str | None:
        return self.files.get(path)

    def get_pr_template(self) -> str | None:
        return None

    def check_ready(self) -> ReadyStatus:
        return ReadyStatus(True)

    def create_branch(self, name: str) -> None:
        self.calls.append(("create_branch", name))

    def _write(self, changes: list[FileChange]) -> None:
        for change in changes:
            if change.operation == "delete":
                self.files.pop(change.path, None)
            else:
                self.files[change.path] = change.content

    def apply_and_commit(self, branch, changes, message) -> None:
        self._write(changes)
        self.calls.append(("apply_and_commit", branch, [c.path for c in changes], message))

    def apply_locally(self, changes):
        if not self.local:
            return super().apply_locally(changes)
        records = [
            ChangeRecord(
                change=c,
                pre_image=self.files[c.path].encode() if c.path in self.files else None,
                existed=c.path in self.files,
            )
            for c in changes
        ]
        self._write(changes)
        self.calls.append(("apply_locally", [c.path for c in changes]))
        return records

    def discard(self, records):
        if not self.local:
            return super().discard(records)
        for record in records:
            if record.existed:
                self.files[record.change.path] = record.pre_image.decode()
            else:
                self.files.pop(record.change.path, None)
        self.calls.append(("discard", [r.change.path for r in records]))

    def commit_and_push(self, branch, message, paths):
        if not self.local:
            return super().commit_and_push(branch, message, paths)
        self.calls.append(("commit_and_push", branch, message, list(paths)))


class FakeJira:
    def __init__(self, tickets):
        self.tickets = tickets
        self.queries: list[str | None] = []

    def get_ticket(self, key):
        return next(t for t in self.tickets if t.key == key)

    def search_tickets(self, jql=None, max_results=50):
        self.queries.append(jql)
        return list(self.tickets)


class FakeGitHub:
    def __init__(self, language: str | None = "Python"):
        self.language = language
        self.pull_requests: list[dict] = []

    def get_repo_info(self):
        return {"default_branch": "main", "size": 1, "language": self.language}

    def create_pull_request(self, title, body, head, base=None):
        self.pull_requests.append({"title": title, "body": body, "head": head, "base": base})
        return PullRequest(url=f"https://github.com/acme/app/pull/{len(self.pull_requests)}",
                           number=len(self.pull_requests))


class FakeGenerator:
    """Returns queued change sets; snapshots the backend on every regenerate."""

    def __init__(self, initial: ChangeSet, regenerated: list[ChangeSet] | None = None, ops=None):
        self.initial = initial
        self.regenerated = list(regenerated or [])
        self.ops = ops
        self.feedback: list[str] = []
        self.snapshots: list[dict] = []

    def select_relevant_files(self, ticket, files):
        return files[:2]

    def generate(self, ticket, repo, on_token=None):
        if on_token:
            on_token("{")
        return self.initial

    def regenerate(self, ticket, repo, previous, feedback, on_token=None):
        self.feedback.append(feedback)
        if self.ops is not None:
            self.snapshots.append({p: self.ops.read_file(p) for p in self.ops.list_files()})
        return self.regenerated.pop(0)


class ScriptedPrompter(ReviewPrompter):
    def __init__(self, actions: list[ReviewAction], feedback: list[str] | None = None):
        self.actions = list(actions)
        self.feedback = list(feedback or [])
        self.menus: list[tuple[ReviewPhase, list[ReviewAction]]] = []

    def choose_action(self, phase, actions):
        self.menus.append((phase, list(actions)))
        return self.actions.pop(0)

    def ask_feedback(self) -> str:
        return self.feedback.pop(0)


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=True)
    return result.stdout


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A repository on main with one pushed commit and a bare origin."""
    origin = tmp_path / "origin.git"
    repo = tmp_path / "repo"
    repo.mkdir()
    subprocess.run(["git", "init", "--bare", "-b", "main", str(origin)], check=True, capture_output=True)

    git(repo, "init", "-b", "main")
    git(repo, "config", "user.email", "dev@example.com")
    git(repo, "config", "user.name", "Dev")
    git(repo, "config", "commit.gpgsign", "false")
    git(repo, "remote", "add", "origin", str(origin))

    (repo / "src").mkdir()
    (repo / "src" / "app.py").write_text("def main():\n    return 1\n")
    (repo / "README.md").write_text("# app\n")
    (repo / ".gitignore").write_text("*.log\n")
    git(repo, "add", "-A")
    git(repo, "commit", "-m", "initial")
    git(repo, "push", "-u", "origin", "main")
    return repo


CONFIG_ENV_KEYS = [
    "JIRA_BASE_URL", "JIRA_EMAIL", "JIRA_API_TOKEN", "JIRA_PROJECT_KEY", "JIRA_LABEL_FILTER",
    "GITHUB_TOKEN", "GITHUB_OWNER", "GITHUB_REPO", "GITHUB_BASE_BRANCH",
    "AI_PROVIDER", "ANTHROPIC_API_KEY", "OPENAI_API_KEY", "OPENAI_BASE_URL",
    "ANTHROPIC_MODEL", "OPENAI_MODEL", "OLLAMA_MODEL", "OLLAMA_BASE_URL",
    "MAX_FILES_TO_CHANGE", "MAX_LINES_CHANGED",
    "REQUIRE_ACCEPTANCE_CRITERIA", "REQUIRE_SINGLE_TICKET",
]


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch) -> Path:
    """Empty cwd and home, with every config variable unset (and restored after)."""
    for key in CONFIG_ENV_KEYS:
        # setenv first so the undo also removes values loaded from a .env file
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    cwd = tmp_path / "work"
    cwd.mkdir()
    monkeypatch.chdir(cwd)
    return cwd
