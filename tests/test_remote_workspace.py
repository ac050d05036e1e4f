import base64
import json

import httpx
import pytest

from jira_to_pr.config_loader import GitHubConfig
from jira_to_pr.github import GitHubClient, GitHubError
from jira_to_pr.models import FileChange
from jira_to_pr.workspace import LocalReviewUnsupportedError, create_file_operations
from jira_to_pr.workspace.remote import RemoteFileOperations

REPO = "/repos/acme/app"


class FakeGitData:
    """Minimal git-data API: refs, commits, trees and blobs."""

    def __init__(self, fail_on: str | None = None):
        self.refs = {"main": "c0"}
        self.requests: list[tuple[str, str, dict | None]] = []
        self.fail_on = fail_on
        self.blobs: dict[str, str] = {}
        self.tree_payloads: list[dict] = []
        self.commit_payloads: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, body))

        if self.fail_on and self.fail_on == f"{request.method} {path}":
            return httpx.Response(500, json={"message": "boom"})

        if request.method == "GET" and path.startswith(f"{REPO}/git/ref/heads/"):
            branch = path.rsplit("/heads/", 1)[1]
            if branch not in self.refs:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json={"object": {"sha": self.refs[branch]}})
        if request.method == "POST" and path == f"{REPO}/git/refs":
            self.refs[body["ref"].removeprefix("refs/heads/")] = body["sha"]
            return httpx.Response(201, json={})
        if request.method == "PATCH" and path.startswith(f"{REPO}/git/refs/heads/"):
            self.refs[path.rsplit("/heads/", 1)[1]] = body["sha"]
            return httpx.Response(200, json={})
        if request.method == "GET" and path.startswith(f"{REPO}/git/commits/"):
            return httpx.Response(200, json={"tree": {"sha": "t0"}})
        if request.method == "GET" and path == f"{REPO}/git/trees/t0":
            assert request.url.params["recursive"] == "1"
            return httpx.Response(200, json={"tree": [
                {"path": "src", "type": "tree"},
                {"path": "src/app.py", "type": "blob"},
                {"path": "node_modules/x/index.js", "type": "blob"},
                {"path": "README.md", "type": "blob"},
            ]})
        if request.method == "POST" and path == f"{REPO}/git/blobs":
            sha = f"b{len(self.blobs)}"
            self.blobs[sha] = base64.b64decode(body["content"]).decode()
            return httpx.Response(201, json={"sha": sha})
        if request.method == "POST" and path == f"{REPO}/git/trees":
            self.tree_payloads.append(body)
            return httpx.Response(201, json={"sha": "t1"})
        if request.method == "POST" and path == f"{REPO}/git/commits":
            self.commit_payloads.append(body)
            return httpx.Response(201, json={"sha": "c1"})
        if request.method == "GET" and path.startswith(f"{REPO}/contents/"):
            rel = path.removeprefix(f"{REPO}/contents/")
            if rel == "README.md":
                return httpx.Response(200, json={"content": base64.b64encode(b"# app\n").decode()})
            if rel == "logo.png":
                return httpx.Response(200, json={"content": base64.b64encode(b"\x89PNG\xff\xfe").decode()})
            return httpx.Response(404, json={"message": "Not Found"})
        return httpx.Response(404, json={"message": f"unexpected {request.method} {path}"})


def _ops(api: FakeGitData) -> RemoteFileOperations:
    github = GitHubClient(
        GitHubConfig(token="t", owner="acme", repo="app"),
        transport=httpx.MockTransport(api),
    )
    return RemoteFileOperations(github, base_branch="main")


CHANGES = [
    FileChange(path="src/app.py", operation="modify", content="new\n"),
    FileChange(path="src/helper.py", operation="create", content="def helper(): ...\n"),
    FileChange(path="README.md", operation="delete"),
]


def test_factory_picks_remote_backend():
    github = GitHubClient(GitHubConfig(token="t", owner="acme", repo="app"))
    ops = create_file_operations(github, remote=True)
    assert isinstance(ops, RemoteFileOperations)
    assert not ops.supports_local_review()


def test_list_and_read_files():
    ops = _ops(FakeGitData())
    assert ops.list_files() == ["src/app.py", "README.md"]
    assert ops.read_file("README.md") == "# app\n"
    assert ops.read_file("missing.py") is None
    assert ops.get_pr_template() is None
    assert ops.check_ready().ready


def test_binary_file_reads_as_absent():
    ops = _ops(FakeGitData())
    assert ops.read_file("logo.png") is None


def test_create_branch_points_at_base():
    api = FakeGitData()
    _ops(api).create_branch("feature/x")
    assert api.refs["feature/x"] == "c0"


def test_apply_and_commit_is_one_commit_with_ref_moved_last():
    api = FakeGitData()
    ops = _ops(api)
    ops.create_branch("feature/x")

    ops.apply_and_commit("feature/x", CHANGES, "feat: x")

    assert api.refs["feature/x"] == "c1"
    assert api.refs["main"] == "c0"
    assert len(api.commit_payloads) == 1
    assert api.commit_payloads[0] == {"message": "feat: x", "tree": "t1", "parents": ["c0"]}

    tree = api.tree_payloads[0]
    assert tree["base_tree"] == "t0"
    assert tree["tree"] == [
        {"path": "src/app.py", "mode": "100644", "type": "blob", "sha": "b0"},
        {"path": "src/helper.py", "mode": "100644", "type": "blob", "sha": "b1"},
        {"path": "README.md", "mode": "100644", "type": "blob", "sha": None},
    ]
    assert api.blobs == {"b0": "new\n", "b1": "def helper(): ...\n"}
    assert api.requests[-1][0] == "PATCH"


def test_failed_commit_leaves_branch_untouched():
    api = FakeGitData(fail_on=f"POST {REPO}/git/commits")
    ops = _ops(api)
    ops.create_branch("feature/x")

    with pytest.raises(GitHubError) as exc:
        ops.apply_and_commit("feature/x", CHANGES, "feat: x")

    assert exc.value.status == 500
    assert api.refs["feature/x"] == "c0"
    assert not any(method == "PATCH" for method, _, _ in api.requests)


def test_local_review_calls_are_refused():
    ops = _ops(FakeGitData())
    with pytest.raises(LocalReviewUnsupportedError):
        ops.apply_locally(CHANGES)
    with pytest.raises(LocalReviewUnsupportedError):
        ops.discard([])
    with pytest.raises(LocalReviewUnsupportedError):
        ops.commit_and_push("feature/x", "msg", ["a.py"])
