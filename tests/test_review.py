import pytest
from conftest import FakeGenerator, FakeGitHub, MemoryOps, ScriptedPrompter, make_change_set, make_ticket

from jira_to_pr.agents.implementer import GenerationParseError
from jira_to_pr.models import FileChange, RepoContext, ReviewSession
from jira_to_pr.output import OutputSink
from jira_to_pr.review import (
    AI_NOTICE,
    EffectKind,
    InvalidTransitionError,
    ReviewAction,
    ReviewDriver,
    ReviewPhase,
    available_actions,
    transition,
    with_notices,
)
from jira_to_pr.safety import check_tree_consistency

A = ReviewAction
ORIGINAL = {"src/app.py": "old\n", "README.md": "# app\n"}


def _change_set(**meta):
    return make_change_set(
        FileChange(path="src/app.py", operation="modify", content="new\n"),
        FileChange(path="src/helper.py", operation="create", content="def helper():\n    pass\n"),
        **meta,
    )


def _driver(ops, prompter, generator=None, github=None, sink=None):
    repo = RepoContext(files=ops.list_files())
    return ReviewDriver(
        ops=ops,
        generator=generator or FakeGenerator(_change_set(), ops=ops),
        github=github or FakeGitHub(),
        sink=sink or OutputSink.capture(),
        prompter=prompter,
        ticket=make_ticket(),
        repo=repo,
        gate=lambda cs: check_tree_consistency(cs, repo.files),
    )


# --- Pure transitions -------------------------------------------------------

def test_menus_per_phase():
    assert available_actions(ReviewPhase.GENERATED, local_review=True) == [
        A.EXPLAIN, A.APPLY, A.DIRECT, A.RETRY, A.ABORT,
    ]
    assert available_actions(ReviewPhase.GENERATED, local_review=False) == [
        A.EXPLAIN, A.DIRECT, A.RETRY, A.ABORT,
    ]
    assert available_actions(ReviewPhase.LOCALLY_APPLIED, local_review=True) == [
        A.EXPLAIN, A.COMMIT, A.RETRY, A.DISCARD,
    ]
    assert available_actions(ReviewPhase.COMMITTED, local_review=True) == []
    assert available_actions(ReviewPhase.ABORTED, local_review=True) == []


def test_transition_targets_and_effects():
    apply = transition(ReviewPhase.GENERATED, A.APPLY, local_review=True)
    assert apply.phase == ReviewPhase.LOCALLY_APPLIED
    assert apply.effects == (EffectKind.APPLY_LOCAL,)

    retry = transition(ReviewPhase.LOCALLY_APPLIED, A.RETRY, local_review=True)
    assert retry.phase == ReviewPhase.GENERATED
    assert retry.effects == (EffectKind.DISCARD_LOCAL, EffectKind.REGENERATE, EffectKind.SHOW_DIFF)

    explain = transition(ReviewPhase.GENERATED, A.EXPLAIN, local_review=False)
    assert explain.phase == ReviewPhase.GENERATED

    assert transition(ReviewPhase.GENERATED, A.ABORT, local_review=True).effects == ()


def test_invalid_transitions_raise():
    with pytest.raises(InvalidTransitionError):
        transition(ReviewPhase.GENERATED, A.APPLY, local_review=False)
    with pytest.raises(InvalidTransitionError):
        transition(ReviewPhase.GENERATED, A.COMMIT, local_review=True)
    with pytest.raises(InvalidTransitionError):
        transition(ReviewPhase.LOCALLY_APPLIED, A.DIRECT, local_review=True)
    with pytest.raises(InvalidTransitionError):
        transition(ReviewPhase.COMMITTED, A.EXPLAIN, local_review=True)


def test_notices():
    body = with_notices("Body\n", [])
    assert body.startswith("Body\n\n---\n\n")
    assert AI_NOTICE in body
    assert "edited by hand" not in body

    edited = with_notices("Body", ["src/app.py"])
    assert "> - `src/app.py`" in edited


# --- Driver -----------------------------------------------------------------

def test_apply_then_discard_restores_tree():
    ops = MemoryOps(ORIGINAL)
    driver = _driver(ops, ScriptedPrompter([A.APPLY, A.DISCARD]))
    session = ReviewSession(_change_set())

    result = driver.run(session)

    assert result.phase == ReviewPhase.ABORTED
    assert result.pull_request is None
    assert ops.files == ORIGINAL
    assert session.closed
    assert not session.applied_locally


def test_retry_from_applied_restores_before_regenerating():
    ops = MemoryOps(ORIGINAL)
    regenerated = make_change_set(
        FileChange(path="src/app.py", operation="modify", content="newer\n"),
        branch_name="feature/proj-1-v2",
    )
    generator = FakeGenerator(_change_set(), [regenerated], ops=ops)
    prompter = ScriptedPrompter([A.APPLY, A.RETRY, A.ABORT], feedback=["use a constant"])
    driver = _driver(ops, prompter, generator=generator)
    session = ReviewSession(_change_set())

    result = driver.run(session)

    assert generator.snapshots == [ORIGINAL]
    assert generator.feedback == ["use a constant"]
    assert result.change_set.branch_name == "feature/proj-1-v2"
    assert result.phase == ReviewPhase.ABORTED
    # back in the generated phase after the retry
    assert prompter.menus[-1][0] == ReviewPhase.GENERATED
    assert ops.files == ORIGINAL


def test_failing_regeneration_keeps_previous_change_set():
    ops = MemoryOps(ORIGINAL)
    unsafe = make_change_set(FileChange(path="src/app.py", operation="create", content="dup"))
    generator = FakeGenerator(_change_set(), [unsafe], ops=ops)
    sink = OutputSink.capture()
    driver = _driver(ops, ScriptedPrompter([A.RETRY, A.ABORT], ["try again"]), generator=generator, sink=sink)
    original = _change_set()
    session = ReviewSession(original)

    result = driver.run(session)

    assert result.change_set is original
    assert "Cannot create src/app.py: file already exists" in sink.text()
    assert "Keeping the previous changes." in sink.text()


def test_empty_feedback_skips_regeneration():
    ops = MemoryOps(ORIGINAL)
    generator = FakeGenerator(_change_set(), [], ops=ops)
    driver = _driver(ops, ScriptedPrompter([A.RETRY, A.ABORT], [""]), generator=generator)

    driver.run(ReviewSession(_change_set()))

    assert generator.feedback == []


def test_unparseable_regeneration_keeps_previous():
    class BrokenGenerator(FakeGenerator):
        def regenerate(self, ticket, repo, previous, feedback, on_token=None):
            raise GenerationParseError("Expecting value", "not json")

    ops = MemoryOps(ORIGINAL)
    original = _change_set()
    sink = OutputSink.capture()
    driver = _driver(ops, ScriptedPrompter([A.RETRY, A.ABORT], ["again"]),
                     generator=BrokenGenerator(original), sink=sink)

    result = driver.run(ReviewSession(original))

    assert result.change_set is original
    assert "Expecting value" in sink.text()


def test_regeneration_error_stops_indicator_and_propagates():
    class FailingGenerator(FakeGenerator):
        def regenerate(self, ticket, repo, previous, feedback, on_token=None):
            raise RuntimeError("provider unavailable")

    ops = MemoryOps(ORIGINAL)
    sink = OutputSink.capture()
    driver = _driver(ops, ScriptedPrompter([A.RETRY], ["again"]),
                     generator=FailingGenerator(_change_set()), sink=sink)

    with pytest.raises(RuntimeError, match="provider unavailable"):
        driver.run(ReviewSession(_change_set()))

    assert "Regeneration failed" in sink.text()
    assert ops.files == ORIGINAL


def test_commit_staged_reports_hand_edits():
    ops = MemoryOps(ORIGINAL)
    github = FakeGitHub()
    driver = _driver(ops, ScriptedPrompter([]), github=github)
    session = ReviewSession(_change_set())

    driver.step(session, A.APPLY)
    ops.files["src/helper.py"] = "def helper():\n    return 42\n"
    driver.step(session, A.COMMIT)

    assert driver.phase == ReviewPhase.COMMITTED
    assert ops.calls[-2:] == [
        ("create_branch", "feature/proj-1-thing"),
        ("commit_and_push", "feature/proj-1-thing", "feat(PROJ-1): thing", ["src/app.py", "src/helper.py"]),
    ]
    body = github.pull_requests[0]["body"]
    assert AI_NOTICE in body
    assert "> - `src/helper.py`" in body
    assert "`src/app.py`" not in body
    assert not session.applied_locally
    # committed edits stay on disk
    assert ops.files["src/helper.py"] == "def helper():\n    return 42\n"


def test_commit_staged_without_edits_has_only_ai_notice():
    ops = MemoryOps(ORIGINAL)
    github = FakeGitHub()
    driver = _driver(ops, ScriptedPrompter([A.APPLY, A.COMMIT]), github=github)

    result = driver.run(ReviewSession(_change_set()))

    assert result.pull_request.number == 1
    body = github.pull_requests[0]["body"]
    assert AI_NOTICE in body
    assert "edited by hand" not in body


def test_auto_approve_commits_directly():
    ops = MemoryOps(ORIGINAL)
    github = FakeGitHub()
    prompter = ScriptedPrompter([])
    driver = _driver(ops, prompter, github=github)

    result = driver.run(ReviewSession(_change_set()), auto_approve=True)

    assert result.phase == ReviewPhase.COMMITTED
    assert prompter.menus == []
    assert [c[0] for c in ops.calls] == ["create_branch", "apply_and_commit"]
    assert github.pull_requests[0]["body"] == "Body"
    assert github.pull_requests[0]["head"] == "feature/proj-1-thing"


def test_remote_backend_never_offers_apply():
    ops = MemoryOps(ORIGINAL, local=False)
    prompter = ScriptedPrompter([A.EXPLAIN, A.ABORT])
    driver = _driver(ops, prompter)

    result = driver.run(ReviewSession(_change_set()))

    assert result.phase == ReviewPhase.ABORTED
    assert all(A.APPLY not in menu for _, menu in prompter.menus)
    with pytest.raises(InvalidTransitionError):
        _driver(ops, prompter).step(ReviewSession(_change_set()), A.APPLY)


def test_interrupt_while_applied_discards():
    class InterruptingPrompter(ScriptedPrompter):
        def choose_action(self, phase, actions):
            if phase == ReviewPhase.LOCALLY_APPLIED:
                raise KeyboardInterrupt
            return super().choose_action(phase, actions)

    ops = MemoryOps(ORIGINAL)
    driver = _driver(ops, InterruptingPrompter([A.APPLY]))

    result = driver.run(ReviewSession(_change_set()))

    assert result.phase == ReviewPhase.ABORTED
    assert ops.files == ORIGINAL
