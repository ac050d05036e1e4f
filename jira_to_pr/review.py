"""
jira-to-pr Review State Machine

  GENERATED ──apply──▶ LOCALLY_APPLIED ──commit──▶ COMMITTED
      │  ▲                   │
      │  └──────retry────────┤
      ├──direct──▶ COMMITTED └──discard──▶ ABORTED
      └──abort───▶ ABORTED

transition() is pure: it maps (phase, action) to the next phase and the
ordered list of effects to run. ReviewDriver owns the session, asks the
prompter for actions and executes effects against the file operations
backend. The apply transition exists only when the backend supports
local review.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from loguru import logger
from rich.panel import Panel
from rich.prompt import Prompt

from jira_to_pr.agents.generator import ChangeSetGenerator
from jira_to_pr.agents.implementer import GenerationParseError
from jira_to_pr.diff import render_all_diffs
from jira_to_pr.github import GitHubClient
from jira_to_pr.models import ChangeSet, PullRequest, RepoContext, ReviewSession, SafetyVerdict, Ticket
from jira_to_pr.output import OutputSink, ThinkingIndicator
from jira_to_pr.workspace import FileOperations


class ReviewPhase(str, Enum):
    GENERATED = "generated"
    LOCALLY_APPLIED = "locally_applied"
    COMMITTED = "committed"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (ReviewPhase.COMMITTED, ReviewPhase.ABORTED)


class ReviewAction(str, Enum):
    EXPLAIN = "explain"
    RETRY = "retry"
    DIRECT = "direct"
    APPLY = "apply"
    ABORT = "abort"
    DISCARD = "discard"
    COMMIT = "commit"


class EffectKind(str, Enum):
    SHOW_EXPLANATION = "show_explanation"
    REGENERATE = "regenerate"
    SHOW_DIFF = "show_diff"
    PUBLISH = "publish"
    APPLY_LOCAL = "apply_local"
    DISCARD_LOCAL = "discard_local"
    PUBLISH_STAGED = "publish_staged"


class InvalidTransitionError(Exception):
    pass


@dataclass(frozen=True)
class Transition:
    phase: ReviewPhase
    effects: tuple[EffectKind, ...] = ()


_G, _L = ReviewPhase.GENERATED, ReviewPhase.LOCALLY_APPLIED
_A = ReviewAction
_E = EffectKind

_TRANSITIONS: dict[tuple[ReviewPhase, ReviewAction], Transition] = {
    (_G, _A.EXPLAIN): Transition(_G, (_E.SHOW_EXPLANATION,)),
    (_G, _A.APPLY): Transition(_L, (_E.APPLY_LOCAL,)),
    (_G, _A.DIRECT): Transition(ReviewPhase.COMMITTED, (_E.PUBLISH,)),
    (_G, _A.RETRY): Transition(_G, (_E.REGENERATE, _E.SHOW_DIFF)),
    (_G, _A.ABORT): Transition(ReviewPhase.ABORTED),
    (_L, _A.EXPLAIN): Transition(_L, (_E.SHOW_EXPLANATION,)),
    (_L, _A.COMMIT): Transition(ReviewPhase.COMMITTED, (_E.PUBLISH_STAGED,)),
    (_L, _A.RETRY): Transition(_G, (_E.DISCARD_LOCAL, _E.REGENERATE, _E.SHOW_DIFF)),
    (_L, _A.DISCARD): Transition(ReviewPhase.ABORTED, (_E.DISCARD_LOCAL,)),
}

_LOCAL_ONLY = {(_G, _A.APPLY)}

ACTION_LABELS = {
    ReviewAction.EXPLAIN: "Explain the changes",
    ReviewAction.APPLY: "Apply locally to review and test",
    ReviewAction.DIRECT: "Commit directly and create PR",
    ReviewAction.RETRY: "Retry with feedback",
    ReviewAction.ABORT: "Abort",
    ReviewAction.COMMIT: "Commit and create PR",
    ReviewAction.DISCARD: "Discard changes and exit",
}


def available_actions(phase: ReviewPhase, local_review: bool) -> list[ReviewAction]:
    """Menu for a phase, in display order. Empty for terminal phases."""
    return [
        action for (from_phase, action) in _TRANSITIONS
        if from_phase == phase
        and (local_review or (from_phase, action) not in _LOCAL_ONLY)
    ]


def transition(phase: ReviewPhase, action: ReviewAction, *, local_review: bool) -> Transition:
    if phase.terminal:
        raise InvalidTransitionError(f"Review already {phase.value}; no further actions")
    if action not in available_actions(phase, local_review):
        raise InvalidTransitionError(f"'{action.value}' is not allowed from {phase.value}")
    return _TRANSITIONS[(phase, action)]


# ---------------------------------------------------------------------------
# PR body notices
# ---------------------------------------------------------------------------

AI_NOTICE = (
    "> 🤖 This pull request was generated by jira-to-pr from the linked ticket "
    "and reviewed locally before commit."
)


def manual_edit_notice(paths: list[str]) -> str:
    listed = "\n".join(f"> - `{p}`" for p in paths)
    return f"> ✏️ The following files were edited by hand after generation:\n{listed}"


def with_notices(body: str, edited_paths: list[str]) -> str:
    notices = [AI_NOTICE]
    if edited_paths:
        notices.append(manual_edit_notice(edited_paths))
    return body.rstrip() + "\n\n---\n\n" + "\n>\n".join(notices) + "\n"


# ---------------------------------------------------------------------------
# Prompting
# ---------------------------------------------------------------------------

class ReviewPrompter(ABC):

    @abstractmethod
    def choose_action(self, phase: ReviewPhase, actions: list[ReviewAction]) -> ReviewAction:
        ...

    @abstractmethod
    def ask_feedback(self) -> str:
        ...


class ConsolePrompter(ReviewPrompter):
    def __init__(self, sink: OutputSink):
        self.sink = sink

    def choose_action(self, phase: ReviewPhase, actions: list[ReviewAction]) -> ReviewAction:
        self.sink.print("\n[bold]What would you like to do?[/]")
        for idx, action in enumerate(actions, start=1):
            self.sink.print(f"  [cyan]{idx}[/]. {ACTION_LABELS[action]}")
        choice = Prompt.ask(
            "Choice",
            choices=[str(i) for i in range(1, len(actions) + 1)],
            console=self.sink.console,
        )
        return actions[int(choice) - 1]

    def ask_feedback(self) -> str:
        return Prompt.ask("What should be changed?", console=self.sink.console).strip()


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------

def show_git_operations(sink: OutputSink, change_set: ChangeSet) -> None:
    sink.print("\n[bold]🔀 Git Operations:[/]")
    sink.dim(f"   Branch: {change_set.branch_name}")
    sink.dim(f"   Commit: {change_set.commit_message}")
    sink.dim(f"   PR: {change_set.pr_title}")


def show_explanation(sink: OutputSink, change_set: ChangeSet) -> None:
    sink.print(Panel(change_set.explanation, title="💡 Explanation", border_style="cyan"))


@dataclass
class ReviewResult:
    phase: ReviewPhase
    change_set: ChangeSet
    pull_request: PullRequest | None = None


class ReviewDriver:
    """
    Runs one review session to a terminal phase.

    gate re-validates a regenerated change set; a failing set is
    reported and dropped, and the previous one stays current.
    """

    def __init__(
        self,
        ops: FileOperations,
        generator: ChangeSetGenerator,
        github: GitHubClient,
        sink: OutputSink,
        prompter: ReviewPrompter,
        ticket: Ticket,
        repo: RepoContext,
        gate: Callable[[ChangeSet], SafetyVerdict],
    ):
        self.ops = ops
        self.generator = generator
        self.github = github
        self.sink = sink
        self.prompter = prompter
        self.ticket = ticket
        self.repo = repo
        self.gate = gate
        self.local_review = ops.supports_local_review()
        self.phase = ReviewPhase.GENERATED
        self.pull_request: PullRequest | None = None

    def run(self, session: ReviewSession, auto_approve: bool = False) -> ReviewResult:
        try:
            while not self.phase.terminal:
                if auto_approve:
                    action = ReviewAction.DIRECT
                else:
                    actions = available_actions(self.phase, self.local_review)
                    action = self.prompter.choose_action(self.phase, actions)
                self.step(session, action)
        except KeyboardInterrupt:
            self.sink.warning("Interrupted")
            if self.phase == ReviewPhase.LOCALLY_APPLIED:
                self.step(session, ReviewAction.DISCARD)
            elif not self.phase.terminal:
                self.step(session, ReviewAction.ABORT)

        return ReviewResult(self.phase, session.change_set, self.pull_request)

    def step(self, session: ReviewSession, action: ReviewAction) -> Transition:
        result = transition(self.phase, action, local_review=self.local_review)
        logger.debug(
            f"[REVIEW] {self.phase.value} --{action.value}--> {result.phase.value} "
            f"{[e.value for e in result.effects]}"
        )

        for effect in result.effects:
            self._execute(effect, session)

        self.phase = result.phase
        if self.phase.terminal:
            session.closed = True
            if self.phase == ReviewPhase.ABORTED:
                self.sink.warning("Aborted by user.")
        return result

    # --- Effects ----------------------------------------------------------

    def _execute(self, effect: EffectKind, session: ReviewSession) -> None:
        handler = {
            EffectKind.SHOW_EXPLANATION: self._show_explanation,
            EffectKind.REGENERATE: self._regenerate,
            EffectKind.SHOW_DIFF: self._show_diff,
            EffectKind.PUBLISH: self._publish,
            EffectKind.APPLY_LOCAL: self._apply_local,
            EffectKind.DISCARD_LOCAL: self._discard_local,
            EffectKind.PUBLISH_STAGED: self._publish_staged,
        }[effect]
        handler(session)

    def _show_explanation(self, session: ReviewSession) -> None:
        show_explanation(self.sink, session.change_set)

    def _show_diff(self, session: ReviewSession) -> None:
        render_all_diffs(self.sink, session.change_set.changes, self.ops.read_file)
        show_git_operations(self.sink, session.change_set)

    def _regenerate(self, session: ReviewSession) -> None:
        feedback = self.prompter.ask_feedback()
        if not feedback:
            self.sink.warning("No feedback given, keeping the current changes")
            return

        indicator = ThinkingIndicator(self.sink)
        indicator.start("Regenerating with feedback")
        try:
            candidate = self.generator.regenerate(
                self.ticket, self.repo, session.change_set, feedback,
                on_token=indicator.on_token,
            )
        except GenerationParseError as e:
            indicator.fail("Regeneration produced an unusable response")
            logger.debug(f"[REVIEW] Raw response:\n{e.raw_text}")
            self.sink.warning(f"{e.reason}. Keeping the previous changes.")
            return
        except (Exception, KeyboardInterrupt):
            indicator.fail("Regeneration failed")
            raise
        indicator.succeed("Changes regenerated")

        verdict = self.gate(candidate)
        if not verdict.passed:
            self.sink.error("Regenerated changes failed safety checks:")
            for error in verdict.errors:
                self.sink.error(f"  {error}")
            self.sink.warning("Keeping the previous changes.")
            return

        for warning in verdict.warnings:
            self.sink.warning(f"  {warning}")
        session.replace(candidate)

    def _apply_local(self, session: ReviewSession) -> None:
        records = self.ops.apply_locally(session.change_set.changes)
        session.stage(records)
        self.sink.success(f"Applied {len(records)} changes to your working tree")
        self.sink.dim("   Review and test them now, then come back to commit, retry or discard.")

    def _discard_local(self, session: ReviewSession) -> None:
        self.ops.discard(session.unstage())
        self.sink.success("Working tree restored")

    def _open_pr(self, change_set: ChangeSet, body: str) -> None:
        with self.sink.status("Creating pull request..."):
            self.pull_request = self.github.create_pull_request(
                title=change_set.pr_title,
                body=body,
                head=change_set.branch_name,
            )
        self.sink.success(f"Successfully created PR #{self.pull_request.number}")
        self.sink.print(f"  [blue]{self.pull_request.url}[/]")

    def _publish(self, session: ReviewSession) -> None:
        cs = session.change_set
        with self.sink.status("Creating branch..."):
            self.ops.create_branch(cs.branch_name)
        self.sink.success(f"Created branch: {cs.branch_name}")

        with self.sink.status("Committing changes..."):
            self.ops.apply_and_commit(cs.branch_name, cs.changes, cs.commit_message)
        self.sink.success(f"Committed {len(cs.changes)} file changes")

        self._open_pr(cs, cs.pr_body)

    def detect_manual_edits(self, session: ReviewSession) -> list[str]:
        """Staged paths whose on-disk content no longer matches what was applied."""
        edited = []
        for record in session.records:
            change = record.change
            expected = None if change.operation == "delete" else change.content
            if self.ops.read_file(change.path) != expected:
                edited.append(change.path)
        return edited

    def _publish_staged(self, session: ReviewSession) -> None:
        cs = session.change_set
        edited = self.detect_manual_edits(session)
        if edited:
            self.sink.warning(f"{len(edited)} file(s) were edited by hand; committing them as they are")

        with self.sink.status("Creating branch..."):
            self.ops.create_branch(cs.branch_name)
        self.sink.success(f"Created branch: {cs.branch_name}")

        with self.sink.status("Committing changes..."):
            self.ops.commit_and_push(cs.branch_name, cs.commit_message, cs.paths)
        self.sink.success(f"Committed {len(cs.changes)} file changes")

        session.unstage()
        self._open_pr(cs, with_notices(cs.pr_body, edited))
