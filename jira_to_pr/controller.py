"""
jira-to-pr Controller: The Orchestrator

It is NOT smart. It is deterministic.

Pipeline:
  Ticket → Readiness → Context → Generate → Safety Gate → Diff Preview
  → (dry run stops here) → Review → Publish

It never writes code and never touches the working tree itself. The
generator proposes, the safety gate vets, the review driver and the
file operations backend act.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from loguru import logger
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from jira_to_pr.agents import load_project_instructions
from jira_to_pr.agents.generator import ChangeSetGenerator
from jira_to_pr.config_loader import JiraToPRConfig
from jira_to_pr.diff import render_all_diffs
from jira_to_pr.github import GitHubClient
from jira_to_pr.jira import JiraClient
from jira_to_pr.models import ChangeSet, RepoContext, ReviewSession, SafetyVerdict, Ticket, WorkflowOptions
from jira_to_pr.output import OutputSink, ThinkingIndicator
from jira_to_pr.review import (
    ConsolePrompter,
    ReviewDriver,
    ReviewPhase,
    ReviewPrompter,
    show_explanation,
    show_git_operations,
)
from jira_to_pr.router import Router
from jira_to_pr.safety import SafetyLimits, SafetyOverrides, check_tree_consistency, evaluate
from jira_to_pr.workspace import FileOperations, create_file_operations

TICKET_PREVIEW_LINES = 5


class SafetyCheckError(Exception):
    pass


class DirtyWorkingTreeError(Exception):
    pass


class TicketError(Exception):
    pass


class Controller:
    """
    Runs one ticket through to a pull request.

    Collaborators are built from config unless injected, so callers
    (and tests) can swap any of them.
    """

    def __init__(
        self,
        config: JiraToPRConfig,
        sink: OutputSink | None = None,
        jira: JiraClient | None = None,
        github: GitHubClient | None = None,
        generator: ChangeSetGenerator | None = None,
        file_ops: FileOperations | None = None,
        prompter: ReviewPrompter | None = None,
        repo_path: Path | None = None,
    ):
        self.config = config
        self.sink = sink or OutputSink()
        self.repo_path = (repo_path or Path.cwd()).resolve()
        self.jira = jira or JiraClient(config.jira)
        self.github = github or GitHubClient(config.github)
        self.generator = generator or ChangeSetGenerator(Router(config.ai))
        self.prompter = prompter or ConsolePrompter(self.sink)
        self._file_ops = file_ops

    def run(self, options: WorkflowOptions) -> dict[str, Any]:
        result: dict[str, Any] = {
            "status": "pending",
            "ticket": None,
            "pr_url": None,
            "pr_number": None,
        }

        ops = self._file_ops or create_file_operations(
            self.github,
            options.remote,
            repo_path=self.repo_path,
            base_branch=self.config.github.base_branch,
        )

        try:
            # ── 1. Ticket ──
            ticket = self._fetch_ticket(options)
            result["ticket"] = ticket.key

            # ── 2. Readiness ──
            self._check_readiness(ops, options)

            # ── 3. Context ──
            repo = self._gather_context(ops, ticket, options)

            # ── 4. Generate ──
            change_set = self._generate(ticket, repo)

            # ── 5. Safety gate ──
            limits = SafetyLimits.from_config(self.config.safety)
            overrides = SafetyOverrides(
                allow_large_diff=options.allow_large_diff,
                allow_missing_tests=options.allow_missing_tests,
            )

            def gate(candidate: ChangeSet) -> SafetyVerdict:
                verdict = evaluate(candidate, repo.files, limits, overrides)
                return verdict.merge(check_tree_consistency(candidate, repo.files))

            self._validate_safety(gate(change_set))

            # ── 6. Preview ──
            render_all_diffs(self.sink, change_set.changes, ops.read_file)
            show_git_operations(self.sink, change_set)
            if options.explain:
                show_explanation(self.sink, change_set)

            if options.dry_run:
                self.sink.warning("Dry run: no changes will be applied.")
                result["status"] = "dry_run"
                return result

            # ── 7. Review + publish ──
            driver = ReviewDriver(
                ops=ops,
                generator=self.generator,
                github=self.github,
                sink=self.sink,
                prompter=self.prompter,
                ticket=ticket,
                repo=repo,
                gate=gate,
            )
            review = driver.run(ReviewSession(change_set), auto_approve=options.auto_approve)

            if review.phase == ReviewPhase.COMMITTED and review.pull_request:
                result["status"] = "committed"
                result["pr_url"] = review.pull_request.url
                result["pr_number"] = review.pull_request.number
            else:
                result["status"] = "aborted"

        except SafetyCheckError as e:
            result["status"] = "safety_failed"
            result["error"] = str(e)
        except KeyboardInterrupt:
            self.sink.warning("Interrupted.")
            result["status"] = "aborted"
        except Exception as e:
            logger.opt(exception=e).debug("[CONTROLLER] Run failed")
            self.sink.error(f"Workflow failed: {e}")
            result["status"] = "error"
            result["error"] = str(e)

        self._print_usage()
        return result

    # -----------------------------------------------------------------------
    # Steps
    # -----------------------------------------------------------------------

    def _fetch_ticket(self, options: WorkflowOptions) -> Ticket:
        with self.sink.status("Fetching Jira ticket(s)..."):
            if options.ticket_key:
                tickets = [self.jira.get_ticket(options.ticket_key)]
            else:
                tickets = self.jira.search_tickets(options.jql)
        self.sink.success(f"Found {len(tickets)} ticket(s)")

        if not tickets:
            raise TicketError("No matching tickets found")
        if self.config.safety.require_single_ticket and len(tickets) != 1:
            raise TicketError(
                f"Expected exactly 1 ticket, found {len(tickets)}. "
                "Pass a ticket key or disable require_single_ticket in config."
            )

        ticket = tickets[0]
        self._print_ticket(ticket)

        if self.config.safety.require_acceptance_criteria and not ticket.acceptance_criteria:
            raise TicketError(
                f"Ticket {ticket.key} has no acceptance criteria. "
                "Please add acceptance criteria or disable require_acceptance_criteria in config."
            )
        return ticket

    def _check_readiness(self, ops: FileOperations, options: WorkflowOptions) -> None:
        if options.remote:
            self.sink.dim("  Running in remote mode (no local git)")
            return
        if options.allow_dirty:
            self.sink.dim("  Skipping clean working tree check (--allow-dirty)")
            return

        status = ops.check_ready()
        if not status.ready:
            self.sink.error("Working tree is not clean")
            raise DirtyWorkingTreeError(status.message or "Working tree is not clean")
        self.sink.success("Working tree is clean")

    def _gather_context(self, ops: FileOperations, ticket: Ticket, options: WorkflowOptions) -> RepoContext:
        with self.sink.status("Analyzing repository structure..."):
            files = ops.list_files()
            relevant = self.generator.select_relevant_files(ticket, files)
            contents = {}
            for path in relevant:
                content = ops.read_file(path)
                if content:
                    contents[path] = content
        self.sink.success(f"Analyzed {len(files)} files, {len(relevant)} relevant")

        instructions = None if options.remote else load_project_instructions(self.repo_path)
        template = ops.get_pr_template()
        language = self.github.get_repo_info().get("language")

        if instructions:
            self.sink.dim(f"  Found project instructions: {instructions.file}")
        if template:
            self.sink.dim("  Found PR template")
        if options.verbose:
            self.sink.dim("Relevant files:")
            for path in relevant:
                self.sink.dim(f"  - {path}")

        return RepoContext(
            files=files,
            relevant_file_contents=contents,
            language=language,
            project_instructions=instructions,
            pr_template=template,
        )

    def _generate(self, ticket: Ticket, repo: RepoContext) -> ChangeSet:
        indicator = ThinkingIndicator(self.sink)
        indicator.start("Generating code with AI")
        try:
            change_set = self.generator.generate(ticket, repo, on_token=indicator.on_token)
        except Exception:
            indicator.fail("Code generation failed")
            raise
        indicator.succeed("Code generated")
        return change_set

    def _validate_safety(self, verdict: SafetyVerdict) -> None:
        if not verdict.passed:
            self.sink.error("Safety checks failed")
            for error in verdict.errors:
                self.sink.error(f"  {error}")
            raise SafetyCheckError("Safety checks failed. Aborting.")

        self.sink.success("Safety checks passed")
        for warning in verdict.warnings:
            self.sink.warning(f"  {warning}")

    # -----------------------------------------------------------------------
    # Display
    # -----------------------------------------------------------------------

    def _print_ticket(self, ticket: Ticket) -> None:
        body = [
            f"[dim]Type:[/] {ticket.issue_type}  |  [dim]Priority:[/] {ticket.priority}"
            f"  |  [dim]Status:[/] {ticket.status}",
        ]
        for label, text in (("Description", ticket.description), ("Acceptance Criteria", ticket.acceptance_criteria)):
            if not text:
                continue
            lines = text.split("\n")
            body.append(f"\n[bold]{label}:[/]")
            body.extend(escape(line) for line in lines[:TICKET_PREVIEW_LINES])
            if len(lines) > TICKET_PREVIEW_LINES:
                body.append("...")

        self.sink.print(Panel(
            "\n".join(body),
            title=f"📋 {ticket.key}: {escape(ticket.summary)}",
            border_style="blue",
        ))

    def _print_usage(self) -> None:
        router = getattr(self.generator, "router", None)
        if not isinstance(router, Router) or not router.tracker.usage.call_count:
            return
        summary = router.tracker.summary()
        table = Table(show_header=False, box=None)
        table.add_row("Tokens", f"{summary['total_tokens']:,}")
        table.add_row("Cost", f"${summary['estimated_cost']:.4f}")
        table.add_row("Calls", str(summary["call_count"]))
        self.sink.print(Panel(table, title="💸 Usage", border_style="green"))
