"""
The generator the orchestrator and review driver talk to: one object
wrapping the scout and the implementer over a shared router.
"""

from __future__ import annotations

from typing import Callable

from loguru import logger

from jira_to_pr.agents import AgentContext
from jira_to_pr.agents.implementer import ImplementerAgent
from jira_to_pr.agents.scout import ScoutAgent
from jira_to_pr.models import ChangeSet, RepoContext, Ticket
from jira_to_pr.router import Router

TokenCallback = Callable[[str], None]


class ChangeSetGenerator:
    def __init__(self, router: Router):
        self.router = router
        self.scout = ScoutAgent(router)
        self.implementer = ImplementerAgent(router)

    def select_relevant_files(self, ticket: Ticket, files: list[str]) -> list[str]:
        selected = self.scout.run(AgentContext(ticket=ticket, repo=RepoContext(files=files)))
        logger.debug(f"[SCOUT] {len(selected)} relevant files: {selected}")
        return selected

    def generate(
        self, ticket: Ticket, repo: RepoContext, on_token: TokenCallback | None = None
    ) -> ChangeSet:
        return self.implementer.run(AgentContext(ticket=ticket, repo=repo), on_token=on_token)

    def regenerate(
        self,
        ticket: Ticket,
        repo: RepoContext,
        previous: ChangeSet,
        feedback: str,
        on_token: TokenCallback | None = None,
    ) -> ChangeSet:
        context = AgentContext(ticket=ticket, repo=repo, previous=previous, feedback=feedback)
        return self.implementer.run(context, on_token=on_token)
