"""
🔭 Scout: Relevant File Selection

Picks the handful of existing files whose contents the implementer
should see. Falls back to keyword matching on the ticket text when the
model does not answer with a usable JSON array.
"""

from __future__ import annotations

import json
import re

from loguru import logger

from jira_to_pr.agents import AgentContext, BaseAgent, strip_code_fences
from jira_to_pr.router import RouterResponse

MAX_RELEVANT_FILES = 10


def keyword_match(context: AgentContext, limit: int = MAX_RELEVANT_FILES) -> list[str]:
    ticket = context.ticket
    text = f"{ticket.summary} {ticket.description or ''}".lower()
    keywords = [w for w in re.split(r"\W+", text) if len(w) > 3]
    matches = [f for f in context.repo.files if any(k in f.lower() for k in keywords)]
    return matches[:limit]


class ScoutAgent(BaseAgent):
    role = "scout"

    system_prompt = (
        "You are a code analysis assistant. Given a Jira ticket and a list of files "
        "in a repository, identify which files are most likely to be relevant for "
        f"implementing the ticket. Return a JSON array of file paths, maximum "
        f"{MAX_RELEVANT_FILES} files. Order by relevance (most relevant first). "
        "Only return the JSON array, no other text."
    )

    def build_messages(self, context: AgentContext) -> list[dict[str, str]]:
        ticket = context.ticket
        files = "\n".join(context.repo.files)
        user_content = f"""Ticket: {ticket.key}
Summary: {ticket.summary}
Description: {ticket.description or 'None'}
Acceptance Criteria: {ticket.acceptance_criteria or 'None'}

Files in repository:
{files}

Return a JSON array of the most relevant file paths for implementing this ticket."""

        return [self._system_msg(), self._user_msg(user_content)]

    def parse_response(self, response: RouterResponse, context: AgentContext) -> list[str]:
        try:
            parsed = json.loads(strip_code_fences(response.content))
        except json.JSONDecodeError:
            logger.debug("[SCOUT] Unparseable answer, falling back to keyword matching")
            return keyword_match(context)

        if not isinstance(parsed, list):
            return []

        known = set(context.repo.files)
        return [f for f in parsed if isinstance(f, str) and f in known][:MAX_RELEVANT_FILES]
