"""
🔧 Implementer: Change Set Generation

Single-shot generation: the model sees the ticket, the repository
context and (on a retry) its previous attempt plus the operator's
feedback, and answers with one JSON change set.
"""

from __future__ import annotations

import json
import re
from typing import Any

from pydantic import ValidationError

from jira_to_pr.agents import AgentContext, BaseAgent, strip_code_fences
from jira_to_pr.models import ChangeSet, RepoContext, Ticket
from jira_to_pr.router import RouterResponse

VALID_OPERATIONS = ("create", "modify", "delete")
FILE_STRUCTURE_PREVIEW = 50


class GenerationParseError(Exception):
    """The model's answer could not be turned into a change set."""

    def __init__(self, message: str, raw_text: str):
        super().__init__(f"Failed to parse AI response: {message}\n\nRaw response:\n{raw_text}")
        self.reason = message
        self.raw_text = raw_text


def slugify(text: str, max_len: int = 30) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")[:max_len]


def default_pr_body(ticket: Ticket, explanation: str | None) -> str:
    return f"""## Summary
This PR implements [{ticket.key}]({ticket.key}).

{explanation or ''}

## Changes
{ticket.summary}

## Acceptance Criteria
{ticket.acceptance_criteria or 'See Jira ticket for details'}

## Testing
- [ ] Manual testing completed
- [ ] Unit tests added/updated (if applicable)

---
*Generated by jira-to-pr*"""


def parse_change_set(text: str, ticket: Ticket) -> ChangeSet:
    """Validate a raw model answer and fill missing metadata from the ticket."""
    try:
        parsed = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise GenerationParseError(str(e), text) from e

    if not isinstance(parsed, dict) or not isinstance(parsed.get("changes"), list):
        raise GenerationParseError("Response must contain a changes array", text)

    for change in parsed["changes"]:
        if not isinstance(change, dict) or not change.get("path") or not change.get("operation"):
            raise GenerationParseError("Each change must have path and operation", text)
        if change["operation"] not in VALID_OPERATIONS:
            raise GenerationParseError(f"Unknown operation: {change['operation']}", text)
        if change["operation"] != "delete" and not isinstance(change.get("content"), str):
            raise GenerationParseError("Non-delete changes must have content", text)

    explanation = parsed.get("explanation") or "No explanation provided"
    payload: dict[str, Any] = {
        "changes": parsed["changes"],
        "explanation": explanation,
        "branch_name": parsed.get("branchName")
        or f"feature/{ticket.key.lower()}-{slugify(ticket.summary)}",
        "commit_message": parsed.get("commitMessage") or f"feat({ticket.key}): {ticket.summary}",
        "pr_title": parsed.get("prTitle") or f"[{ticket.key}] {ticket.summary}",
        "pr_body": parsed.get("prBody") or default_pr_body(ticket, parsed.get("explanation")),
    }

    try:
        return ChangeSet.model_validate(payload)
    except ValidationError as e:
        raise GenerationParseError(str(e), text) from e


class ImplementerAgent(BaseAgent):
    role = "implementer"

    system_prompt = """You are a senior software engineer tasked with implementing features and fixes based on Jira tickets.
Your goal is to produce minimal, clean, production-ready code changes that satisfy the acceptance criteria.

Guidelines:
- Write minimal code that satisfies the requirements - no over-engineering
- Follow the existing code style and patterns in the repository
- Only modify files that are absolutely necessary
- Include proper error handling where appropriate
- Write code that a careful senior engineer would trust
- Do not add unnecessary comments or documentation unless the code is complex
"""

    response_format = """
Response format:
You must respond with a valid JSON object containing the following fields:
{
  "changes": [
    {
      "path": "relative/path/to/file.ts",
      "content": "full file content here",
      "operation": "create" | "modify" | "delete"
    }
  ],
  "explanation": "Brief explanation of changes",
  "branchName": "feature/ticket-key-short-description",
  "commitMessage": "feat: short description of change",
  "prTitle": "Short PR title",
  "prBody": "Detailed PR description following the template above (if provided)"
}

IMPORTANT: Your response must be ONLY the JSON object, no markdown code blocks or other text."""

    def _build_system_prompt(self, repo: RepoContext) -> str:
        prompt = self.system_prompt

        if repo.project_instructions:
            prompt += f"""
## Project-Specific Instructions

The following instructions were found in the project's instruction file ({repo.project_instructions.file}).
You MUST follow these instructions when generating code:

{repo.project_instructions.content}

---
"""

        if repo.pr_template:
            prompt += f"""
## Pull Request Template

The repository has a PR template. You MUST use this template structure for the prBody field.
Fill in the sections appropriately based on the changes you make.

Template:
{repo.pr_template}

---
"""

        structure = ", ".join(repo.files[:FILE_STRUCTURE_PREVIEW])
        if len(repo.files) > FILE_STRUCTURE_PREVIEW:
            structure += "..."

        prompt += f"""
Repository context:
- Primary language: {repo.language or 'Unknown'}
- File structure: {structure}
"""
        return prompt + self.response_format

    def _build_ticket_prompt(self, ticket: Ticket, repo: RepoContext) -> str:
        prompt = f"""Please implement the following Jira ticket:

## Ticket: {ticket.key}
**Summary:** {ticket.summary}
**Type:** {ticket.issue_type}
**Priority:** {ticket.priority}

### Description:
{ticket.description or 'No description provided'}

### Acceptance Criteria:
{ticket.acceptance_criteria or 'No explicit acceptance criteria provided'}
"""
        if repo.relevant_file_contents:
            prompt += "\n### Relevant Existing Files:\n"
            for path, content in repo.relevant_file_contents.items():
                prompt += f"\n#### {path}\n```\n{content}\n```\n"
        return prompt

    def build_messages(self, context: AgentContext) -> list[dict[str, str]]:
        user_content = self._build_ticket_prompt(context.ticket, context.repo)

        if context.previous is not None and context.feedback is not None:
            previous = "\n".join(
                f"- {c.operation} {c.path}" for c in context.previous.changes
            )
            user_content += f"""
## Previous Attempt

The previous code generation produced these changes:
{previous}

Explanation: {context.previous.explanation}

## User Feedback

The user wants the following changes:
{context.feedback}

Please regenerate the code taking this feedback into account.
Respond with a JSON object as specified in the system prompt."""
        else:
            user_content += """
Please analyze the ticket and produce the minimal code changes needed to satisfy the acceptance criteria.
Respond with a JSON object as specified in the system prompt."""

        return [self._system_msg(self._build_system_prompt(context.repo)), self._user_msg(user_content)]

    def parse_response(self, response: RouterResponse, context: AgentContext) -> ChangeSet:
        return parse_change_set(response.content, context.ticket)
