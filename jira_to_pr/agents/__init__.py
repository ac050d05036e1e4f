"""
jira-to-pr Agent Roster

Each agent is:
  - A system prompt
  - A structured input template
  - A constrained output parser

Agents are stateless between calls. The review session owns the
current change set; the agents only turn a context into a new one.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable

from loguru import logger
from pydantic import BaseModel

from jira_to_pr.models import ChangeSet, ProjectInstructions, RepoContext, Ticket
from jira_to_pr.router import Router, RouterResponse

# Checked in priority order; the first non-empty file wins
INSTRUCTION_FILES = (
    "CLAUDE.md",
    ".claude/instructions.md",
    ".claude/CLAUDE.md",
    ".github/CLAUDE.md",
    "AGENTS.md",
    ".cursor/rules",
    ".cursorrules",
)


class AgentContext(BaseModel):
    """Shared context passed to every agent invocation."""
    ticket: Ticket
    repo: RepoContext = RepoContext()
    previous: ChangeSet | None = None
    feedback: str | None = None


class BaseAgent(ABC):
    """
    Base class for jira-to-pr agents.

    Subclasses define:
      - role: maps to a router model
      - system_prompt: default system message
      - build_messages(): constructs the chat messages
      - parse_response(): extracts structured output
    """

    role: str = "unknown"
    system_prompt: str = "You are a helpful assistant."

    def __init__(self, router: Router):
        self.router = router

    def run(
        self,
        context: AgentContext,
        on_token: Callable[[str], None] | None = None,
        **kwargs,
    ) -> Any:
        """Execute the agent: build messages → call model → parse."""
        messages = self.build_messages(context)
        response = self.router.complete(
            role=self.role,
            messages=messages,
            on_token=on_token,
            **kwargs,
        )
        return self.parse_response(response, context)

    @abstractmethod
    def build_messages(self, context: AgentContext) -> list[dict[str, str]]:
        ...

    @abstractmethod
    def parse_response(self, response: RouterResponse, context: AgentContext) -> Any:
        ...

    def _system_msg(self, content: str | None = None) -> dict[str, str]:
        return {"role": "system", "content": content or self.system_prompt}

    def _user_msg(self, content: str) -> dict[str, str]:
        return {"role": "user", "content": content}


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def load_project_instructions(repo_path: Path) -> ProjectInstructions | None:
    for name in INSTRUCTION_FILES:
        path = repo_path / name
        if not path.is_file():
            continue
        try:
            content = path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"[AGENTS] Skipping unreadable {name}: {e}")
            continue
        if content:
            return ProjectInstructions(file=name, content=content)
    return None
