"""
jira-to-pr Data Model

Values that flow between the generator, the safety gate, the review
state machine and the file operations backends.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


Operation = Literal["create", "modify", "delete"]


# ---------------------------------------------------------------------------
# Change Set
# ---------------------------------------------------------------------------

class FileChange(BaseModel):
    """A single proposed file creation, edit or deletion."""

    model_config = ConfigDict(populate_by_name=True)

    path: str
    operation: Operation
    content: str | None = None
    original_content: str | None = Field(default=None, alias="originalContent")

    @model_validator(mode="after")
    def require_content(self) -> "FileChange":
        if self.operation != "delete" and self.content is None:
            raise ValueError(f"{self.operation} of {self.path} requires content")
        return self

    @property
    def line_count(self) -> int:
        if self.operation == "delete" or self.content is None:
            return 0
        return len(self.content.split("\n"))


class ChangeSet(BaseModel):
    """
    The full proposed edit: ordered file changes plus branch, commit
    and pull request metadata.
    """

    model_config = ConfigDict(populate_by_name=True)

    changes: list[FileChange]
    explanation: str = "No explanation provided"
    branch_name: str = Field(alias="branchName")
    commit_message: str = Field(alias="commitMessage")
    pr_title: str = Field(alias="prTitle")
    pr_body: str = Field(alias="prBody")

    @model_validator(mode="after")
    def unique_paths(self) -> "ChangeSet":
        seen: set[str] = set()
        for change in self.changes:
            if change.path in seen:
                raise ValueError(f"Duplicate path in change set: {change.path}")
            seen.add(change.path)
        return self

    @property
    def paths(self) -> list[str]:
        return [c.path for c in self.changes]

    def total_content_lines(self) -> int:
        return sum(c.line_count for c in self.changes)


# ---------------------------------------------------------------------------
# Safety
# ---------------------------------------------------------------------------

class SafetyVerdict(BaseModel):
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def passed(self) -> bool:
        return not self.errors

    def merge(self, other: "SafetyVerdict") -> "SafetyVerdict":
        return SafetyVerdict(
            errors=self.errors + other.errors,
            warnings=self.warnings + other.warnings,
        )


# ---------------------------------------------------------------------------
# Ticket + Repo Context (collaborator boundaries)
# ---------------------------------------------------------------------------

class Ticket(BaseModel):
    """Issue tracker ticket. Only key/summary/description/AC drive generation."""

    key: str
    summary: str
    description: str | None = None
    acceptance_criteria: str | None = None
    status: str = "Unknown"
    assignee: str | None = None
    labels: list[str] = Field(default_factory=list)
    issue_type: str = "Unknown"
    priority: str = "Medium"
    components: list[str] = Field(default_factory=list)


class ProjectInstructions(BaseModel):
    file: str
    content: str


class RepoContext(BaseModel):
    files: list[str] = Field(default_factory=list)
    relevant_file_contents: dict[str, str] = Field(default_factory=dict)
    language: str | None = None
    project_instructions: ProjectInstructions | None = None
    pr_template: str | None = None


class PullRequest(BaseModel):
    url: str
    number: int


class WorkflowOptions(BaseModel):
    ticket_key: str | None = None
    jql: str | None = None
    dry_run: bool = False
    auto_approve: bool = False
    verbose: bool = False
    remote: bool = False
    explain: bool = False
    allow_dirty: bool = False
    allow_large_diff: bool = False
    allow_missing_tests: bool = False


# ---------------------------------------------------------------------------
# Review Session
# ---------------------------------------------------------------------------

@dataclass
class ChangeRecord:
    """
    A staged change together with the pre-image captured before it
    touched the working tree. existed=False means the path did not exist.
    created_dirs lists the parent directories the write had to create.
    """
    change: FileChange
    pre_image: bytes | None = None
    existed: bool = False
    created_dirs: list[str] = field(default_factory=list)


@dataclass
class ReviewSession:
    change_set: ChangeSet
    applied_locally: bool = False
    records: list[ChangeRecord] = field(default_factory=list)
    closed: bool = False

    def stage(self, records: list[ChangeRecord]) -> None:
        self.records = list(records)
        self.applied_locally = True

    def unstage(self) -> list[ChangeRecord]:
        records, self.records = self.records, []
        self.applied_locally = False
        return records

    def replace(self, change_set: ChangeSet) -> None:
        if self.applied_locally:
            raise RuntimeError("Cannot replace a change set that is still staged")
        self.change_set = change_set
