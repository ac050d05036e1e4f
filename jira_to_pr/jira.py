"""
Jira Cloud REST client (API v3).

Fetches tickets by key or JQL and flattens Atlassian Document Format
bodies into the plain text the generator prompt is built from.
"""

from __future__ import annotations

import re
from typing import Any

import httpx
from loguru import logger

from jira_to_pr.config_loader import JiraConfig
from jira_to_pr.models import Ticket

ACCEPTANCE_CRITERIA_FIELD = "customfield_10016"

SEARCH_FIELDS = [
    "summary",
    "description",
    "status",
    "assignee",
    "labels",
    "issuetype",
    "priority",
    "components",
    ACCEPTANCE_CRITERIA_FIELD,
]

_AC_PATTERN = re.compile(
    r"acceptance\s*criteria[:\s]*(.+?)(?=\n\n|\n[A-Z]|\Z)",
    re.IGNORECASE | re.DOTALL,
)


class JiraError(Exception):
    def __init__(self, message: str, status: int | None = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


# ---------------------------------------------------------------------------
# Atlassian Document Format
# ---------------------------------------------------------------------------

def _node_text(node: dict[str, Any]) -> str:
    if node.get("type") == "text":
        return node.get("text", "")
    return "".join(_node_text(child) for child in node.get("content") or [])


def adf_to_text(doc: dict[str, Any] | str | None) -> str:
    """Flatten an ADF document. Plain strings pass through unchanged."""
    if doc is None:
        return ""
    if isinstance(doc, str):
        return doc

    parts = []
    for node in doc.get("content") or []:
        kind = node.get("type")
        if kind in ("paragraph", "heading"):
            parts.append(_node_text(node) + "\n")
        elif kind in ("bulletList", "orderedList"):
            items = []
            for idx, item in enumerate(node.get("content") or [], start=1):
                prefix = f"{idx}. " if kind == "orderedList" else "- "
                items.append(prefix + _node_text(item))
            parts.append("\n".join(items) + "\n")
        else:
            parts.append(_node_text(node))
    return "".join(parts).strip()


def extract_acceptance_criteria(fields: dict[str, Any], description: str | None) -> str | None:
    custom = fields.get(ACCEPTANCE_CRITERIA_FIELD)
    if custom:
        text = adf_to_text(custom)
        if text:
            return text

    if description:
        match = _AC_PATTERN.search(description)
        if match:
            return match.group(1).strip() or None
    return None


def parse_ticket(issue: dict[str, Any]) -> Ticket:
    fields = issue.get("fields") or {}
    description = adf_to_text(fields["description"]) if fields.get("description") else None

    return Ticket(
        key=issue["key"],
        summary=fields.get("summary") or "",
        description=description,
        acceptance_criteria=extract_acceptance_criteria(fields, description),
        status=(fields.get("status") or {}).get("name") or "Unknown",
        assignee=(fields.get("assignee") or {}).get("displayName"),
        labels=fields.get("labels") or [],
        issue_type=(fields.get("issuetype") or {}).get("name") or "Unknown",
        priority=(fields.get("priority") or {}).get("name") or "Medium",
        components=[c["name"] for c in fields.get("components") or [] if c.get("name")],
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class JiraClient:
    def __init__(
        self,
        config: JiraConfig,
        transport: httpx.BaseTransport | None = None,
        timeout_s: float = 30.0,
    ):
        self.project_key = config.project_key
        self.label_filter = config.label_filter
        self._client = httpx.Client(
            base_url=f"{config.base_url.rstrip('/')}/rest/api/3",
            auth=(config.email, config.api_token),
            headers={"Accept": "application/json"},
            timeout=timeout_s,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        logger.debug(f"[JIRA] {method} {path}")
        response = self._client.request(method, path, **kwargs)
        if response.is_error:
            raise JiraError(
                f"Jira API error ({response.status_code}): {response.text}",
                status=response.status_code,
                body=response.text,
            )
        return response.json()

    def default_jql(self) -> str:
        query = f"project = {self.project_key}"
        if self.label_filter:
            query += f' AND labels = "{self.label_filter}"'
        return query + " AND status != Done ORDER BY created DESC"

    def get_ticket(self, key: str) -> Ticket:
        return parse_ticket(self._request("GET", f"/issue/{key}"))

    def search_tickets(self, jql: str | None = None, max_results: int = 50) -> list[Ticket]:
        query = jql or self.default_jql()
        data = self._request(
            "POST",
            "/search/jql",
            json={"jql": query, "maxResults": max_results, "fields": SEARCH_FIELDS},
        )
        issues = data.get("issues") or []
        logger.debug(f"[JIRA] {len(issues)} issues for: {query}")
        return [parse_ticket(issue) for issue in issues]
