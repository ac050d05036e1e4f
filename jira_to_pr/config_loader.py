"""
Configuration loader for jira-to-pr.

Merges built-in defaults with a .jira-to-pr.json file (cwd, then home)
and environment overrides loaded from .jira-to-pr.env.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

CONFIG_FILE_NAME = ".jira-to-pr.json"
ENV_FILE_NAME = ".jira-to-pr.env"

# The tool's own persisted configuration; never a valid change target.
TOOL_CONFIG_FILES = (ENV_FILE_NAME, CONFIG_FILE_NAME)

AIProvider = Literal["anthropic", "openai", "ollama"]

DEFAULT_MODELS: dict[str, str] = {
    "anthropic": "claude-sonnet-4-20250514",
    "openai": "gpt-4o",
    "ollama": "llama3.1",
}


class ConfigError(Exception):
    pass


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class JiraConfig(BaseModel):
    base_url: str = ""
    email: str = ""
    api_token: str = ""
    project_key: str = ""
    label_filter: str | None = None


class GitHubConfig(BaseModel):
    token: str = ""
    owner: str = ""
    repo: str = ""
    base_branch: str = "main"


class AIConfig(BaseModel):
    provider: AIProvider = "anthropic"
    api_key: str = ""
    model: str = ""
    base_url: str | None = None

    @property
    def litellm_model(self) -> str:
        """Model string in LiteLLM's provider/model form."""
        model = self.model or DEFAULT_MODELS[self.provider]
        if "/" in model:
            return model
        return f"{self.provider}/{model}"


class SafetyConfig(BaseModel):
    max_files_to_change: int = 10
    max_lines_changed: int = 500
    require_acceptance_criteria: bool = True
    require_single_ticket: bool = True


class JiraToPRConfig(BaseModel):
    jira: JiraConfig = Field(default_factory=JiraConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)

    def redacted(self) -> dict[str, Any]:
        data = self.model_dump()
        for section, key in (("jira", "api_token"), ("github", "token"), ("ai", "api_key")):
            data[section][key] = "✓ set" if data[section][key] else "✗ not set"
        return data


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if value is None:
            continue
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _find_file(name: str, cwd: Path) -> Path | None:
    for candidate in (cwd / name, Path.home() / name):
        if candidate.exists():
            return candidate
    return None


def _load_file_config(cwd: Path) -> dict[str, Any]:
    path = _find_file(CONFIG_FILE_NAME, cwd)
    if not path:
        return {}
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"[CONFIG] Failed to parse config file at {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"[CONFIG] Ignoring {path}: expected a JSON object")
        return {}
    return data


def detect_provider() -> str | None:
    """Provider implied by whichever credentials are present, if any."""
    if os.environ.get("ANTHROPIC_API_KEY"):
        return "anthropic"
    if os.environ.get("OPENAI_API_KEY"):
        return "openai"
    if os.environ.get("OLLAMA_MODEL") or os.environ.get("OLLAMA_BASE_URL"):
        return "ollama"
    return None


def _env_int(name: str) -> int | None:
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"[CONFIG] Invalid integer for {name}: {raw}, ignoring")
        return None


def _env_flag(name: str) -> bool | None:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    return raw.lower() != "false"


def _load_env_config(cwd: Path, file_provider: str | None = None) -> dict[str, Any]:
    env_file = _find_file(ENV_FILE_NAME, cwd)
    if env_file:
        load_dotenv(env_file)

    provider = os.environ.get("AI_PROVIDER") or file_provider or detect_provider() or "anthropic"
    api_key = {
        "anthropic": os.environ.get("ANTHROPIC_API_KEY"),
        "openai": os.environ.get("OPENAI_API_KEY"),
    }.get(provider)
    model = os.environ.get(f"{provider.upper()}_MODEL")

    return {
        "jira": {
            "base_url": os.environ.get("JIRA_BASE_URL"),
            "email": os.environ.get("JIRA_EMAIL"),
            "api_token": os.environ.get("JIRA_API_TOKEN"),
            "project_key": os.environ.get("JIRA_PROJECT_KEY"),
            "label_filter": os.environ.get("JIRA_LABEL_FILTER"),
        },
        "github": {
            "token": os.environ.get("GITHUB_TOKEN"),
            "owner": os.environ.get("GITHUB_OWNER"),
            "repo": os.environ.get("GITHUB_REPO"),
            "base_branch": os.environ.get("GITHUB_BASE_BRANCH"),
        },
        "ai": {
            "provider": provider,
            "api_key": api_key,
            "model": model,
            "base_url": os.environ.get("OLLAMA_BASE_URL") or os.environ.get("OPENAI_BASE_URL"),
        },
        "safety": {
            "max_files_to_change": _env_int("MAX_FILES_TO_CHANGE"),
            "max_lines_changed": _env_int("MAX_LINES_CHANGED"),
            "require_acceptance_criteria": _env_flag("REQUIRE_ACCEPTANCE_CRITERIA"),
            "require_single_ticket": _env_flag("REQUIRE_SINGLE_TICKET"),
        },
    }


def load_config(cwd: Path | None = None) -> JiraToPRConfig:
    """
    Load config by merging:
      1. Built-in defaults (jira_to_pr/config.yaml)
      2. File overrides (.jira-to-pr.json in cwd or home)
      3. Environment overrides (after loading .jira-to-pr.env)
    """
    cwd = cwd or Path.cwd()

    with open(_DEFAULT_CONFIG_PATH, "r") as f:
        base: dict[str, Any] = yaml.safe_load(f) or {}

    file_config = _load_file_config(cwd)
    file_provider = (file_config.get("ai") or {}).get("provider")

    base = _deep_merge(base, file_config)
    base = _deep_merge(base, _load_env_config(cwd, file_provider))

    try:
        return JiraToPRConfig(**base)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def validate_config(config: JiraToPRConfig) -> list[str]:
    """Return the list of missing required settings (empty when valid)."""
    errors = []

    if not config.jira.base_url:
        errors.append("JIRA_BASE_URL is required")
    if not config.jira.email:
        errors.append("JIRA_EMAIL is required")
    if not config.jira.api_token:
        errors.append("JIRA_API_TOKEN is required")
    if not config.jira.project_key:
        errors.append("JIRA_PROJECT_KEY is required")

    if not config.github.token:
        errors.append("GITHUB_TOKEN is required")
    if not config.github.owner:
        errors.append("GITHUB_OWNER is required")
    if not config.github.repo:
        errors.append("GITHUB_REPO is required")

    if config.ai.provider != "ollama" and not config.ai.api_key:
        key_name = "ANTHROPIC_API_KEY" if config.ai.provider == "anthropic" else "OPENAI_API_KEY"
        errors.append(f"{key_name} is required for {config.ai.provider} provider")

    return errors


def validate_api_keys() -> dict[str, bool]:
    """Check which credentials are available."""
    return {
        "JIRA_API_TOKEN":    bool(os.environ.get("JIRA_API_TOKEN")),
        "GITHUB_TOKEN":      bool(os.environ.get("GITHUB_TOKEN")),
        "ANTHROPIC_API_KEY": bool(os.environ.get("ANTHROPIC_API_KEY")),
        "OPENAI_API_KEY":    bool(os.environ.get("OPENAI_API_KEY")),
    }
