import json
from pathlib import Path

import pytest

from jira_to_pr.config_loader import (
    ConfigError,
    JiraToPRConfig,
    load_config,
    validate_config,
)


def test_defaults(workdir: Path):
    config = load_config(workdir)
    assert config.ai.provider == "anthropic"
    assert config.github.base_branch == "main"
    assert config.safety.max_files_to_change == 10
    assert config.safety.max_lines_changed == 500
    assert config.safety.require_acceptance_criteria
    assert config.jira.label_filter is None


def test_file_then_env_precedence(workdir: Path, monkeypatch):
    (workdir / ".jira-to-pr.json").write_text(json.dumps({
        "jira": {"project_key": "FILE", "email": "file@acme.io"},
        "github": {"base_branch": "develop"},
        "safety": {"max_files_to_change": 3},
    }))
    monkeypatch.setenv("JIRA_PROJECT_KEY", "ENV")
    monkeypatch.setenv("MAX_LINES_CHANGED", "50")

    config = load_config(workdir)

    assert config.jira.project_key == "ENV"
    assert config.jira.email == "file@acme.io"
    assert config.github.base_branch == "develop"
    assert config.safety.max_files_to_change == 3
    assert config.safety.max_lines_changed == 50


def test_env_file_is_loaded(workdir: Path):
    (workdir / ".jira-to-pr.env").write_text(
        "JIRA_BASE_URL=https://acme.atlassian.net\n"
        "ANTHROPIC_API_KEY=sk-ant-test\n"
        "REQUIRE_SINGLE_TICKET=false\n"
    )

    config = load_config(workdir)

    assert config.jira.base_url == "https://acme.atlassian.net"
    assert config.ai.api_key == "sk-ant-test"
    assert config.safety.require_single_ticket is False


def test_home_directory_fallback(workdir: Path):
    home = Path.home()
    (home / ".jira-to-pr.json").write_text(json.dumps({"github": {"owner": "acme"}}))

    assert load_config(workdir).github.owner == "acme"


def test_provider_precedence(workdir: Path, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
    assert load_config(workdir).ai.provider == "openai"
    assert load_config(workdir).ai.api_key == "sk-openai"

    (workdir / ".jira-to-pr.json").write_text(json.dumps({"ai": {"provider": "ollama"}}))
    config = load_config(workdir)
    assert config.ai.provider == "ollama"
    assert config.ai.api_key == ""

    monkeypatch.setenv("AI_PROVIDER", "anthropic")
    assert load_config(workdir).ai.provider == "anthropic"


def test_bad_inputs_are_ignored(workdir: Path, monkeypatch):
    (workdir / ".jira-to-pr.json").write_text("{not json")
    monkeypatch.setenv("MAX_FILES_TO_CHANGE", "lots")

    config = load_config(workdir)
    assert config.safety.max_files_to_change == 10


def test_invalid_values_raise_config_error(workdir: Path):
    (workdir / ".jira-to-pr.json").write_text(json.dumps({"ai": {"provider": "gemini"}}))
    with pytest.raises(ConfigError):
        load_config(workdir)


def test_validate_config():
    errors = validate_config(JiraToPRConfig())
    assert "JIRA_BASE_URL is required" in errors
    assert "GITHUB_TOKEN is required" in errors
    assert "ANTHROPIC_API_KEY is required for anthropic provider" in errors

    ollama = JiraToPRConfig.model_validate({"ai": {"provider": "ollama"}})
    assert not any("API_KEY" in e for e in validate_config(ollama))


def test_redacted_hides_secrets():
    config = JiraToPRConfig.model_validate({"jira": {"api_token": "secret"}, "github": {"owner": "acme"}})
    data = config.redacted()
    assert data["jira"]["api_token"] == "✓ set"
    assert data["github"]["token"] == "✗ not set"
    assert data["github"]["owner"] == "acme"
    assert "secret" not in json.dumps(data)
