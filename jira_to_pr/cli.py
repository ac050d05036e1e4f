"""
jira-to-pr CLI: The Interface

  jira-to-pr run PROJ-123            (one ticket by key)
  jira-to-pr run --jql "<query>"     (ticket found by JQL)

Plus utilities:
  - jira-to-pr list      (tickets the default or given JQL matches)
  - jira-to-pr config    (effective configuration, secrets redacted)
  - jira-to-pr init      (write .jira-to-pr.env and update .gitignore)
  - jira-to-pr status    (API keys and system tools)
  - jira-to-pr mcp       (serve the workflow as MCP tools over stdio)
"""

from __future__ import annotations

import re
import shutil
import sys
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from jira_to_pr.config_loader import (
    DEFAULT_MODELS,
    ConfigError,
    ENV_FILE_NAME,
    load_config,
    validate_api_keys,
    validate_config,
)
from jira_to_pr.controller import Controller
from jira_to_pr.identity import BANNER, __codename__, __tagline__, __version__
from jira_to_pr.jira import JiraClient, JiraError
from jira_to_pr.mcp_server import WorkflowTools, build_server
from jira_to_pr.models import WorkflowOptions
from jira_to_pr.output import OutputSink
from jira_to_pr.workspace.git import GitRepo
from jira_to_pr.workspace.local import ensure_gitignore_entries

app = typer.Typer(
    name="jira-to-pr",
    help=f"{__codename__}: {__tagline__}",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()
# stdout carries the MCP protocol while the server runs
err_console = Console(stderr=True)


def version_callback(value: bool):
    if value:
        console.print(f"{__codename__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    pass


# ---------------------------------------------------------------------------
# Banner
# ---------------------------------------------------------------------------


def _print_banner():
    console.print(f"[bright_blue]{BANNER}[/]")
    console.print(f"  [dim]v{__version__} · {__tagline__}[/]\n")


def _load_config(out: Console = console):
    try:
        return load_config()
    except ConfigError as e:
        out.print(f"[red]✗ {escape(str(e))}[/]")
        raise typer.Exit(1)


def _load_valid_config(out: Console = console):
    config = _load_config(out)
    errors = validate_config(config)
    if errors:
        out.print("[red]Configuration errors:[/]")
        for error in errors:
            out.print(f"  [red]✗ {error}[/]")
        out.print(f"\n[dim]Run [bold]jira-to-pr init[/] or set them in {ENV_FILE_NAME}[/]")
        raise typer.Exit(1)
    return config


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def run(
    ticket: Optional[str] = typer.Argument(None, help="Jira ticket key (e.g. PROJ-123)"),
    ticket_opt: Optional[str] = typer.Option(None, "--ticket", "-t", help="Jira ticket key"),
    jql: Optional[str] = typer.Option(None, "--jql", "-q", help="Custom JQL query to find tickets"),
    dry_run: bool = typer.Option(False, "--dry-run", "-d", help="Preview changes without applying them"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Auto-approve changes without prompting"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    remote: bool = typer.Option(False, "--remote", "-r", help="Use GitHub API only (no local git required)"),
    explain: bool = typer.Option(False, "--explain", "-e", help="Show AI reasoning for the generated changes"),
    allow_dirty: bool = typer.Option(False, "--allow-dirty", help="Allow uncommitted changes in working tree"),
    allow_large_diff: bool = typer.Option(False, "--allow-large-diff", help="Allow diffs exceeding safety limits"),
    allow_missing_tests: bool = typer.Option(False, "--allow-missing-tests", help="Suppress test coverage warnings"),
):
    """Turn a Jira ticket into a reviewed pull request."""
    _print_banner()
    _configure_logging(verbose)

    config = _load_valid_config()
    options = WorkflowOptions(
        ticket_key=ticket or ticket_opt,
        jql=jql,
        dry_run=dry_run,
        auto_approve=yes,
        verbose=verbose,
        remote=remote,
        explain=explain,
        allow_dirty=allow_dirty,
        allow_large_diff=allow_large_diff,
        allow_missing_tests=allow_missing_tests,
    )

    controller = Controller(config, sink=OutputSink(console))
    result = controller.run(options)

    status = result.get("status", "unknown")
    status_color = {
        "committed": "green",
        "dry_run": "yellow",
        "aborted": "yellow",
    }.get(status, "red")
    console.print(f"\n[bold {status_color}]Status: {status}[/]")

    if status in ("safety_failed", "error"):
        raise typer.Exit(1)


@app.command("list")
def list_tickets(
    jql: Optional[str] = typer.Option(None, "--jql", "-q", help="Custom JQL query"),
    limit: int = typer.Option(10, "--limit", "-n", help="Maximum number of tickets to show"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """List tickets from Jira."""
    _configure_logging(verbose)
    config = _load_valid_config()
    jira = JiraClient(config.jira)

    try:
        with console.status("Fetching tickets...", spinner="dots"):
            tickets = jira.search_tickets(jql, max_results=limit)
    except JiraError as e:
        console.print(f"[red]✗ {escape(str(e))}[/]")
        raise typer.Exit(1)
    finally:
        jira.close()

    if not tickets:
        console.print("[yellow]No tickets found.[/]")
        return

    table = Table(title=f"Tickets ({len(tickets)})", border_style="cyan")
    table.add_column("Key", style="bold")
    table.add_column("Type")
    table.add_column("Priority")
    table.add_column("Status")
    table.add_column("AC", justify="center")
    table.add_column("Summary")

    for t in tickets[:limit]:
        table.add_row(
            t.key,
            t.issue_type,
            t.priority,
            t.status,
            "[green]✓[/]" if t.acceptance_criteria else "[dim]✗[/]",
            escape(t.summary),
        )
    console.print(table)


@app.command("config")
def show_config():
    """Show the effective configuration (secrets redacted)."""
    config = _load_config()
    data = config.redacted()

    table = Table(title="Configuration", border_style="cyan")
    table.add_column("Section", style="bold")
    table.add_column("Key")
    table.add_column("Value")

    for section, values in data.items():
        for key, value in values.items():
            shown = "[dim]not set[/]" if value in ("", None) else escape(str(value))
            table.add_row(section, key, shown)
            section = ""
    console.print(table)

    errors = validate_config(config)
    if errors:
        console.print("\n[yellow]Missing settings:[/]")
        for error in errors:
            console.print(f"  [yellow]⚠ {error}[/]")


def _detect_github_repo(repo: Path) -> tuple[str, str]:
    url = GitRepo(repo).remote_url() or ""
    match = re.search(r"github\.com[:/]([^/]+)/([^/.]+)", url)
    return (match.group(1), match.group(2)) if match else ("", "")


@app.command()
def init(
    repo: Optional[Path] = typer.Argument(None, help="Path to repository"),
):
    """Create .jira-to-pr.env in a repository."""
    _print_banner()

    repo = (repo or Path.cwd()).resolve()
    env_path = repo / ENV_FILE_NAME

    if env_path.exists() and not Confirm.ask(f"{ENV_FILE_NAME} already exists. Overwrite?", default=False):
        console.print("[yellow]Keeping existing configuration.[/]")
        raise typer.Exit()

    owner, name = _detect_github_repo(repo)

    console.print("[dim]\n  Step 1/3: Jira Configuration\n[/]")
    jira_url = Prompt.ask("Jira base URL", default="https://yourcompany.atlassian.net")
    jira_email = Prompt.ask("Jira email")
    jira_token = Prompt.ask("Jira API token", password=True)
    project_key = Prompt.ask("Jira project key (e.g. PROJ)").upper()

    console.print("[dim]\n  Step 2/3: GitHub Configuration\n[/]")
    github_token = Prompt.ask("GitHub token", password=True)
    github_owner = Prompt.ask("GitHub owner", default=owner) if owner else Prompt.ask("GitHub owner")
    github_repo = Prompt.ask("GitHub repository", default=name) if name else Prompt.ask("GitHub repository")
    base_branch = Prompt.ask("Base branch", default="main")

    console.print("[dim]\n  Step 3/3: AI Provider\n[/]")
    provider = Prompt.ask("Provider", choices=list(DEFAULT_MODELS), default="anthropic")

    lines = [
        "# jira-to-pr configuration",
        "",
        f"JIRA_BASE_URL={jira_url}",
        f"JIRA_EMAIL={jira_email}",
        f"JIRA_API_TOKEN={jira_token}",
        f"JIRA_PROJECT_KEY={project_key}",
        "",
        f"GITHUB_TOKEN={github_token}",
        f"GITHUB_OWNER={github_owner}",
        f"GITHUB_REPO={github_repo}",
        f"GITHUB_BASE_BRANCH={base_branch}",
        "",
        f"AI_PROVIDER={provider}",
    ]
    if provider == "ollama":
        model = Prompt.ask("Ollama model", default=DEFAULT_MODELS["ollama"])
        lines.append(f"OLLAMA_MODEL={model}")
    else:
        key_name = f"{provider.upper()}_API_KEY"
        lines.append(f"{key_name}={Prompt.ask(key_name, password=True)}")

    env_path.write_text("\n".join(lines) + "\n")
    added = ensure_gitignore_entries(repo)

    console.print(f"\n[green]✅ Wrote {env_path}[/]")
    if added:
        console.print(f"  [dim]Added to .gitignore: {', '.join(added)}[/]")
    console.print("  [dim]Next: jira-to-pr list, then jira-to-pr run <TICKET>[/]")


@app.command()
def status():
    """Check API keys and system tools."""
    _print_banner()

    # loading the config also loads the env files the key check reads
    config = _load_config()
    keys = validate_api_keys()
    key_table = Table(title="API Keys", border_style="cyan")
    key_table.add_column("Key")
    key_table.add_column("Status")

    for key, available in keys.items():
        status_str = "[green]✓ Available[/]" if available else "[red]✗ Missing[/]"
        key_table.add_row(key, status_str)

    console.print(key_table)

    console.print(Panel(
        f"Provider: [bold]{config.ai.provider}[/]\n"
        f"Model:    {config.ai.litellm_model}\n"
        f"Limits:   {config.safety.max_files_to_change} files / "
        f"{config.safety.max_lines_changed} lines",
        title="Generator",
        border_style="cyan",
    ))

    tools_table = Table(title="System Tools", border_style="cyan")
    tools_table.add_column("Tool")
    tools_table.add_column("Status")

    for tool in ["git"]:
        found = shutil.which(tool)
        s = f"[green]✓ {found}[/]" if found else "[dim]✗ Not found[/]"
        tools_table.add_row(tool, s)

    console.print(tools_table)


@app.command("mcp")
def serve_mcp(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging (to stderr)"),
):
    """Serve list_tickets, get_ticket and create_pr as MCP tools over stdio."""
    config = _load_valid_config(err_console)

    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        format="{time:HH:mm:ss} | {level:<7} | {message}",
    )

    logger.info(f"[MCP] Serving jira-to-pr v{__version__} over stdio")
    build_server(WorkflowTools(config)).run()


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    if verbose:
        logger.add(
            lambda msg: console.print(f"[dim]{escape(str(msg).rstrip())}[/]", highlight=False),
            level="DEBUG",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )
    else:
        logger.add(
            lambda msg: console.print(f"[dim]{escape(str(msg).rstrip())}[/]", highlight=False),
            level="WARNING",
            format="{message}",
        )


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app()
