"""CLI commands for running generated feature patches through lint, test and git."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from .completion import LLMCompletionService
from .config import DEFAULT_CONFIG_NAME, RunnerConfig, load_config
from .errors import ConfigurationError, LintExhaustedError, RunnerError, TestFailureError
from .models import LLMClientError, ResponsesClient
from .records import SupabaseFeatureStore
from .runner import Runner
from .tools.applier import NO_FILES_MESSAGE
from .tools.patch_parser import list_patch_paths

APP_HELP = "Apply AI-generated feature patches, self-heal lint failures, and push a branch."
USAGE = "Usage: feature-agent run <feature_request_id> [--dry-run]"

app = typer.Typer(help=APP_HELP)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
    )
    if not verbose:
        # Telemetry lines are JSON for machines; keep them out of the default console output.
        logging.getLogger("feature_agent.telemetry").setLevel(logging.WARNING)


def _load(config: str, env_file: Optional[Path]) -> RunnerConfig:
    try:
        return load_config(Path(config), env_file=env_file)
    except ConfigurationError as error:
        typer.echo(f"Configuration error: {error}", err=True)
        raise typer.Exit(code=1) from error


def _build_runner(config: RunnerConfig) -> Runner:
    """Wire the record store and completion service from validated credentials."""
    credentials = config.require_credentials()
    store = SupabaseFeatureStore(
        credentials.supabase_url or "",
        credentials.supabase_service_role_key or "",
        table=config.table,
    )
    client = ResponsesClient(
        api_key=credentials.openai_api_key,
        model=config.model,
        timeout=config.model_timeout,
    )
    return Runner(config, store=store, completion=LLMCompletionService(client))


@app.command()
def run(
    feature_id: Optional[str] = typer.Argument(None, help="Identifier of the feature request to apply."),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Simulate branch creation and file writes; stop before lint, tests and push.",
    ),
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the runner configuration file (optional).",
    ),
    env_file: Optional[Path] = typer.Option(
        None,
        "--env-file",
        help="Dotenv file with credentials (defaults to .env.local, then .env).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Apply a feature request's code patch on a new branch and push it."""
    _configure_logging(verbose)
    runner_config = _load(config, env_file)

    try:
        runner_config.require_credentials()
    except ConfigurationError as error:
        typer.echo(f"Runner error: {error}", err=True)
        raise typer.Exit(code=1) from error

    if not feature_id or not feature_id.strip():
        typer.echo(USAGE, err=True)
        raise typer.Exit(code=1)

    runner = _build_runner(runner_config)
    try:
        outcome = runner.run(feature_id.strip(), dry_run=dry_run)
    except LintExhaustedError as error:
        typer.echo("Lint failed after all self-healing attempts; nothing was committed.", err=True)
        typer.echo(error.output, err=True)
        raise typer.Exit(code=1) from error
    except TestFailureError as error:
        typer.echo("Tests failed. Fix issues or adjust the runner; nothing was committed.", err=True)
        raise typer.Exit(code=1) from error
    except (RunnerError, LLMClientError) as error:
        typer.echo(f"Runner error: {error}", err=True)
        raise typer.Exit(code=1) from error

    if outcome.dry_run:
        typer.echo(f"Dry run complete: {len(outcome.files)} file(s) would be written on {outcome.branch}.")
        for path in outcome.files:
            typer.echo(f"- {path}")
        typer.echo(
            f"Run summary left at {outcome.summary_path}; delete it before a real run (the working tree must be clean)."
        )
        return

    typer.echo(f"Branch pushed: {outcome.branch}")
    typer.echo(f"Lint passed after {outcome.lint_attempts} attempt(s); tests {'ran' if outcome.tests_ran else 'skipped'}.")


@app.command()
def inspect(
    patch_file: Path = typer.Argument(..., help="Markdown patch file to parse."),
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the runner configuration file (optional).",
    ),
) -> None:
    """List the files a markdown patch would write and check each path."""
    runner_config = _load(config, None)
    try:
        markdown = patch_file.read_text(encoding="utf-8")
    except OSError as error:
        typer.echo(f"Unable to read {patch_file}: {error}", err=True)
        raise typer.Exit(code=1) from error

    paths = list_patch_paths(markdown)
    if not paths:
        typer.echo(NO_FILES_MESSAGE, err=True)
        raise typer.Exit(code=1)

    rejected = 0
    for path in paths:
        verdict = runner_config.policy.evaluate(path)
        if verdict.allowed:
            typer.echo(f"ok        {path}")
        else:
            rejected += 1
            typer.echo(f"{verdict.verdict:<9} {path}")
    if rejected:
        typer.echo(f"{rejected} path(s) rejected by the write policy.", err=True)
        raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
