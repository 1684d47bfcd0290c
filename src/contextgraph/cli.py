# src/contextgraph/cli.py
"""contextgraph Command Line Interface.

Entry point for the contextgraph CLI tool.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from contextgraph import __version__
from contextgraph.contracts import (
    ContextGraphError,
    OutputStyle,
    ReplayRequest,
    TraceRun,
    parse_render_request,
)
from contextgraph.core.config import ContextGraphSettings, load_settings

if TYPE_CHECKING:
    from contextgraph.core.history import RunHistory

__all__ = [
    "app",
]

OutputFormat = Literal["text", "json"]

app = typer.Typer(
    name="contextgraph",
    help="contextgraph: render, replay and compare prompt context graphs.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"contextgraph version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from a .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs.",
    ),
) -> None:
    """contextgraph: render, replay and compare prompt context graphs."""
    from contextgraph.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "WARNING")

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)


# === Helpers ===


def _fail(message: str) -> typer.Exit:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    return typer.Exit(1)


@contextmanager
def _reported_errors() -> Iterator[None]:
    """Turn contextgraph errors into a red message and exit code 1."""
    try:
        yield
    except ContextGraphError as e:
        raise _fail(str(e)) from None


def _load_config(settings: Path | None) -> ContextGraphSettings:
    try:
        return load_settings(settings.expanduser() if settings is not None else None)
    except (YamlParserError, YamlScannerError) as e:
        raise _fail(f"YAML syntax error in {settings}: {e.problem}") from None
    except FileNotFoundError:
        raise _fail(f"settings file not found: {settings}") from None
    except ValidationError as e:
        typer.secho("Configuration errors:", fg=typer.colors.RED, err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise _fail(f"file not found: {path}") from None
    except json.JSONDecodeError as e:
        raise _fail(f"invalid JSON in {path}: {e}") from None


def _open_history(config: ContextGraphSettings) -> RunHistory:
    from contextgraph.core.history import RunHistory, RunHistoryDB

    return RunHistory(RunHistoryDB.from_url(config.history.url))


def _emit(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def _emit_trace(trace: TraceRun, output_format: OutputFormat) -> None:
    if output_format == "json":
        _emit(trace.to_dict())
        return
    typer.echo(trace.text)
    for message in trace.messages:
        if message.severity.value == "info":
            continue
        color = typer.colors.RED if message.severity.value == "error" else typer.colors.YELLOW
        typer.secho(f"[{message.severity.value}] {message.code}: {message.message}", fg=color, err=True)


# === Commands ===


def _render_command(request_file: Path, settings: Path | None, style: OutputStyle | None, local_only: bool) -> TraceRun:
    from contextgraph.engine import ContextEvaluator

    config = _load_config(settings)
    payload = _read_json(request_file)
    if not isinstance(payload, dict):
        raise _fail(f"{request_file}: request must be a JSON object")
    if style is not None:
        payload["outputStyle"] = style.value
    else:
        payload.setdefault("outputStyle", config.rendering.output_style.value)

    with _reported_errors():
        request = parse_render_request(payload)
        with ContextEvaluator.from_settings(config) as evaluator:
            return evaluator.execute(request) if local_only else evaluator.render(request)


@app.command()
def preview(
    request_file: Path = typer.Argument(..., help="Render request JSON file."),
    settings: Path | None = typer.Option(None, "--settings", "-s", help="Path to settings YAML file."),
    style: OutputStyle | None = typer.Option(None, "--style", help="Override the output style."),
    output_format: OutputFormat = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'."),
) -> None:
    """Render a context graph, resolving dynamic variables."""
    _emit_trace(_render_command(request_file, settings, style, local_only=False), output_format)


@app.command()
def execute(
    request_file: Path = typer.Argument(..., help="Render request JSON file."),
    settings: Path | None = typer.Option(None, "--settings", "-s", help="Path to settings YAML file."),
    style: OutputStyle | None = typer.Option(None, "--style", help="Override the output style."),
    output_format: OutputFormat = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'."),
) -> None:
    """Render locally: static values only, dynamic variables as [name]."""
    _emit_trace(_render_command(request_file, settings, style, local_only=True), output_format)


@app.command()
def replay(
    dataset: str = typer.Option(..., "--dataset", "-d", help="Dataset ID."),
    project: str = typer.Option(..., "--project", "-p", help="Project ID."),
    limit: int | None = typer.Option(None, "--limit", min=0, help="Rows to replay."),
    offset: int = typer.Option(0, "--offset", min=0, help="First row to replay."),
    settings: Path | None = typer.Option(None, "--settings", "-s", help="Path to settings YAML file."),
    output_format: OutputFormat = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'."),
) -> None:
    """Replay dataset rows through a stored project and record each run."""
    from contextgraph.core.stores import JsonDatasetStore, JsonProjectStore
    from contextgraph.engine import ContextEvaluator, ReplayOrchestrator

    config = _load_config(settings)
    data_dir = Path(config.stores.data_dir)
    with _reported_errors(), ContextEvaluator.from_settings(config) as evaluator:
        orchestrator = ReplayOrchestrator(
            evaluator,
            JsonProjectStore(data_dir),
            JsonDatasetStore(data_dir),
            _open_history(config),
            default_limit=config.replay.default_limit,
            max_limit=config.replay.max_limit,
            output_style=config.rendering.output_style,
        )
        summaries = orchestrator.replay(ReplayRequest(dataset_id=dataset, project_id=project, limit=limit, offset=offset))

    if output_format == "json":
        _emit([s.to_dict() for s in summaries])
        return
    for s in summaries:
        color = typer.colors.GREEN if s.status.value == "succeeded" else typer.colors.RED
        typer.secho(
            f"row {s.row_index:>4}  {s.status.value:<9}  {s.output_digest[:12]}  missing={s.missing_variables_count}  {s.run_id}",
            fg=color,
        )
    typer.echo(f"{len(summaries)} row(s) replayed")


@app.command()
def history(
    dataset: str = typer.Option(..., "--dataset", "-d", help="Dataset ID."),
    row: int | None = typer.Option(None, "--row", "-r", min=0, help="Only runs of this row."),
    limit: int | None = typer.Option(None, "--limit", min=1, help="Maximum runs to list."),
    settings: Path | None = typer.Option(None, "--settings", "-s", help="Path to settings YAML file."),
    output_format: OutputFormat = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'."),
) -> None:
    """List recorded runs, most recent first."""
    config = _load_config(settings)
    with _reported_errors():
        summaries = _open_history(config).list_dataset_runs(dataset, row_index=row, limit=limit)

    if output_format == "json":
        _emit([s.to_dict() for s in summaries])
        return
    if not summaries:
        typer.echo("No runs recorded.")
        return
    for s in summaries:
        typer.echo(f"{s.created_at}  row {s.row_index:>4} #{s.sequence:<3} {s.status.value:<9}  {s.output_digest[:12]}  {s.run_id}")


@app.command("show-run")
def show_run(
    run_id: str = typer.Argument(..., help="Run ID."),
    settings: Path | None = typer.Option(None, "--settings", "-s", help="Path to settings YAML file."),
    output_format: OutputFormat = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'."),
) -> None:
    """Show one recorded run with its trace."""
    config = _load_config(settings)
    with _reported_errors():
        record = _open_history(config).get_run(run_id)

    if output_format == "json":
        _emit(record.to_dict())
        return
    typer.echo(f"run {record.run_id}  dataset {record.dataset_id} row {record.row_index}  {record.status.value}")
    typer.echo(f"digest {record.output_digest}")
    typer.echo("")
    _emit_trace(record.trace, "text")


@app.command()
def compare(
    left: str | None = typer.Option(None, "--left", help="Baseline run ID."),
    right: str | None = typer.Option(None, "--right", help="Run ID compared against the baseline."),
    dataset: str | None = typer.Option(None, "--dataset", "-d", help="Compare the two latest runs of a row."),
    row: int | None = typer.Option(None, "--row", "-r", min=0, help="Row index (with --dataset)."),
    settings: Path | None = typer.Option(None, "--settings", "-s", help="Path to settings YAML file."),
    output_format: OutputFormat = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'."),
) -> None:
    """Compare two runs: stable when the output digests match, drift otherwise."""
    from contextgraph.engine import RunComparator

    by_ids = left is not None and right is not None
    by_row = dataset is not None and row is not None
    if by_ids == by_row:
        raise _fail("give either --left and --right, or --dataset and --row")

    config = _load_config(settings)
    with _reported_errors():
        comparator = RunComparator(_open_history(config))
        if by_ids:
            assert left is not None and right is not None
            comparison = comparator.compare(left, right)
        else:
            assert dataset is not None and row is not None
            comparison = comparator.compare_latest(dataset, row)

    if output_format == "json":
        _emit(comparison.to_dict())
        return
    color = typer.colors.GREEN if comparison.status.value == "stable" else typer.colors.YELLOW
    typer.secho(f"{comparison.status.value}: {comparison.left.run_id} -> {comparison.right.run_id}", fg=color)
    if not comparison.same_row:
        typer.secho("Warning: runs belong to different dataset rows.", fg=typer.colors.YELLOW, err=True)
    markers = {"same": " ", "changed": "~", "missing-left": "+", "missing-right": "-"}
    for line in comparison.diff:
        if line.kind.value == "same":
            continue
        typer.echo(f"{markers[line.kind.value]} {line.left!r} | {line.right!r}")


if __name__ == "__main__":
    app()
