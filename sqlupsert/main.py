from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import typer

from sqlupsert.config import get_settings
from sqlupsert.domain.errors import ConfigurationError, ConnectorError
from sqlupsert.domain.models import CommitMode
from sqlupsert.engine.strategies import available_strategies
from sqlupsert.infrastructure.db_factory import build_dsn
from sqlupsert.reporter import print_failures, print_summary
from sqlupsert.runner import options_from_settings, run_upsert
from sqlupsert.utils.logging import configure_logging

app = typer.Typer(help="Conflict-aware batched upserts from JSON Lines into SQL tables.")


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    dsn = settings.db_dsn or f"{settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    typer.echo(
        f"DB={dsn} dialect={settings.db_dialect} | "
        f"batch={settings.upsert_batch_size} commit={settings.upsert_commit_mode} "
        f"timeout_ms={settings.upsert_query_timeout_ms} | "
        f"strategies={', '.join(available_strategies())}"
    )


@app.command()
def run(
    table: str = typer.Option(..., "--table", "-t", help="Target table name."),
    input_path: Path = typer.Option(
        ..., "--input", "-i", exists=True, dir_okay=False, help="JSON Lines file, one record per line."
    ),
    schema: Optional[str] = typer.Option(None, "--schema", help="Schema holding the table."),
    batch_size: Optional[int] = typer.Option(
        None, "--batch-size", "-b", help="Records per batch; 0 commits every record."
    ),
    commit_mode: Optional[CommitMode] = typer.Option(None, "--commit-mode", help="row-count or profile."),
    strategy: Optional[str] = typer.Option(None, "--strategy", "-s", help="probe or native (default per dialect)."),
    dialect: Optional[str] = typer.Option(None, "--dialect", help="Database dialect (postgresql, sqlite)."),
    dsn: Optional[str] = typer.Option(None, "--dsn", help="Connection string; sqlite:///path for SQLite."),
    persist: bool = typer.Option(True, "--persist/--no-persist", help="Write results/ JSON reports."),
) -> None:
    """
    Upsert every record of a JSON Lines file and print a summary.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    try:
        options = options_from_settings(
            settings,
            batch_size=batch_size,
            commit_mode=commit_mode,
            schema_name=schema,
            strategy=strategy,
        )
        report = run_upsert(
            table=table,
            input_path=input_path,
            options=options,
            dsn=dsn or build_dsn(settings),
            dialect_name=dialect,
            persist=persist,
        )
    except ConfigurationError as exc:
        typer.echo(f"Configuration error: {exc.message}", err=True)
        raise typer.Exit(code=2) from exc
    except ConnectorError as exc:
        typer.echo(f"Connection lost: {exc.message}", err=True)
        raise typer.Exit(code=3) from exc

    print_summary(report["summary"])
    print_failures(report["outcomes"])
    if report["summary"].get("failed"):
        raise typer.Exit(code=1)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
