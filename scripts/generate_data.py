"""
Synthetic record generator for sqlupsert.

Writes deterministic pseudo-random customer records as JSON Lines. A share of
the ids repeats earlier ones so a run exercises both the insert and the update
path. Optionally creates the matching `customers` table.
"""

from __future__ import annotations

import json
import random
import sys
import time
from datetime import UTC, date, datetime, timedelta
from pathlib import Path

import typer

from sqlupsert.infrastructure.db_factory import build_dsn, connection_scope, is_sqlite_dsn

app = typer.Typer(help="Generate synthetic JSON Lines records for upsert runs.")

POSTGRES_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS customers (
    id BIGINT PRIMARY KEY,
    email VARCHAR(255) UNIQUE,
    name VARCHAR(255),
    balance NUMERIC(14, 2),
    is_active BOOLEAN,
    signup_date DATE,
    profile JSONB,
    updated_at TIMESTAMP
)
"""

SQLITE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS customers (
    id INTEGER PRIMARY KEY,
    email VARCHAR(255) UNIQUE,
    name VARCHAR(255),
    balance NUMERIC(14, 2),
    is_active BOOLEAN,
    signup_date DATE,
    profile TEXT,
    updated_at TIMESTAMP
)
"""

FIRST_NAMES = ["ada", "grace", "linus", "guido", "barbara", "ken", "margaret", "dennis"]


def _generate_records(path: Path, rows: int, overlap: float, seed: int) -> int:
    rng = random.Random(seed)
    start = date(2020, 1, 1)
    now = datetime.now(UTC).replace(tzinfo=None, microsecond=0)
    updates = 0

    with path.open("w", encoding="utf-8") as f:
        for i in range(1, rows + 1):
            if i > 1 and rng.random() < overlap:
                customer_id = rng.randint(1, i - 1)
                updates += 1
            else:
                customer_id = i
            name = rng.choice(FIRST_NAMES)
            record = {
                "id": customer_id,
                "email": f"{name}.{customer_id}@example.com",
                "name": name.title(),
                "balance": f"{rng.uniform(0, 50_000):.2f}",
                "is_active": rng.choice([True, False]),
                "signup_date": (start + timedelta(days=rng.randint(0, 1500))).isoformat(),
                "profile": {"tier": rng.choice(["free", "pro", "team"]), "logins": rng.randint(0, 500)},
                "updated_at": now.isoformat(sep=" "),
            }
            f.write(json.dumps(record) + "\n")
    return updates


def _create_table(dsn: str) -> None:
    ddl = SQLITE_TABLE_SQL if is_sqlite_dsn(dsn) else POSTGRES_TABLE_SQL
    with connection_scope(dsn) as conn:
        conn.execute(ddl)
        conn.commit()


@app.command()
def main(
    rows: int = typer.Option(10_000, "--rows", "-r", help="Number of records to generate."),
    overlap: float = typer.Option(
        0.2, "--overlap", help="Share of records reusing an earlier id (update path)."
    ),
    seed: int = typer.Option(42, "--seed", help="Deterministic RNG seed."),
    output: Path = typer.Option(Path("data/customers.jsonl"), "--output", "-o", help="JSON Lines output path."),
    create_table: bool = typer.Option(False, "--create-table", help="Create the customers table first."),
    dsn: str | None = typer.Option(None, "--dsn", help="Optional DSN override."),
) -> None:
    """
    Generate synthetic customer records and optionally create their table.
    """
    begin = time.perf_counter()
    if create_table:
        conn_dsn = dsn or build_dsn()
        typer.echo(f"Creating customers table via {conn_dsn.split('@')[-1]}")
        _create_table(conn_dsn)

    output.parent.mkdir(parents=True, exist_ok=True)
    typer.echo(f"Generating {rows:,} records -> {output} (overlap={overlap}, seed={seed})")
    updates = _generate_records(output, rows=rows, overlap=overlap, seed=seed)
    duration = time.perf_counter() - begin
    typer.echo(f"Generated {rows:,} records ({updates:,} repeat ids) in {duration:.2f}s")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
