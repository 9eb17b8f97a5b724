"""
sqlupsert - conflict-aware batched upserts of JSON records into SQL tables.

For every record the engine decides whether a row already exists under the
table's primary key or a unique key group, then inserts or updates it:

- Probe-based resolution with fresh INSERT/UPDATE statements
- Native insert-or-update statements (ON CONFLICT / ON DUPLICATE KEY)
- Exact, type-directed binding of JSON values
- Per-record or batched commits with per-record outcomes
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from sqlupsert.config import Settings, get_settings
from sqlupsert.domain.errors import ErrorKind, UpsertError
from sqlupsert.domain.models import CommitMode, Outcome, Record, UpsertOptions
from sqlupsert.engine import UpsertEngine, available_strategies, get_dialect, resolve_strategy
from sqlupsert.runner import run_upsert
from sqlupsert.utils.logging import configure_logging, get_logger
from sqlupsert.utils.profiler import ProfileStats, profile_block

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Domain
    "ErrorKind",
    "UpsertError",
    "CommitMode",
    "Outcome",
    "Record",
    "UpsertOptions",
    # Engine
    "UpsertEngine",
    "available_strategies",
    "get_dialect",
    "resolve_strategy",
    "run_upsert",
    # Logging
    "configure_logging",
    "get_logger",
    # Profiling
    "ProfileStats",
    "profile_block",
]
