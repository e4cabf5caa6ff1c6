# gainday/utils/context.py
"""
Run context for the snapshot engine.

Each refresh or backfill run gets a correlation ID so that every log line
written during the run (including inside concurrently gathered fetches) can
be traced back to it. Uses contextvars, which propagate into tasks created
by asyncio.gather.

Usage:
    from gainday.utils.context import run_context

    with run_context("refresh"):
        ...  # logs carry "refresh-3f2a9c1b"
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    """Get the current run's correlation ID, or None outside a run."""
    return _correlation_id_var.get()


def new_correlation_id(prefix: str) -> str:
    """Build a short run ID such as 'backfill-1a2b3c4d'."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@contextmanager
def run_context(prefix: str) -> Iterator[str]:
    """
    Set a fresh correlation ID for the duration of the block.

    The previous value is restored on exit, so nested runs (a refresh
    triggered from inside a backfill script, say) do not clobber each other.
    """
    correlation_id = new_correlation_id(prefix)
    token = _correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id_var.reset(token)
