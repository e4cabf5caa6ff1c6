# gainday/utils/__init__.py
"""
Cross-cutting utilities for the snapshot engine.

- logging: Logging configuration with correlation ID support
- context: Run context (correlation IDs) via contextvars
- date_utils: Weekend checks and bounded date lookback

Usage:
    from gainday.utils import setup_logging, run_context
    from gainday.utils.date_utils import find_on_or_before
"""

from gainday.utils.context import (
    get_correlation_id,
    new_correlation_id,
    run_context,
)
from gainday.utils.logging import setup_logging

__all__ = [
    # Logging
    "setup_logging",
    # Context
    "get_correlation_id",
    "new_correlation_id",
    "run_context",
]
