# gainday/services/market_data/base.py
"""
Abstract interface for market data providers.

The engine consumes quotes, daily closes and FX rates only through this
interface, so the Yahoo Finance implementation can be swapped for another
source or for an in-memory mock in tests.

All methods are async. Implementations backed by synchronous client
libraries run them in the default executor.

Design Principles:
- Services depend on this abstraction, not on yfinance
- Common retry and fan-out logic implemented once in the base class
- Batch methods return partial results; one bad symbol never fails a batch
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TypeVar, Any

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
    before_sleep_log,
)

from gainday.models import MarketState
from gainday.services.exceptions import is_retryable

logger = logging.getLogger(__name__)

T = TypeVar('T')


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class Quote:
    """
    Current quote for one symbol. Never persisted.

    Attributes:
        symbol: Provider symbol (e.g., "7203.T", "AAPL")
        regular_price: Last price in the regular session
        previous_close: Previous session's close
        pre_market_price: Extended-hours price before the open
        post_market_price: Extended-hours price after the close
        market_state: Session the quote was taken in
        name: Display name reported by the provider
        currency: Trading currency reported by the provider
    """

    symbol: str
    regular_price: Decimal | None = None
    previous_close: Decimal | None = None
    pre_market_price: Decimal | None = None
    post_market_price: Decimal | None = None
    market_state: MarketState | None = None
    name: str | None = None
    currency: str | None = None

    def __post_init__(self) -> None:
        if not self.symbol:
            raise ValueError("symbol is required")


@dataclass(frozen=True)
class DailyClose:
    """Closing price (or FX rate) for one trading day."""

    date: date
    close: Decimal

    def __post_init__(self) -> None:
        if self.close <= 0:
            raise ValueError(f"close must be positive, got {self.close}")


def closes_to_dict(closes: list[DailyClose]) -> dict[date, Decimal]:
    """Index a close series by date; later entries win on duplicates."""
    return {c.date: c.close for c in closes}


# =============================================================================
# ABSTRACT BASE CLASS
# =============================================================================

class MarketDataProvider(ABC):
    """
    Abstract base class for market data providers.

    Retry Behavior:
        `_execute_with_retry` wraps a coroutine function with exponential
        backoff. Subclasses can tune it with class attributes:

        - MAX_RETRY_ATTEMPTS: Total attempts (default: 3)
        - RETRY_MIN_WAIT: Minimum wait in seconds (default: 1)
        - RETRY_MAX_WAIT: Maximum wait in seconds (default: 10)
        - RETRY_MULTIPLIER: Exponential multiplier (default: 1)

        Errors are retried when their class sets `retryable`:
        ProviderUnavailableError and RateLimitError do, TickerNotFoundError
        does not.
    """

    MAX_RETRY_ATTEMPTS: int = 3
    RETRY_MIN_WAIT: int = 1
    RETRY_MAX_WAIT: int = 10
    RETRY_MULTIPLIER: int = 1

    def __init__(self, max_concurrency: int = 8) -> None:
        self._max_concurrency = max_concurrency

    # =========================================================================
    # ABSTRACT PROPERTIES AND METHODS
    # =========================================================================

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier used in logs and error messages."""
        pass

    @abstractmethod
    async def fetch_quote(self, symbol: str) -> Quote:
        """
        Fetch the current quote for a single symbol.

        Raises:
            TickerNotFoundError: Symbol not recognized
            ProviderUnavailableError: Network or API error (retryable)
            RateLimitError: Rate limit exceeded (retryable)
        """
        pass

    @abstractmethod
    async def fetch_daily_closes(self, symbol: str, range_: str) -> list[DailyClose]:
        """
        Fetch daily closes for a symbol over a range such as "1y".

        Returns:
            Closes sorted by date; an empty list when the provider has no data
        """
        pass

    @abstractmethod
    async def fetch_live_rate(self, pair_symbol: str) -> Decimal:
        """
        Fetch the current FX rate for a pair symbol such as "USDJPY=X".

        Raises:
            TickerNotFoundError: Pair not recognized or no rate available
            ProviderUnavailableError: Network or API error (retryable)
        """
        pass

    @abstractmethod
    async def fetch_historical_rate_series(self, pair_symbol: str, range_: str) -> list[DailyClose]:
        """Daily FX closes for a pair symbol; empty list when unavailable."""
        pass

    # =========================================================================
    # BATCH METHODS
    # =========================================================================

    async def fetch_quotes(self, symbols: list[str]) -> dict[str, Quote]:
        """
        Fetch quotes for many symbols with bounded concurrency.

        Per-symbol failures are logged and dropped from the result, so the
        caller gets whatever succeeded.

        Returns:
            Dict mapping symbol to Quote (missing keys = failed symbols)
        """
        unique = list(dict.fromkeys(symbols))
        if not unique:
            return {}

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _one(symbol: str) -> Quote:
            async with semaphore:
                return await self.fetch_quote(symbol)

        outcomes = await asyncio.gather(
            *(_one(s) for s in unique),
            return_exceptions=True,
        )

        quotes: dict[str, Quote] = {}
        for symbol, outcome in zip(unique, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                logger.warning(f"Quote fetch failed for {symbol}: {outcome}")
                continue
            quotes[symbol] = outcome

        logger.debug(f"Fetched {len(quotes)}/{len(unique)} quotes from {self.name}")
        return quotes

    # =========================================================================
    # RETRY HELPER METHOD
    # =========================================================================

    async def _execute_with_retry(
            self,
            func: Callable[..., Awaitable[T]],
            *args: Any,
            **kwargs: Any,
    ) -> T:
        """
        Await a coroutine function with retry logic for transient failures.

        Retries errors for which is_retryable() holds, with exponential
        backoff; anything else propagates immediately.

        Raises:
            The last exception if all retries fail
        """

        @retry(
            stop=stop_after_attempt(self.MAX_RETRY_ATTEMPTS),
            wait=wait_exponential(
                multiplier=self.RETRY_MULTIPLIER,
                min=self.RETRY_MIN_WAIT,
                max=self.RETRY_MAX_WAIT,
            ),
            retry=retry_if_exception(is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async def _inner() -> T:
            return await func(*args, **kwargs)

        return await _inner()
