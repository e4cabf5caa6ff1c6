# gainday/services/currency_cache.py
"""
Currency conversion cache for live and historical FX rates.

Handles:
- Live rates with a freshness window (TTL), fetched on demand
- One historical series per currency pair, loaded lazily and kept
- Date lookups with a bounded lookback and an optional stale fallback

=============================================================================
RATE CONVENTION
=============================================================================

A rate for (from, to) means "1 unit of from = rate units of to", which is
the Yahoo Finance convention for "{FROM}{TO}=X":

    get_rate("USD", "JPY") = 150  ->  1 USD = 150 JPY
    amount_jpy = amount_usd × rate

Rate dictionaries passed around the engine are keyed by pair_key(from, to),
e.g. "USDJPY".

=============================================================================
DATE LOOKUP ORDER (get_rate_on_or_before)
=============================================================================

    1. exact      - the series has the date
    2. lookback   - nearest of the LOOKBACK_DAYS preceding calendar days
    3. stale      - newest entry on or before the date, else newest overall
                    (only when stale fallback is allowed; logged at WARNING)
    4. default    - 1.0

Concurrency:
    One asyncio.Lock per instance. Every fetch-and-store runs under it with
    a re-check, so at most one provider call is in flight per cache and
    concurrent callers for one pair trigger a single call. Fresh cached
    reads take no lock.

Usage:
    cache = CurrencyConversionCache(provider)

    rate = await cache.get_rate("USD", "JPY")
    await cache.load_historical_series([("USD", "JPY")])
    lookup = await cache.get_rate_on_or_before("USD", "JPY", date(2024, 1, 6))
"""

import asyncio
import enum
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from gainday.config import settings
from gainday.services.constants import (
    DEFAULT_FX_RATE,
    FX_SYMBOL_TEMPLATE,
    LOOKBACK_DAYS,
    ONE,
)
from gainday.services.exceptions import (
    FXConversionError,
    FXProviderError,
    MarketDataError,
)
from gainday.services.market_data.base import MarketDataProvider, closes_to_dict
from gainday.utils.date_utils import find_on_or_before

logger = logging.getLogger(__name__)


# =============================================================================
# HELPERS
# =============================================================================

def pair_key(from_currency: str, to_currency: str) -> str:
    """Key used for rate dictionaries, e.g. ("USD", "JPY") -> "USDJPY"."""
    return f"{from_currency.strip().upper()}{to_currency.strip().upper()}"


def fx_symbol(from_currency: str, to_currency: str) -> str:
    """Yahoo Finance pair symbol, e.g. ("USD", "JPY") -> "USDJPY=X"."""
    return FX_SYMBOL_TEMPLATE.format(
        from_currency=from_currency.strip().upper(),
        to_currency=to_currency.strip().upper(),
    )


# =============================================================================
# RESULT DATA CLASSES
# =============================================================================

class RateSource(str, enum.Enum):
    EXACT = "exact"
    LOOKBACK = "lookback"
    STALE = "stale"
    DEFAULT = "default"


@dataclass(frozen=True)
class RateLookup:
    """
    Result of a dated FX lookup.

    Attributes:
        rate: Rate to apply (1 unit of from = rate units of to)
        actual_date: Date the rate is from (None for the default rate)
        source: Which lookup tier produced the rate
    """

    rate: Decimal
    actual_date: date | None
    source: RateSource

    @property
    def is_exact_match(self) -> bool:
        return self.source == RateSource.EXACT


# =============================================================================
# CURRENCY CONVERSION CACHE
# =============================================================================

class CurrencyConversionCache:
    """
    In-memory FX cache shared by the refresh and backfill services.

    Attributes:
        stale_fallback_count: Number of dated lookups answered by the
            stale tier since construction (or the last clear_cache)

    Example:
        cache = CurrencyConversionCache(provider, ttl_seconds=3600)

        usd_jpy = await cache.get_rate("USD", "JPY")
        yen = await cache.convert(Decimal("100"), "USD", "JPY")
    """

    def __init__(
            self,
            provider: MarketDataProvider,
            ttl_seconds: int | None = None,
            history_range: str | None = None,
            allow_stale_fallback: bool | None = None,
            lookback_days: int = LOOKBACK_DAYS,
            clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._ttl_seconds = settings.fx_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._history_range = history_range or settings.history_range
        self._allow_stale_fallback = (
            settings.allow_stale_fx_fallback if allow_stale_fallback is None else allow_stale_fallback
        )
        self._lookback_days = lookback_days
        self._clock = clock

        # pair_key -> (rate, fetched_at)
        self._live: dict[str, tuple[Decimal, float]] = {}
        # pair_key -> {date: rate}; only non-empty series are stored
        self._series: dict[str, dict[date, Decimal]] = {}

        self._lock = asyncio.Lock()

        self.stale_fallback_count = 0

        logger.info(
            f"CurrencyConversionCache initialized (provider={provider.name}, "
            f"ttl={self._ttl_seconds}s, history_range={self._history_range}, "
            f"stale_fallback={self._allow_stale_fallback})"
        )

    # =========================================================================
    # LIVE RATES
    # =========================================================================

    async def get_rate(self, from_currency: str, to_currency: str) -> Decimal:
        """
        Current rate for a pair.

        Same currency returns 1 without I/O. A cached rate younger than the
        TTL is returned as is; otherwise the provider is asked.

        Raises:
            FXProviderError: If the provider call fails
            FXConversionError: If the provider returns a non-positive rate
        """
        src = from_currency.strip().upper()
        dst = to_currency.strip().upper()
        if src == dst:
            return ONE

        key = pair_key(src, dst)
        cached = self._fresh_live_rate(key)
        if cached is not None:
            logger.debug(f"FX cache hit: {key}")
            return cached

        async with self._lock:
            # Another task may have filled it while we waited
            cached = self._fresh_live_rate(key)
            if cached is not None:
                return cached

            logger.debug(f"FX cache miss: {key}, fetching {fx_symbol(src, dst)}")
            try:
                rate = await self._provider.fetch_live_rate(fx_symbol(src, dst))
            except MarketDataError as e:
                raise FXProviderError(src, dst, str(e)) from e

            if rate is None or rate <= 0:
                raise FXConversionError(f"invalid rate {rate}", src, dst)

            self._live[key] = (rate, self._clock())
            return rate

    async def get_rate_or_none(self, from_currency: str, to_currency: str) -> Decimal | None:
        """Same as get_rate() but returns None instead of raising."""
        try:
            return await self.get_rate(from_currency, to_currency)
        except (FXProviderError, FXConversionError) as e:
            logger.warning(f"FX rate {from_currency}->{to_currency} unavailable: {e}")
            return None

    async def get_rates(self, pairs: Iterable[tuple[str, str]]) -> dict[str, Decimal]:
        """
        Fetch several pairs concurrently.

        Returns:
            Dict keyed by pair_key; failed pairs are absent
        """
        unique = list(dict.fromkeys((f.upper(), t.upper()) for f, t in pairs))
        results = await asyncio.gather(*(self.get_rate_or_none(f, t) for f, t in unique))

        rates: dict[str, Decimal] = {}
        for (src, dst), rate in zip(unique, results):
            if rate is not None:
                rates[pair_key(src, dst)] = rate
        return rates

    async def refresh_rates(self, currencies: Iterable[str], base_currency: str) -> dict[str, Decimal]:
        """
        Fetch every currency's rate into the base currency concurrently.

        Failures are skipped and logged.
        """
        base = base_currency.upper()
        pairs = [(c.upper(), base) for c in currencies if c.upper() != base]
        rates = await self.get_rates(pairs)
        logger.info(f"Refreshed {len(rates)}/{len(pairs)} FX rates into {base}")
        return rates

    async def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        """
        Convert an amount between currencies at the current rate.

        Raises:
            FXProviderError: If the rate cannot be fetched
        """
        rate = await self.get_rate(from_currency, to_currency)
        return amount * rate

    def get_cached_rate(self, from_currency: str, to_currency: str) -> Decimal | None:
        """Fresh cached rate for a pair without any I/O, or None."""
        if from_currency.upper() == to_currency.upper():
            return ONE
        return self._fresh_live_rate(pair_key(from_currency, to_currency))

    def clear_cache(self) -> None:
        """Drop all live and historical entries and reset counters."""
        self._live.clear()
        self._series.clear()
        self.stale_fallback_count = 0
        logger.info("FX cache cleared")

    # =========================================================================
    # HISTORICAL SERIES
    # =========================================================================

    async def get_historical_series(self, from_currency: str, to_currency: str) -> dict[date, Decimal]:
        """
        Daily rate series for a pair over the configured history range.

        Loaded once per pair and kept. A failed or empty load returns {}
        and is not cached, so a later call tries again.
        """
        src = from_currency.strip().upper()
        dst = to_currency.strip().upper()
        if src == dst:
            return {}

        key = pair_key(src, dst)
        if key in self._series:
            return self._series[key]

        async with self._lock:
            if key in self._series:
                return self._series[key]

            try:
                closes = await self._provider.fetch_historical_rate_series(
                    fx_symbol(src, dst), self._history_range
                )
            except MarketDataError as e:
                logger.warning(f"Historical FX series {key} unavailable: {e}")
                return {}

            series = closes_to_dict(closes)
            if series:
                self._series[key] = series
                logger.debug(f"Loaded {len(series)} historical FX rates for {key}")
            else:
                logger.warning(f"Historical FX series {key} is empty")
            return series

    async def load_historical_series(self, pairs: Iterable[tuple[str, str]]) -> int:
        """
        Load series for the given pairs concurrently.

        Returns:
            Number of pairs that now have a non-empty series
        """
        unique = list(dict.fromkeys(
            (f.upper(), t.upper()) for f, t in pairs if f.upper() != t.upper()
        ))
        results = await asyncio.gather(*(self.get_historical_series(f, t) for f, t in unique))
        loaded = sum(1 for series in results if series)
        logger.info(f"Historical FX series loaded for {loaded}/{len(unique)} pairs")
        return loaded

    async def load_all_historical_series(self, currencies: Iterable[str]) -> int:
        """Load series for every ordered pair of distinct currencies."""
        codes = sorted({c.upper() for c in currencies})
        return await self.load_historical_series(
            (a, b) for a in codes for b in codes if a != b
        )

    async def get_rate_on_or_before(
            self,
            from_currency: str,
            to_currency: str,
            target_date: date,
    ) -> RateLookup:
        """
        Rate for a date using the lookup order in the module docstring.

        Never raises: a pair with no data at all yields the default rate.
        """
        src = from_currency.strip().upper()
        dst = to_currency.strip().upper()
        if src == dst:
            return RateLookup(rate=ONE, actual_date=target_date, source=RateSource.EXACT)

        series = await self.get_historical_series(src, dst)

        rate, found_on = find_on_or_before(series, target_date, self._lookback_days)
        if rate is not None:
            source = RateSource.EXACT if found_on == target_date else RateSource.LOOKBACK
            if source == RateSource.LOOKBACK:
                logger.debug(f"Using {found_on} rate for {src}/{dst} on {target_date}")
            return RateLookup(rate=rate, actual_date=found_on, source=source)

        if self._allow_stale_fallback and series:
            earlier = [d for d in series if d <= target_date]
            stale_date = max(earlier) if earlier else max(series)
            self.stale_fallback_count += 1
            logger.warning(
                f"Stale FX fallback for {src}/{dst} on {target_date}: "
                f"using rate from {stale_date}"
            )
            return RateLookup(rate=series[stale_date], actual_date=stale_date, source=RateSource.STALE)

        logger.warning(f"No FX rate for {src}/{dst} on {target_date}, using {DEFAULT_FX_RATE}")
        return RateLookup(rate=DEFAULT_FX_RATE, actual_date=None, source=RateSource.DEFAULT)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _fresh_live_rate(self, key: str) -> Decimal | None:
        entry = self._live.get(key)
        if entry is None:
            return None
        rate, fetched_at = entry
        if self._clock() - fetched_at >= self._ttl_seconds:
            return None
        return rate
