# tests/services/test_currency_cache.py
"""
Tests for CurrencyConversionCache.

This module tests:
- Identity conversion without I/O
- Live rate TTL and error mapping
- Concurrent callers sharing one fetch
- Lazy historical series loading
- Dated lookup tiers: exact, 5-day lookback, stale, default
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from gainday.services.currency_cache import (
    CurrencyConversionCache,
    RateSource,
    fx_symbol,
    pair_key,
)
from gainday.services.exceptions import (
    FXConversionError,
    FXProviderError,
    ProviderUnavailableError,
)
from tests.conftest import MockMarketDataProvider


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(mock_provider, clock) -> CurrencyConversionCache:
    return CurrencyConversionCache(
        mock_provider,
        ttl_seconds=3600,
        history_range="1y",
        allow_stale_fallback=True,
        clock=clock,
    )


# =============================================================================
# HELPERS
# =============================================================================

class TestPairHelpers:

    def test_pair_key(self):
        assert pair_key("usd", " jpy") == "USDJPY"

    def test_fx_symbol(self):
        assert fx_symbol("USD", "JPY") == "USDJPY=X"


# =============================================================================
# LIVE RATES
# =============================================================================

class TestLiveRates:
    """Tests for get_rate and friends."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("currency", ["JPY", "USD", "CNY", "HKD"])
    async def test_identity_rate_without_fetch(self, cache, mock_provider, currency):
        assert await cache.get_rate(currency, currency) == Decimal("1")
        assert mock_provider.call_counts["live_rate"] == 0

    @pytest.mark.asyncio
    async def test_fetches_and_caches(self, cache, mock_provider):
        mock_provider.set_live_rate("USDJPY=X", "150")

        assert await cache.get_rate("USD", "JPY") == Decimal("150")
        assert await cache.get_rate("usd", "jpy") == Decimal("150")
        assert mock_provider.call_counts["live_rate"] == 1

    @pytest.mark.asyncio
    async def test_refetches_after_ttl(self, cache, mock_provider, clock):
        mock_provider.set_live_rate("USDJPY=X", "150")
        await cache.get_rate("USD", "JPY")

        clock.advance(3599)
        await cache.get_rate("USD", "JPY")
        assert mock_provider.call_counts["live_rate"] == 1

        mock_provider.set_live_rate("USDJPY=X", "151")
        clock.advance(1)
        assert await cache.get_rate("USD", "JPY") == Decimal("151")
        assert mock_provider.call_counts["live_rate"] == 2

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self, clock):
        provider = MockMarketDataProvider(delay=0.01)
        provider.set_live_rate("USDJPY=X", "150")
        cache = CurrencyConversionCache(provider, ttl_seconds=3600, clock=clock)

        results = await asyncio.gather(*(cache.get_rate("USD", "JPY") for _ in range(10)))

        assert results == [Decimal("150")] * 10
        assert provider.call_counts["live_rate"] == 1

    @pytest.mark.asyncio
    async def test_different_pairs_fetch_one_at_a_time(self, clock):
        provider = MockMarketDataProvider(delay=0.01)
        provider.set_live_rate("USDJPY=X", "150")
        provider.set_live_rate("HKDJPY=X", "19")
        cache = CurrencyConversionCache(provider, ttl_seconds=3600, clock=clock)

        rates = await asyncio.gather(cache.get_rate("USD", "JPY"), cache.get_rate("HKD", "JPY"))

        assert rates == [Decimal("150"), Decimal("19")]
        assert provider.call_counts["live_rate"] == 2
        assert provider.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_provider_failure_raises_fx_error(self, cache, mock_provider):
        mock_provider.set_error("USDJPY=X", ProviderUnavailableError("mock", "down"))

        with pytest.raises(FXProviderError) as exc_info:
            await cache.get_rate("USD", "JPY")

        assert exc_info.value.from_currency == "USD"
        assert exc_info.value.to_currency == "JPY"

    @pytest.mark.asyncio
    async def test_non_positive_rate_rejected(self, cache, mock_provider):
        mock_provider.set_live_rate("USDJPY=X", "0")

        with pytest.raises(FXConversionError):
            await cache.get_rate("USD", "JPY")

    @pytest.mark.asyncio
    async def test_get_rate_or_none(self, cache):
        assert await cache.get_rate_or_none("USD", "JPY") is None

    @pytest.mark.asyncio
    async def test_get_rates_drops_failures(self, cache, mock_provider):
        mock_provider.set_live_rate("USDJPY=X", "150")

        rates = await cache.get_rates([("USD", "JPY"), ("HKD", "JPY"), ("USD", "JPY")])

        assert rates == {"USDJPY": Decimal("150")}

    @pytest.mark.asyncio
    async def test_refresh_rates_into_base(self, cache, mock_provider):
        mock_provider.set_live_rate("USDJPY=X", "150")
        mock_provider.set_live_rate("CNYJPY=X", "20.5")

        rates = await cache.refresh_rates(["USD", "CNY", "HKD", "JPY"], "jpy")

        assert rates == {"USDJPY": Decimal("150"), "CNYJPY": Decimal("20.5")}
        assert mock_provider.call_counts["live_rate"] == 3

    @pytest.mark.asyncio
    async def test_convert(self, cache, mock_provider):
        mock_provider.set_live_rate("USDJPY=X", "150")
        assert await cache.convert(Decimal("10"), "USD", "JPY") == Decimal("1500")

    @pytest.mark.asyncio
    async def test_cached_rate_without_io(self, cache, mock_provider):
        assert cache.get_cached_rate("USD", "JPY") is None
        mock_provider.set_live_rate("USDJPY=X", "150")
        await cache.get_rate("USD", "JPY")

        assert cache.get_cached_rate("USD", "JPY") == Decimal("150")
        cache.clear_cache()
        assert cache.get_cached_rate("USD", "JPY") is None


# =============================================================================
# HISTORICAL SERIES
# =============================================================================

class TestHistoricalSeries:
    """Tests for lazily loaded historical series."""

    @pytest.mark.asyncio
    async def test_loaded_once(self, cache, mock_provider):
        mock_provider.set_rate_series("USDJPY=X", {date(2024, 1, 2): "141"})

        first = await cache.get_historical_series("USD", "JPY")
        second = await cache.get_historical_series("USD", "JPY")

        assert first == {date(2024, 1, 2): Decimal("141")}
        assert second is first
        assert mock_provider.call_counts["rate_series"] == 1

    @pytest.mark.asyncio
    async def test_empty_series_not_cached(self, cache, mock_provider):
        assert await cache.get_historical_series("USD", "JPY") == {}
        assert await cache.get_historical_series("USD", "JPY") == {}
        assert mock_provider.call_counts["rate_series"] == 2

    @pytest.mark.asyncio
    async def test_failure_returns_empty(self, cache, mock_provider):
        mock_provider.set_error("USDJPY=X", ProviderUnavailableError("mock", "down"))
        assert await cache.get_historical_series("USD", "JPY") == {}

    @pytest.mark.asyncio
    async def test_identity_series_is_empty(self, cache, mock_provider):
        assert await cache.get_historical_series("JPY", "JPY") == {}
        assert mock_provider.call_counts["rate_series"] == 0

    @pytest.mark.asyncio
    async def test_load_historical_series_counts_loaded_pairs(self, cache, mock_provider):
        mock_provider.set_rate_series("USDJPY=X", {date(2024, 1, 2): "141"})

        loaded = await cache.load_historical_series([("USD", "JPY"), ("HKD", "JPY"), ("JPY", "JPY")])

        assert loaded == 1

    @pytest.mark.asyncio
    async def test_series_loads_one_at_a_time(self, clock):
        provider = MockMarketDataProvider(delay=0.01)
        provider.set_rate_series("USDJPY=X", {date(2024, 1, 2): "141"})
        provider.set_rate_series("HKDJPY=X", {date(2024, 1, 2): "18"})
        cache = CurrencyConversionCache(provider, history_range="1y", clock=clock)

        loaded = await cache.load_historical_series([("USD", "JPY"), ("HKD", "JPY"), ("USD", "JPY")])

        assert loaded == 2
        assert provider.call_counts["rate_series"] == 2
        assert provider.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_load_all_pairs(self, cache, mock_provider):
        await cache.load_all_historical_series(["JPY", "USD", "jpy"])

        # USDJPY and JPYUSD
        assert mock_provider.call_counts["rate_series"] == 2


# =============================================================================
# DATED LOOKUP
# =============================================================================

class TestRateOnOrBefore:
    """Tests for the exact / lookback / stale / default tiers."""

    @pytest.mark.asyncio
    async def test_identity(self, cache):
        lookup = await cache.get_rate_on_or_before("JPY", "JPY", date(2024, 1, 6))
        assert lookup.rate == Decimal("1")
        assert lookup.is_exact_match

    @pytest.mark.asyncio
    async def test_exact_date(self, cache, mock_provider):
        mock_provider.set_rate_series("USDJPY=X", {date(2024, 1, 5): "144"})

        lookup = await cache.get_rate_on_or_before("USD", "JPY", date(2024, 1, 5))

        assert lookup.rate == Decimal("144")
        assert lookup.source == RateSource.EXACT
        assert lookup.actual_date == date(2024, 1, 5)

    @pytest.mark.asyncio
    async def test_lookback_finds_day_five(self, cache, mock_provider):
        mock_provider.set_rate_series("USDJPY=X", {date(2024, 1, 5): "144"})

        lookup = await cache.get_rate_on_or_before("USD", "JPY", date(2024, 1, 10))

        assert lookup.rate == Decimal("144")
        assert lookup.source == RateSource.LOOKBACK
        assert lookup.actual_date == date(2024, 1, 5)

    @pytest.mark.asyncio
    async def test_lookback_never_reaches_day_six(self, mock_provider, clock):
        mock_provider.set_rate_series("USDJPY=X", {date(2024, 1, 4): "143"})
        cache = CurrencyConversionCache(mock_provider, allow_stale_fallback=False, clock=clock)

        lookup = await cache.get_rate_on_or_before("USD", "JPY", date(2024, 1, 10))

        assert lookup.source == RateSource.DEFAULT
        assert lookup.rate == Decimal("1")
        assert lookup.actual_date is None

    @pytest.mark.asyncio
    async def test_lookback_prefers_nearest(self, cache, mock_provider):
        mock_provider.set_rate_series("USDJPY=X", {
            date(2024, 1, 8): "145",
            date(2024, 1, 9): "146",
        })

        lookup = await cache.get_rate_on_or_before("USD", "JPY", date(2024, 1, 10))

        assert lookup.rate == Decimal("146")

    @pytest.mark.asyncio
    async def test_stale_fallback_is_flagged_and_counted(self, cache, mock_provider):
        mock_provider.set_rate_series("USDJPY=X", {
            date(2024, 1, 2): "141",
            date(2024, 1, 4): "143",
            date(2024, 3, 1): "150",
        })

        lookup = await cache.get_rate_on_or_before("USD", "JPY", date(2024, 2, 1))

        assert lookup.source == RateSource.STALE
        assert lookup.rate == Decimal("143")
        assert lookup.actual_date == date(2024, 1, 4)
        assert cache.stale_fallback_count == 1

    @pytest.mark.asyncio
    async def test_stale_fallback_uses_newest_when_nothing_earlier(self, cache, mock_provider):
        mock_provider.set_rate_series("USDJPY=X", {
            date(2024, 3, 1): "150",
            date(2024, 3, 4): "151",
        })

        lookup = await cache.get_rate_on_or_before("USD", "JPY", date(2024, 1, 10))

        assert lookup.source == RateSource.STALE
        assert lookup.rate == Decimal("151")

    @pytest.mark.asyncio
    async def test_default_when_no_series(self, cache):
        lookup = await cache.get_rate_on_or_before("USD", "JPY", date(2024, 1, 10))

        assert lookup.source == RateSource.DEFAULT
        assert lookup.rate == Decimal("1")
        assert cache.stale_fallback_count == 0

    @pytest.mark.asyncio
    async def test_lazy_load_on_first_lookup(self, cache, mock_provider):
        mock_provider.set_rate_series("USDJPY=X", {date(2024, 1, 5): "144"})

        await cache.get_rate_on_or_before("USD", "JPY", date(2024, 1, 5))
        await cache.get_rate_on_or_before("USD", "JPY", date(2024, 1, 8))

        assert mock_provider.call_counts["rate_series"] == 1
