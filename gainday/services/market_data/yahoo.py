# gainday/services/market_data/yahoo.py
"""
Yahoo Finance market data provider implementation.

Implements MarketDataProvider with the yfinance library. yfinance is
synchronous, so each call runs in the event loop's default executor and
the async wrappers add retry and timeout on top.

Key features:
- Symbols used as stored on the holding ("7203.T", "600519.SS", "BTC-USD")
- Quotes from Ticker.info, including extended-hours prices
- Daily closes and FX series from Ticker.history (raw, unadjusted)
- Error messages mapped onto domain exceptions

Limitations:
- Rate limits exist but are not documented
- Data may be delayed (15-20 minutes for some markets)
"""

import asyncio
import logging
import math
from datetime import date
from decimal import Decimal
from typing import Any

import yfinance as yf

from gainday.models import MarketState
from gainday.services.constants import PRICE_PRECISION
from gainday.services.exceptions import (
    MarketDataError,
    ProviderUnavailableError,
    TickerNotFoundError,
    RateLimitError,
)
from gainday.services.market_data.base import (
    MarketDataProvider,
    Quote,
    DailyClose,
)

logger = logging.getLogger(__name__)


class YahooFinanceProvider(MarketDataProvider):
    """
    Yahoo Finance implementation of MarketDataProvider.

    Configuration:
        timeout: Per-call timeout in seconds (default: 10)
        max_concurrency: Maximum in-flight requests for batch calls (default: 8)

    Retry Behavior (inherited from MarketDataProvider):
        - Retries on ProviderUnavailableError and RateLimitError
        - Does NOT retry on TickerNotFoundError
        - Exponential backoff: 1s, 2s, 4s; at most 3 attempts

    Example:
        provider = YahooFinanceProvider(timeout=15)

        quote = await provider.fetch_quote("7203.T")
        closes = await provider.fetch_daily_closes("AAPL", "1y")
        rate = await provider.fetch_live_rate("USDJPY=X")
    """

    # =========================================================================
    # INITIALIZATION
    # =========================================================================

    def __init__(self, timeout: int = 10, max_concurrency: int = 8) -> None:
        super().__init__(max_concurrency=max_concurrency)
        self._timeout = timeout
        logger.info(
            f"YahooFinanceProvider initialized "
            f"(timeout={timeout}s, max_concurrency={max_concurrency})"
        )

    @property
    def name(self) -> str:
        return "yahoo"

    # =========================================================================
    # QUOTES
    # =========================================================================

    async def fetch_quote(self, symbol: str) -> Quote:
        """
        Fetch the current quote from Ticker.info.

        Raises:
            TickerNotFoundError: If the symbol is unknown
            ProviderUnavailableError: If Yahoo Finance is unavailable
        """
        return await self._execute_with_retry(self._run_sync, self._fetch_quote_sync, symbol)

    def _fetch_quote_sync(self, symbol: str) -> Quote:
        logger.debug(f"Fetching quote for {symbol}")
        try:
            info = yf.Ticker(symbol).info
        except Exception as e:
            raise self._map_error(e, symbol)

        if not self._is_valid_ticker_info(info):
            raise TickerNotFoundError(symbol=symbol, provider=self.name)

        return Quote(
            symbol=symbol,
            regular_price=self._to_decimal(info.get("regularMarketPrice")),
            previous_close=self._to_decimal(info.get("regularMarketPreviousClose")),
            pre_market_price=self._to_decimal(info.get("preMarketPrice")),
            post_market_price=self._to_decimal(info.get("postMarketPrice")),
            market_state=self._parse_market_state(info.get("marketState")),
            name=info.get("shortName") or info.get("longName"),
            currency=(info.get("currency") or "").upper() or None,
        )

    # =========================================================================
    # DAILY CLOSES
    # =========================================================================

    async def fetch_daily_closes(self, symbol: str, range_: str) -> list[DailyClose]:
        """
        Fetch daily closes over a period such as "1y".

        Returns an empty list when Yahoo has no rows for the symbol.
        """
        return await self._execute_with_retry(self._run_sync, self._fetch_closes_sync, symbol, range_)

    def _fetch_closes_sync(self, symbol: str, range_: str) -> list[DailyClose]:
        logger.debug(f"Fetching {range_} daily closes for {symbol}")
        try:
            df = yf.Ticker(symbol).history(
                period=range_,
                interval="1d",
                auto_adjust=False,  # raw closes; adjusted closes rewrite past prices after dividends
            )
        except Exception as e:
            raise self._map_error(e, symbol)

        if df is None or df.empty:
            logger.warning(f"No daily data for {symbol} over {range_}")
            return []

        closes = self._dataframe_to_closes(df)
        logger.debug(f"Fetched {len(closes)} closes for {symbol}")
        return closes

    # =========================================================================
    # FX RATES
    # =========================================================================

    async def fetch_live_rate(self, pair_symbol: str) -> Decimal:
        """
        Fetch the current rate for an FX pair symbol ("USDJPY=X").

        Uses the quote's regular market price, falling back to the most
        recent daily close when the quote carries none.
        """
        return await self._execute_with_retry(self._run_sync, self._fetch_live_rate_sync, pair_symbol)

    def _fetch_live_rate_sync(self, pair_symbol: str) -> Decimal:
        logger.debug(f"Fetching live FX rate {pair_symbol}")
        try:
            ticker = yf.Ticker(pair_symbol)
            rate = self._to_decimal((ticker.info or {}).get("regularMarketPrice"))
            if rate is None or rate <= 0:
                df = ticker.history(period="5d", interval="1d", auto_adjust=False)
                closes = self._dataframe_to_closes(df) if df is not None and not df.empty else []
                rate = closes[-1].close if closes else None
        except Exception as e:
            raise self._map_error(e, pair_symbol)

        if rate is None or rate <= 0:
            raise TickerNotFoundError(symbol=pair_symbol, provider=self.name)
        return rate

    async def fetch_historical_rate_series(self, pair_symbol: str, range_: str) -> list[DailyClose]:
        return await self.fetch_daily_closes(pair_symbol, range_)

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    async def _run_sync(self, func, *args: Any) -> Any:
        """Run a blocking yfinance call in the default executor with a timeout."""
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, func, *args),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            raise ProviderUnavailableError(
                provider=self.name,
                reason=f"timed out after {self._timeout}s",
            )

    def _map_error(self, error: Exception, symbol: str) -> Exception:
        """Map a yfinance/network exception onto the domain hierarchy."""
        if isinstance(error, MarketDataError):
            return error

        error_str = str(error).lower()
        if "not found" in error_str or "no data" in error_str or "delisted" in error_str:
            return TickerNotFoundError(symbol=symbol, provider=self.name)
        if "rate limit" in error_str or "too many requests" in error_str:
            return RateLimitError(provider=self.name)

        logger.error(f"Yahoo Finance error for {symbol}: {error}")
        return ProviderUnavailableError(provider=self.name, reason=str(error))

    def _dataframe_to_closes(self, df) -> list[DailyClose]:
        """
        Convert a yfinance history DataFrame into sorted DailyClose rows.

        Rows with a missing or non-positive close are skipped.
        """
        closes: dict[date, DailyClose] = {}

        for idx, row in df.iterrows():
            price_date = idx.date() if hasattr(idx, 'date') else idx
            close_price = self._to_decimal(row.get('Close'))

            if close_price is None or close_price <= 0:
                logger.debug(f"Skipping {price_date}: missing close price")
                continue

            closes[price_date] = DailyClose(date=price_date, close=close_price)

        return [closes[d] for d in sorted(closes)]

    @staticmethod
    def _to_decimal(value: Any) -> Decimal | None:
        """Convert a value to Decimal, returning None for NaN/None."""
        if value is None:
            return None
        try:
            if math.isnan(float(value)):
                return None
            return Decimal(str(value)).quantize(PRICE_PRECISION)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _parse_market_state(value: Any) -> MarketState | None:
        if not value:
            return None
        try:
            return MarketState(str(value).upper())
        except ValueError:
            logger.debug(f"Unknown market state '{value}'")
            return None

    @staticmethod
    def _is_valid_ticker_info(info: dict | None) -> bool:
        """
        Yahoo returns an info dict even for unknown symbols, but without
        a price or name in it.
        """
        if not info:
            return False
        return bool(
            info.get("regularMarketPrice")
            or info.get("shortName")
            or info.get("longName")
        )
