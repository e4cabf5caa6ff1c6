# gainday/services/snapshots/backfill.py
"""
Historical snapshot backfill.

Rebuilds every missing day of the snapshot time series from daily price
closes and historical FX series. Typically run after an import or on
first launch; existing snapshots are never touched.

Flow:
    1. Collect symbols (markets without a daily series, e.g. JP_FUND, are skipped)
    2. Fetch daily closes per symbol with bounded concurrency;
       symbols that fail or return nothing are excluded
    3. Trading dates = union of all fetched dates, weekends removed
    4. Load historical FX series for every needed pair
    5. For each trading date, value every account as of that date and
       queue snapshots for the accounts (and the global series) that
       have none yet
    6. Persist everything in one batch, then notify

Per-day valuation rules:
    - Positions come from transactions with trade_date <= day
    - The price is that day's close; a holding without one is left out
    - The previous close is the nearest close in the 5 days before the
      day, else the day's own close (daily P&L 0)
    - FX rates come from CurrencyConversionCache.get_rate_on_or_before
    - A snapshot whose total value is not positive is not created

Usage:
    engine = HistoricalBackfillEngine(store, cache, provider)
    result = await engine.run(load_accounts(db), "JPY")
"""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Literal

from gainday.config import settings
from gainday.models import Account
from gainday.services.constants import PREVIOUS_CLOSE_LOOKBACK_DAYS, ZERO
from gainday.services.currency_cache import CurrencyConversionCache, pair_key
from gainday.services.exceptions import SnapshotPersistenceError
from gainday.services.market_data.base import MarketDataProvider, Quote, closes_to_dict
from gainday.services.protocols import Notifier
from gainday.services.snapshots.notifier import LoggingNotifier, notify_safely
from gainday.services.snapshots.store import SnapshotRecord, SnapshotStore
from gainday.services.valuation.aggregator import PortfolioAggregator, required_pairs
from gainday.services.valuation.projection import AccountProjection
from gainday.services.valuation.types import GlobalValuation, PositionState
from gainday.utils.context import run_context
from gainday.utils.date_utils import find_on_or_before, trading_dates

logger = logging.getLogger(__name__)

BackfillStatus = Literal["completed", "partial", "failed"]

# symbol -> {date: close}
PriceHistory = dict[str, dict[date, Decimal]]


@dataclass
class BackfillResult:
    """
    Outcome of one backfill run.

    Attributes:
        status: "partial" when some symbols had to be excluded,
            "failed" when the batch could not be persisted
        skipped_symbols: Symbols whose price history failed or was empty
        trading_dates: Number of candidate dates evaluated
    """

    status: BackfillStatus = "completed"
    created_account_snapshots: int = 0
    created_global_snapshots: int = 0
    trading_dates: int = 0
    skipped_symbols: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    reason: str | None = None

    @property
    def total_created(self) -> int:
        return self.created_account_snapshots + self.created_global_snapshots


class HistoricalBackfillEngine:
    """
    Fills gaps in the account and global snapshot series.

    Attributes:
        _store: Snapshot persistence
        _cache: FX cache; its historical series are shared with other runs
        _provider: Source of daily closes
        _aggregator: Same aggregation as the daily refresh
        _projection: As-of position reconstruction
    """

    def __init__(
            self,
            store: SnapshotStore,
            cache: CurrencyConversionCache,
            provider: MarketDataProvider,
            notifier: Notifier | None = None,
            aggregator: PortfolioAggregator | None = None,
            projection: AccountProjection | None = None,
            history_range: str | None = None,
            max_concurrent_fetches: int | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._provider = provider
        self._notifier = notifier or LoggingNotifier()
        self._aggregator = aggregator or PortfolioAggregator()
        self._projection = projection or AccountProjection()
        self._history_range = history_range or settings.history_range
        self._max_concurrent_fetches = max_concurrent_fetches or settings.max_concurrent_fetches

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def run(self, accounts: list[Account], base_currency: str | None = None) -> BackfillResult:
        """
        Create every missing account and global snapshot.

        Args:
            accounts: Accounts with holdings and transactions loaded
            base_currency: Global base; defaults to the configured one

        Returns:
            BackfillResult. Nothing is written unless the whole batch
            commits.
        """
        base = (base_currency or settings.base_currency).upper()

        with run_context("backfill") as run_id:
            active = [a for a in accounts if a.holdings]
            if not active:
                logger.info("Backfill skipped: no account has holdings")
                return BackfillResult(reason="no holdings")

            logger.info(f"Backfill {run_id} started: {len(active)} accounts, base={base}")

            prices, skipped = await self._fetch_price_history(active)
            result = BackfillResult(skipped_symbols=skipped)
            if skipped:
                result.status = "partial"
                result.warnings.append(
                    f"Price history unavailable for {len(skipped)} symbols: {', '.join(skipped)}"
                )

            dates = trading_dates(day for series in prices.values() for day in series)
            result.trading_dates = len(dates)
            if not dates:
                logger.warning("Backfill found no trading dates; nothing to do")
                result.reason = "no price history"
                return result

            pairs = required_pairs(active, base)
            await self._cache.load_historical_series(pairs)
            stale_before = self._cache.stale_fallback_count

            existing = {
                account.id: await asyncio.to_thread(self._store.existing_dates, account.id)
                for account in active
            }
            existing_global = await asyncio.to_thread(self._store.existing_dates, None)

            records: list[SnapshotRecord] = []
            for day in dates:
                missing_accounts = [a for a in active if day not in existing[a.id]]
                missing_global = day not in existing_global
                if not missing_accounts and not missing_global:
                    continue

                valuation = await self._value_day(active, day, prices, pairs, base)
                converted_by_id = {c.account_id: c for c in valuation.accounts}

                for account in missing_accounts:
                    converted = converted_by_id.get(account.id)
                    if converted is None or converted.total_value <= ZERO:
                        continue
                    records.append(SnapshotRecord(day, account.id, converted.to_snapshot_values()))
                    result.created_account_snapshots += 1

                if missing_global and valuation.total_value > ZERO:
                    records.append(SnapshotRecord(day, None, valuation.to_snapshot_values()))
                    result.created_global_snapshots += 1

            stale_lookups = self._cache.stale_fallback_count - stale_before
            if stale_lookups:
                result.warnings.append(f"{stale_lookups} FX lookups used a stale rate")

            if not records:
                logger.info(f"Backfill {run_id}: no new snapshots needed")
                return result

            try:
                await asyncio.to_thread(self._store.batch_persist, records)
            except SnapshotPersistenceError as e:
                logger.error(f"Backfill batch of {len(records)} snapshots failed: {e}")
                return BackfillResult(
                    status="failed",
                    trading_dates=result.trading_dates,
                    skipped_symbols=result.skipped_symbols,
                    warnings=result.warnings,
                    reason=str(e),
                )

            notify_safely(self._notifier)
            logger.info(
                f"Backfill {run_id} created {result.created_account_snapshots} account + "
                f"{result.created_global_snapshots} global snapshots over {len(dates)} dates"
            )
            return result

    async def fill_missing_rankings(
            self,
            accounts: list[Account],
            base_currency: str | None = None,
    ) -> int:
        """
        Add the per-holding ranking to global snapshots stored without one.

        Uses the same historical prices and FX series as run(). Snapshot
        figures are left as they are; only the ranking is written.

        Returns:
            Number of snapshots updated
        """
        base = (base_currency or settings.base_currency).upper()

        with run_context("rankings"):
            pending = await asyncio.to_thread(self._store.global_snapshots_without_rankings)
            active = [a for a in accounts if a.holdings]
            if not pending or not active:
                logger.info("No global snapshots need a ranking")
                return 0

            logger.info(f"Filling rankings for {len(pending)} global snapshots")

            prices, _ = await self._fetch_price_history(active)
            pairs = required_pairs(active, base)
            await self._cache.load_historical_series(pairs)

            updated = 0
            for snapshot in pending:
                valuation = await self._value_day(active, snapshot.snapshot_date, prices, pairs, base)
                if not valuation.holding_pnls:
                    continue
                try:
                    await asyncio.to_thread(self._store.update_holding_pnls, snapshot.id, valuation.holding_pnls)
                except SnapshotPersistenceError as e:
                    logger.error(f"Ranking update stopped at {snapshot.snapshot_date}: {e}")
                    break
                updated += 1

            if updated:
                notify_safely(self._notifier)
            logger.info(f"Rankings filled for {updated}/{len(pending)} global snapshots")
            return updated

    # =========================================================================
    # PRICE HISTORY
    # =========================================================================

    async def _fetch_price_history(self, accounts: list[Account]) -> tuple[PriceHistory, list[str]]:
        """
        Daily closes for every backfillable symbol.

        Returns:
            (prices by symbol, sorted symbols that were excluded)
        """
        symbols: list[str] = []
        for account in accounts:
            for holding in account.holdings:
                if not holding.market.uses_yahoo_finance:
                    logger.debug(f"Skipping {holding.symbol}: no daily series for {holding.market.value}")
                    continue
                if holding.symbol not in symbols:
                    symbols.append(holding.symbol)

        semaphore = asyncio.Semaphore(self._max_concurrent_fetches)

        async def _one(symbol: str):
            async with semaphore:
                return await self._provider.fetch_daily_closes(symbol, self._history_range)

        outcomes = await asyncio.gather(*(_one(s) for s in symbols), return_exceptions=True)

        prices: PriceHistory = {}
        skipped: list[str] = []
        for symbol, outcome in zip(symbols, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                logger.warning(f"Price history fetch failed for {symbol}: {outcome}")
                skipped.append(symbol)
                continue
            series = closes_to_dict(outcome)
            if not series:
                logger.warning(f"No price history for {symbol}")
                skipped.append(symbol)
                continue
            prices[symbol] = series

        logger.info(f"Price history loaded for {len(prices)}/{len(symbols)} symbols")
        return prices, sorted(skipped)

    # =========================================================================
    # PER-DAY VALUATION
    # =========================================================================

    async def _value_day(
            self,
            accounts: list[Account],
            day: date,
            prices: PriceHistory,
            pairs: Iterable[tuple[str, str]],
            base_currency: str,
    ) -> GlobalValuation:
        rates = await self._rates_on(pairs, day)

        account_results = []
        for account in accounts:
            positions, quotes = self._positions_on(account, day, prices)
            account_results.append(
                self._aggregator.aggregate_account(account, quotes, rates, positions)
            )
        return self._aggregator.aggregate_global(account_results, rates, base_currency)

    async def _rates_on(self, pairs: Iterable[tuple[str, str]], day: date) -> dict[str, Decimal]:
        unique = list(pairs)
        lookups = await asyncio.gather(
            *(self._cache.get_rate_on_or_before(src, dst, day) for src, dst in unique)
        )
        return {pair_key(src, dst): lookup.rate for (src, dst), lookup in zip(unique, lookups)}

    def _positions_on(
            self,
            account: Account,
            day: date,
            prices: PriceHistory,
    ) -> tuple[dict[int, PositionState], dict[str, Quote]]:
        """
        Positions and synthetic quotes for the holdings valued on a day.

        Holdings without a position or without a close on the day are left
        out of both mappings, so they contribute neither value nor cost.
        """
        projected = self._projection.as_of(account, day)
        positions: dict[int, PositionState] = {}
        quotes: dict[str, Quote] = {}

        for holding in account.holdings:
            position = projected.get(holding.id)
            series = prices.get(holding.symbol)
            if position is None or not position.has_position or not series:
                continue

            close = series.get(day)
            if close is None:
                continue

            previous, _ = find_on_or_before(
                series, day, PREVIOUS_CLOSE_LOOKBACK_DAYS, include_target=False
            )
            positions[holding.id] = position
            quotes[holding.symbol] = Quote(
                symbol=holding.symbol,
                regular_price=close,
                previous_close=previous if previous is not None else close,
            )

        return positions, quotes
