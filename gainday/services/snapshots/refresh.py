# gainday/services/snapshots/refresh.py
"""
Daily snapshot refresh.

Values every account from current quotes and FX rates and upserts
today's snapshots: one per account with holdings, plus the global
aggregate. Meant to be triggered by a scheduler; running it again on the
same day overwrites that day's figures.

Flow:
    1. Skip on weekends and when no account holds anything
    2. Fetch quotes and rates unless the caller supplies them
    3. Aggregate each account, then the global total
    4. Upsert account snapshots (in the global base), then the global one
    5. Notify; build the widget summary

Store calls are synchronous SQLAlchemy and run in a worker thread.

Usage:
    service = DailySnapshotService(store, cache, provider)
    result = await service.refresh_today(load_accounts(db))
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Literal

from gainday.config import settings
from gainday.models import Account
from gainday.services.constants import WIDGET_HOLDINGS_LIMIT, ZERO
from gainday.services.currency_cache import CurrencyConversionCache
from gainday.services.exceptions import SnapshotPersistenceError
from gainday.services.market_data.base import MarketDataProvider, Quote
from gainday.services.protocols import Notifier
from gainday.services.snapshots.notifier import LoggingNotifier, notify_safely
from gainday.services.snapshots.store import HeatmapDay, SnapshotStore
from gainday.services.valuation.aggregator import PortfolioAggregator, required_pairs
from gainday.services.valuation.types import AccountValuation, GlobalValuation
from gainday.utils.context import run_context
from gainday.utils.date_utils import is_weekend

logger = logging.getLogger(__name__)

RefreshStatus = Literal["completed", "skipped", "failed"]


# =============================================================================
# RESULT DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class WidgetHolding:
    symbol: str
    name: str
    currency: str


@dataclass
class WidgetSummary:
    """
    Compact figures for home-screen widgets.

    Attributes:
        holdings: Up to WIDGET_HOLDINGS_LIMIT held positions, account order
        heatmap: This month's global snapshots, one cell per day
    """

    total_value: Decimal
    daily_pnl: Decimal
    daily_pnl_percent: Decimal
    base_currency: str
    updated_at: datetime
    holdings: list[WidgetHolding] = field(default_factory=list)
    heatmap: list[HeatmapDay] = field(default_factory=list)


@dataclass
class RefreshResult:
    """Outcome of one refresh_today call."""

    status: RefreshStatus
    snapshot_date: date
    reason: str | None = None
    account_snapshots: int = 0
    global_snapshot: bool = False
    widget: WidgetSummary | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == "completed"


# =============================================================================
# SERVICE
# =============================================================================

class DailySnapshotService:
    """
    Writes today's account and global snapshots.

    Attributes:
        _store: Snapshot persistence
        _cache: FX cache for live rates
        _provider: Market data source for quotes
        _notifier: Change notification sink
    """

    def __init__(
            self,
            store: SnapshotStore,
            cache: CurrencyConversionCache,
            provider: MarketDataProvider,
            notifier: Notifier | None = None,
            aggregator: PortfolioAggregator | None = None,
            base_currency: str | None = None,
            today: Callable[[], date] = date.today,
    ) -> None:
        self._store = store
        self._cache = cache
        self._provider = provider
        self._notifier = notifier or LoggingNotifier()
        self._aggregator = aggregator or PortfolioAggregator()
        self._base_currency = (base_currency or settings.base_currency).upper()
        self._today = today

    async def refresh_today(
            self,
            accounts: list[Account],
            quotes: Mapping[str, Quote] | None = None,
            rates: Mapping[str, Decimal] | None = None,
            base_currency: str | None = None,
    ) -> RefreshResult:
        """
        Value all accounts and upsert today's snapshots.

        Args:
            accounts: Accounts with holdings and transactions loaded
            quotes: Quotes keyed by symbol; fetched when None
            rates: Rates keyed by pair_key; fetched when None
            base_currency: Global base; defaults to the configured one

        Returns:
            RefreshResult. A persistence failure yields status "failed";
            snapshots written before the failure stay.
        """
        base = (base_currency or self._base_currency).upper()
        today = self._today()

        with run_context("refresh") as run_id:
            if is_weekend(today):
                logger.info(f"Refresh skipped: {today} is a weekend")
                return RefreshResult(status="skipped", snapshot_date=today, reason="weekend")

            active = [a for a in accounts if a.holdings]
            if not active:
                logger.info("Refresh skipped: no account has holdings")
                return RefreshResult(status="skipped", snapshot_date=today, reason="no holdings")

            logger.info(f"Refresh {run_id} started for {today}: {len(active)} accounts, base={base}")

            if quotes is None:
                quotes = await self._fetch_quotes(active)
            if rates is None:
                rates = await self._cache.get_rates(required_pairs(active, base))

            account_results = [
                self._aggregator.aggregate_account(account, quotes, rates)
                for account in active
            ]
            global_result = self._aggregator.aggregate_global(account_results, rates, base)
            result = RefreshResult(
                status="completed",
                snapshot_date=today,
                warnings=list(global_result.warnings),
            )

            try:
                for converted in global_result.accounts:
                    await asyncio.to_thread(
                        self._store.upsert, today, converted.account_id, converted.to_snapshot_values()
                    )
                    result.account_snapshots += 1
                await asyncio.to_thread(self._store.upsert, today, None, global_result.to_snapshot_values())
                result.global_snapshot = True
            except SnapshotPersistenceError as e:
                logger.error(
                    f"Refresh aborted after {result.account_snapshots} account snapshots: {e}"
                )
                result.status = "failed"
                result.reason = str(e)
                return result

            notify_safely(self._notifier)
            heatmap = await asyncio.to_thread(self._store.month_heatmap, today.year, today.month)
            result.widget = self._build_widget_summary(account_results, global_result, heatmap)

            logger.info(
                f"Refresh completed for {today}: {result.account_snapshots} account snapshots, "
                f"value={global_result.total_value} daily={global_result.daily_pnl} {base}"
            )
            return result

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _fetch_quotes(self, accounts: list[Account]) -> dict[str, Quote]:
        symbols = [
            holding.symbol
            for account in accounts
            for holding in account.holdings
            if holding.market.uses_yahoo_finance
        ]
        quotes = await self._provider.fetch_quotes(symbols)
        missing = sorted(set(symbols) - set(quotes))
        if missing:
            logger.warning(f"No quotes for {len(missing)} symbols: {', '.join(missing)}")
        return quotes

    def _build_widget_summary(
            self,
            account_results: list[AccountValuation],
            global_result: GlobalValuation,
            heatmap: list[HeatmapDay],
    ) -> WidgetSummary:
        held = [
            WidgetHolding(symbol=h.symbol, name=h.name, currency=h.currency)
            for account in account_results
            for h in account.holdings
            if h.quantity > ZERO
        ]
        return WidgetSummary(
            total_value=global_result.total_value,
            daily_pnl=global_result.daily_pnl,
            daily_pnl_percent=global_result.daily_pnl_percent,
            base_currency=global_result.base_currency,
            updated_at=datetime.now(timezone.utc),
            holdings=held[:WIDGET_HOLDINGS_LIMIT],
            heatmap=heatmap,
        )
