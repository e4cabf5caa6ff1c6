# tests/services/test_daily_refresh.py
"""
Tests for DailySnapshotService.refresh_today.

This module tests:
- Weekend and no-holdings skips
- Account and global snapshots written in the global base
- Idempotent re-runs on the same day
- Notifier failures being swallowed
- Persistence failures ending the run with status "failed"
- Widget summary
"""

import logging
import threading
from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest

from gainday.models import AssetType, Market
from gainday.services.accounts import load_accounts
from gainday.services.currency_cache import CurrencyConversionCache
from gainday.services.exceptions import SnapshotPersistenceError
from gainday.services.market_data.base import Quote
from gainday.services.snapshots.refresh import DailySnapshotService
from tests.conftest import (
    RecordingNotifier,
    add_transaction,
    create_account,
    create_holding,
)

THURSDAY = date(2024, 1, 4)
SATURDAY = date(2024, 1, 6)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def portfolio(db, mock_provider):
    """JPY account with 10 X (USD) at 100 and a USD account with 5 VOO at 400."""
    brokerage = create_account(db, name="Brokerage", base_currency="JPY", sort_order=0)
    x = create_holding(db, brokerage, symbol="X", market=Market.US)
    add_transaction(db, x, "10", "100")

    us = create_account(db, name="US", base_currency="USD", sort_order=1)
    voo = create_holding(db, us, symbol="VOO", name="Vanguard S&P 500", market=Market.US,
                         asset_type=AssetType.FUND)
    add_transaction(db, voo, "5", "400")

    mock_provider.set_quote("X", "110", previous_close="100")
    mock_provider.set_quote("VOO", "450", previous_close="440")
    mock_provider.set_live_rate("USDJPY=X", "150")

    return load_accounts(db)


@pytest.fixture
def cache(mock_provider) -> CurrencyConversionCache:
    return CurrencyConversionCache(mock_provider, ttl_seconds=3600)


def make_service(store, cache, provider, notifier=None, today=THURSDAY) -> DailySnapshotService:
    return DailySnapshotService(
        store,
        cache,
        provider,
        notifier=notifier or RecordingNotifier(),
        base_currency="JPY",
        today=lambda: today,
    )


# =============================================================================
# SKIPS
# =============================================================================

class TestSkips:

    @pytest.mark.asyncio
    async def test_weekend_writes_nothing(self, store, cache, mock_provider, portfolio):
        service = make_service(store, cache, mock_provider, today=SATURDAY)

        result = await service.refresh_today(portfolio)

        assert result.status == "skipped"
        assert result.reason == "weekend"
        assert store.count() == 0
        assert mock_provider.call_counts["quote"] == 0

    @pytest.mark.asyncio
    async def test_no_holdings(self, db, store, cache, mock_provider):
        create_account(db, name="Empty")
        service = make_service(store, cache, mock_provider)

        result = await service.refresh_today(load_accounts(db))

        assert result.status == "skipped"
        assert result.reason == "no holdings"
        assert store.count() == 0


# =============================================================================
# REFRESH
# =============================================================================

class TestRefresh:

    @pytest.mark.asyncio
    async def test_writes_account_and_global_snapshots(self, store, cache, mock_provider, portfolio):
        notifier = RecordingNotifier()
        service = make_service(store, cache, mock_provider, notifier=notifier)

        result = await service.refresh_today(portfolio)

        assert result.succeeded
        assert result.account_snapshots == 2
        assert result.global_snapshot

        brokerage, us = portfolio
        assert store.latest(brokerage.id).total_value == Decimal("165000")
        # USD account stored in the global base
        assert store.latest(us.id).total_value == Decimal("337500")

        global_snapshot = store.latest(None)
        assert global_snapshot.total_value == Decimal("502500")
        assert global_snapshot.daily_pnl == Decimal("22500")
        assert {entry["symbol"] for entry in global_snapshot.holding_pnls} == {"X", "VOO"}
        assert notifier.data_changed == 1
        assert notifier.widget_refreshes == 1

    @pytest.mark.asyncio
    async def test_global_equals_sum_of_accounts(self, store, cache, mock_provider, portfolio):
        await make_service(store, cache, mock_provider).refresh_today(portfolio)

        accounts = [store.latest(a.id) for a in portfolio]
        global_snapshot = store.latest(None)
        for field_name in ("total_value", "total_cost", "daily_pnl"):
            account_sum = sum(getattr(s, field_name) for s in accounts)
            assert abs(account_sum - getattr(global_snapshot, field_name)) <= Decimal("1e-6")

    @pytest.mark.asyncio
    async def test_same_day_rerun_is_idempotent(self, store, cache, mock_provider, portfolio):
        service = make_service(store, cache, mock_provider)

        await service.refresh_today(portfolio)
        first = store.latest(None)
        await service.refresh_today(portfolio)
        second = store.latest(None)

        assert store.count() == 3
        assert second.id == first.id
        assert second.total_value == first.total_value
        assert second.daily_pnl == first.daily_pnl

    @pytest.mark.asyncio
    async def test_rerun_with_new_quotes_updates(self, store, cache, mock_provider, portfolio):
        service = make_service(store, cache, mock_provider)
        await service.refresh_today(portfolio)

        mock_provider.set_quote("X", "120", previous_close="100")
        await service.refresh_today(portfolio)

        assert store.count() == 3
        assert store.latest(portfolio[0].id).total_value == Decimal("180000")

    @pytest.mark.asyncio
    async def test_supplied_quotes_and_rates_skip_fetching(self, store, cache, mock_provider, portfolio):
        quotes = {
            "X": Quote(symbol="X", regular_price=Decimal("100"), previous_close=Decimal("100")),
            "VOO": Quote(symbol="VOO", regular_price=Decimal("400"), previous_close=Decimal("400")),
        }
        service = make_service(store, cache, mock_provider)

        result = await service.refresh_today(portfolio, quotes=quotes, rates={"USDJPY": Decimal("100")})

        assert result.succeeded
        assert mock_provider.call_counts["quote"] == 0
        assert mock_provider.call_counts["live_rate"] == 0
        assert store.latest(None).total_value == Decimal("300000")

    @pytest.mark.asyncio
    async def test_missing_quote_still_completes(self, store, cache, mock_provider, portfolio):
        mock_provider._quotes.pop("VOO")
        service = make_service(store, cache, mock_provider)

        result = await service.refresh_today(portfolio)

        assert result.succeeded
        assert store.latest(None).total_value == Decimal("165000")

    @pytest.mark.asyncio
    async def test_missing_rate_recorded_as_warning(self, store, cache, mock_provider, portfolio):
        mock_provider._live_rates.clear()
        service = make_service(store, cache, mock_provider)

        result = await service.refresh_today(portfolio)

        assert result.succeeded
        assert any("USDJPY" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_jp_fund_not_quoted(self, db, store, cache, mock_provider):
        account = create_account(db)
        fund = create_holding(db, account, symbol="0331418A", market=Market.JP_FUND,
                              asset_type=AssetType.FUND)
        add_transaction(db, fund, "1000", "1.5")
        stock = create_holding(db, account, symbol="7203.T", market=Market.JP)
        add_transaction(db, stock, "100", "2500")
        mock_provider.set_quote("7203.T", "2600", previous_close="2600")

        result = await make_service(store, cache, mock_provider).refresh_today(load_accounts(db))

        assert result.succeeded
        assert mock_provider.call_counts["quote"] == 1
        assert store.latest(None).total_value == Decimal("260000")

    @pytest.mark.asyncio
    async def test_store_calls_run_off_the_event_loop_thread(self, store, cache, mock_provider, portfolio):
        loop_thread = threading.get_ident()
        threads = []
        original_upsert = store.upsert
        original_heatmap = store.month_heatmap

        def recording_upsert(*args):
            threads.append(threading.get_ident())
            return original_upsert(*args)

        def recording_heatmap(*args):
            threads.append(threading.get_ident())
            return original_heatmap(*args)

        service = make_service(store, cache, mock_provider)
        with patch.object(store, "upsert", side_effect=recording_upsert), \
                patch.object(store, "month_heatmap", side_effect=recording_heatmap):
            result = await service.refresh_today(portfolio)

        assert result.succeeded
        assert len(threads) == 4
        assert loop_thread not in threads


# =============================================================================
# FAILURES
# =============================================================================

class TestFailures:

    @pytest.mark.asyncio
    async def test_notifier_failure_is_swallowed(self, store, cache, mock_provider, portfolio):
        notifier = RecordingNotifier(fail=True)
        service = make_service(store, cache, mock_provider, notifier=notifier)

        result = await service.refresh_today(portfolio)

        assert result.succeeded
        assert notifier.data_changed == 1
        assert notifier.widget_refreshes == 1
        assert store.count() == 3

    @pytest.mark.asyncio
    async def test_notifier_failure_logged_at_debug_only(self, store, cache, mock_provider, portfolio, caplog):
        service = make_service(store, cache, mock_provider, notifier=RecordingNotifier(fail=True))

        with caplog.at_level(logging.DEBUG, logger="gainday.services.snapshots.notifier"):
            result = await service.refresh_today(portfolio)

        notifier_records = [r for r in caplog.records if r.name == "gainday.services.snapshots.notifier"]
        assert result.succeeded
        assert len(notifier_records) == 2
        assert all(r.levelno == logging.DEBUG for r in notifier_records)

    @pytest.mark.asyncio
    async def test_persistence_failure_ends_run(self, store, cache, mock_provider, portfolio):
        notifier = RecordingNotifier()
        service = make_service(store, cache, mock_provider, notifier=notifier)
        calls = {"n": 0}
        original_upsert = store.upsert

        def flaky_upsert(snapshot_date, account_id, values):
            calls["n"] += 1
            if calls["n"] == 2:
                raise SnapshotPersistenceError("disk full", snapshot_date, account_id)
            return original_upsert(snapshot_date, account_id, values)

        with patch.object(store, "upsert", side_effect=flaky_upsert):
            result = await service.refresh_today(portfolio)

        assert result.status == "failed"
        assert result.account_snapshots == 1
        assert not result.global_snapshot
        assert "disk full" in result.reason
        # First account snapshot stays
        assert store.count() == 1
        assert notifier.data_changed == 0


# =============================================================================
# WIDGET SUMMARY
# =============================================================================

class TestWidgetSummary:

    @pytest.mark.asyncio
    async def test_summary_contents(self, store, cache, mock_provider, portfolio):
        result = await make_service(store, cache, mock_provider).refresh_today(portfolio)
        widget = result.widget

        assert widget.total_value == Decimal("502500")
        assert widget.base_currency == "JPY"
        assert [h.symbol for h in widget.holdings] == ["X", "VOO"]
        assert [cell.day for cell in widget.heatmap] == [4]

    @pytest.mark.asyncio
    async def test_summary_holdings_limited(self, db, store, cache, mock_provider):
        account = create_account(db)
        for i in range(8):
            holding = create_holding(db, account, symbol=f"S{i}", market=Market.US)
            add_transaction(db, holding, "1", "10")
            mock_provider.set_quote(f"S{i}", "10")
        mock_provider.set_live_rate("USDJPY=X", "150")

        result = await make_service(store, cache, mock_provider).refresh_today(load_accounts(db))

        assert len(result.widget.holdings) == 6
