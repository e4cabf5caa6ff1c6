# tests/conftest.py
"""
Pytest configuration and fixtures.

This module provides shared fixtures for all tests:
- Database fixtures (in-memory SQLite shared by every session)
- Mock market data provider and recording notifier
- Sample data factories for accounts, holdings and transactions
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")

import asyncio
from datetime import date
from decimal import Decimal
from typing import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from gainday.models import (
    Account,
    AccountType,
    AssetType,
    Base,
    Holding,
    Market,
    Transaction,
    TransactionType,
)
from gainday.services.exceptions import TickerNotFoundError
from gainday.services.market_data.base import DailyClose, MarketDataProvider, Quote
from gainday.services.snapshots.store import SnapshotStore


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def session_factory(db_engine) -> sessionmaker:
    """Session factory bound to the test engine (what SnapshotStore receives)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Iterator[Session]:
    """Create a database session for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def store(session_factory) -> SnapshotStore:
    return SnapshotStore(session_factory)


# =============================================================================
# MOCK MARKET DATA PROVIDER
# =============================================================================

class MockMarketDataProvider(MarketDataProvider):
    """
    In-memory MarketDataProvider for testing.

    Quotes, daily closes and FX data are configured per symbol; anything
    not configured raises TickerNotFoundError. Call counts are tracked per
    method so tests can assert on caching and de-duplication, and the peak
number of calls in flight at once is kept in max_in_flight.
    """

    def __init__(self, delay: float = 0):
        super().__init__(max_concurrency=4)
        self._quotes: dict[str, Quote] = {}
        self._closes: dict[str, dict[date, Decimal]] = {}
        self._live_rates: dict[str, Decimal] = {}
        self._rate_series: dict[str, dict[date, Decimal]] = {}
        self._errors: dict[str, Exception] = {}
        self._delay = delay
        self.call_counts: dict[str, int] = {
            "quote": 0,
            "closes": 0,
            "live_rate": 0,
            "rate_series": 0,
        }
        self.requested_closes: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def name(self) -> str:
        return "mock"

    # Configuration

    def set_quote(
            self,
            symbol: str,
            price: str | Decimal | None,
            previous_close: str | Decimal | None = None,
            **kwargs,
    ) -> None:
        self._quotes[symbol] = Quote(
            symbol=symbol,
            regular_price=Decimal(str(price)) if price is not None else None,
            previous_close=Decimal(str(previous_close)) if previous_close is not None else None,
            **kwargs,
        )

    def set_closes(self, symbol: str, closes: dict[date, str | Decimal]) -> None:
        self._closes[symbol] = {d: Decimal(str(v)) for d, v in closes.items()}

    def set_live_rate(self, pair_symbol: str, rate: str | Decimal) -> None:
        self._live_rates[pair_symbol] = Decimal(str(rate))

    def set_rate_series(self, pair_symbol: str, rates: dict[date, str | Decimal]) -> None:
        self._rate_series[pair_symbol] = {d: Decimal(str(v)) for d, v in rates.items()}

    def set_error(self, symbol: str, error: Exception) -> None:
        """Make every call for this symbol (or pair symbol) raise."""
        self._errors[symbol] = error

    # MarketDataProvider interface

    async def fetch_quote(self, symbol: str) -> Quote:
        self.call_counts["quote"] += 1
        await self._maybe_delay()
        self._maybe_raise(symbol)
        if symbol not in self._quotes:
            raise TickerNotFoundError(symbol, self.name)
        return self._quotes[symbol]

    async def fetch_daily_closes(self, symbol: str, range_: str) -> list[DailyClose]:
        self.call_counts["closes"] += 1
        self.requested_closes.append(symbol)
        await self._maybe_delay()
        self._maybe_raise(symbol)
        series = self._closes.get(symbol, {})
        return [DailyClose(date=d, close=series[d]) for d in sorted(series)]

    async def fetch_live_rate(self, pair_symbol: str) -> Decimal:
        self.call_counts["live_rate"] += 1
        await self._maybe_delay()
        self._maybe_raise(pair_symbol)
        if pair_symbol not in self._live_rates:
            raise TickerNotFoundError(pair_symbol, self.name)
        return self._live_rates[pair_symbol]

    async def fetch_historical_rate_series(self, pair_symbol: str, range_: str) -> list[DailyClose]:
        self.call_counts["rate_series"] += 1
        await self._maybe_delay()
        self._maybe_raise(pair_symbol)
        series = self._rate_series.get(pair_symbol, {})
        return [DailyClose(date=d, close=series[d]) for d in sorted(series)]

    async def _maybe_delay(self) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self._delay:
                await asyncio.sleep(self._delay)
        finally:
            self.in_flight -= 1

    def _maybe_raise(self, symbol: str) -> None:
        if symbol in self._errors:
            raise self._errors[symbol]


@pytest.fixture
def mock_provider() -> MockMarketDataProvider:
    """Create a fresh mock provider for each test."""
    return MockMarketDataProvider()


# =============================================================================
# RECORDING NOTIFIER
# =============================================================================

class RecordingNotifier:
    """Notifier that counts calls and can be told to fail."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.data_changed = 0
        self.widget_refreshes = 0

    def notify_data_changed(self) -> None:
        self.data_changed += 1
        if self.fail:
            raise RuntimeError("notifier broken")

    def refresh_widgets(self) -> None:
        self.widget_refreshes += 1
        if self.fail:
            raise RuntimeError("widget center unavailable")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


# =============================================================================
# SAMPLE DATA FACTORIES
# =============================================================================

def create_account(
        db: Session,
        name: str = "Brokerage",
        base_currency: str = "JPY",
        account_type: AccountType = AccountType.NORMAL,
        sort_order: int = 0,
) -> Account:
    """Factory function for creating Account entities in the database."""
    account = Account(
        name=name,
        base_currency=base_currency,
        account_type=account_type,
        sort_order=sort_order,
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def create_holding(
        db: Session,
        account: Account,
        symbol: str = "X",
        name: str = "Test Holding",
        market: Market = Market.US,
        asset_type: AssetType = AssetType.STOCK,
) -> Holding:
    """Factory function for creating Holding entities in the database."""
    holding = Holding(
        account_id=account.id,
        symbol=symbol,
        name=name,
        market=market,
        asset_type=asset_type,
    )
    db.add(holding)
    db.commit()
    db.refresh(holding)
    return holding


def add_transaction(
        db: Session,
        holding: Holding,
        quantity: str | Decimal,
        price: str | Decimal,
        trade_date: date = date(2024, 1, 2),
        transaction_type: TransactionType = TransactionType.BUY,
        fee: str | Decimal = "0",
) -> Transaction:
    """Factory function for creating Transaction entities in the database."""
    txn = Transaction(
        holding_id=holding.id,
        transaction_type=transaction_type,
        trade_date=trade_date,
        quantity=Decimal(str(quantity)),
        price=Decimal(str(price)),
        fee=Decimal(str(fee)),
        currency=holding.currency,
    )
    db.add(txn)
    db.commit()
    db.refresh(txn)
    return txn


def make_transaction(
        quantity: str,
        price: str,
        trade_date: date = date(2024, 1, 2),
        transaction_type: TransactionType = TransactionType.BUY,
        fee: str = "0",
        txn_id: int | None = None,
) -> Transaction:
    """Unsaved Transaction for pure calculator tests."""
    return Transaction(
        id=txn_id,
        transaction_type=transaction_type,
        trade_date=trade_date,
        quantity=Decimal(quantity),
        price=Decimal(price),
        fee=Decimal(fee),
    )
