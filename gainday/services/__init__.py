# gainday/services/__init__.py
"""
Service layer of the snapshot engine.

Services:
- Receive their collaborators (store, cache, provider, notifier) explicitly
- Raise domain-specific exceptions from exceptions.py
- Hold no global state; only `settings` is shared

Usage:
    from gainday.services import CurrencyConversionCache, PortfolioAggregator
    from gainday.services import DailySnapshotService, HistoricalBackfillEngine

Architecture:
    services/
    ├── __init__.py          # This file - main exports
    ├── exceptions.py        # Domain exceptions
    ├── constants.py         # Business constants
    ├── protocols.py         # Notifier interface
    ├── accounts.py          # Eager account loading
    ├── currency_cache.py    # Live and historical FX rates
    ├── market_data/         # Provider interface + Yahoo Finance
    ├── valuation/           # Position, holding, account and global valuation
    └── snapshots/           # Store, daily refresh, historical backfill
"""

from gainday.services.accounts import get_account, load_accounts
from gainday.services.currency_cache import (
    CurrencyConversionCache,
    RateLookup,
    RateSource,
    fx_symbol,
    pair_key,
)
from gainday.services.exceptions import (
    ServiceError,
    NotFoundError,
    AccountNotFoundError,
    SnapshotNotFoundError,
    MarketDataError,
    ProviderUnavailableError,
    TickerNotFoundError,
    RateLimitError,
    FXRateError,
    FXProviderError,
    FXConversionError,
    SnapshotError,
    SnapshotPersistenceError,
)
from gainday.services.protocols import Notifier
from gainday.services.snapshots import (
    BackfillResult,
    DailySnapshotService,
    HistoricalBackfillEngine,
    RefreshResult,
    SnapshotStore,
)
from gainday.services.valuation import AccountProjection, PortfolioAggregator

__all__ = [
    # Services
    "CurrencyConversionCache",
    "PortfolioAggregator",
    "AccountProjection",
    "SnapshotStore",
    "DailySnapshotService",
    "HistoricalBackfillEngine",
    # Results
    "RateLookup",
    "RateSource",
    "RefreshResult",
    "BackfillResult",
    # Helpers
    "load_accounts",
    "get_account",
    "pair_key",
    "fx_symbol",
    "Notifier",
    # Exceptions
    "ServiceError",
    "NotFoundError",
    "AccountNotFoundError",
    "SnapshotNotFoundError",
    "MarketDataError",
    "ProviderUnavailableError",
    "TickerNotFoundError",
    "RateLimitError",
    "FXRateError",
    "FXProviderError",
    "FXConversionError",
    "SnapshotError",
    "SnapshotPersistenceError",
]
