# gainday/services/market_data/__init__.py
"""
Market data services package.

- Abstract async provider interface and transient data classes (base.py)
- Yahoo Finance implementation (yahoo.py)

Usage:
    from gainday.services.market_data import (
        MarketDataProvider,
        YahooFinanceProvider,
        Quote,
        DailyClose,
    )

Architecture:
    MarketDataProvider (ABC)
    └── YahooFinanceProvider (yfinance in the default executor)
"""

from gainday.services.market_data.base import (
    MarketDataProvider,
    Quote,
    DailyClose,
    closes_to_dict,
)
from gainday.services.market_data.yahoo import YahooFinanceProvider

__all__ = [
    # Abstract interface
    "MarketDataProvider",
    # Data classes
    "Quote",
    "DailyClose",
    "closes_to_dict",
    # Concrete implementations
    "YahooFinanceProvider",
]
