# gainday/services/valuation/__init__.py
"""
Valuation package.

Turns holdings, quotes and FX rates into account and global totals.

Usage:
    from gainday.services.valuation import PortfolioAggregator

    aggregator = PortfolioAggregator()
    result = aggregator.aggregate(accounts, quotes, rates, base_currency="JPY")

Architecture:
    valuation/
    ├── __init__.py        # This file - package exports
    ├── types.py           # Internal data classes
    ├── calculators.py     # PositionCalculator, ValuationCalculator
    ├── projection.py      # AccountProjection (as-of positions)
    └── aggregator.py      # PortfolioAggregator (account + global stages)

Data Flow:
    Transactions → PositionCalculator → PositionState
    PositionState + Quote + rate → ValuationCalculator → HoldingValuation
    HoldingValuations → aggregate_account → AccountValuation
    AccountValuations + rates → aggregate_global → GlobalValuation
"""

from gainday.services.valuation.aggregator import PortfolioAggregator, required_pairs
from gainday.services.valuation.calculators import PositionCalculator, ValuationCalculator
from gainday.services.valuation.projection import AccountProjection
from gainday.services.valuation.types import (
    AccountValuation,
    AssetTypeBreakdown,
    ConvertedAccountTotals,
    GlobalValuation,
    HoldingDailyPnL,
    HoldingValuation,
    PositionState,
    SnapshotValues,
    daily_pnl_percent_of,
)

__all__ = [
    # Orchestration
    "PortfolioAggregator",
    "required_pairs",
    "AccountProjection",
    # Calculators
    "PositionCalculator",
    "ValuationCalculator",
    # Types
    "AccountValuation",
    "AssetTypeBreakdown",
    "ConvertedAccountTotals",
    "GlobalValuation",
    "HoldingDailyPnL",
    "HoldingValuation",
    "PositionState",
    "SnapshotValues",
    "daily_pnl_percent_of",
]
