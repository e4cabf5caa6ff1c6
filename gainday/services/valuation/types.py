# gainday/services/valuation/types.py
"""
Internal data types for the valuation services.

Design Principles:
- Immutable where possible (frozen=True for value objects)
- Use Decimal for ALL financial values (never float)
- Percent values are already scaled (5 means 5%)
- Warnings accumulate for data quality tracking

Type Hierarchy:
    PositionState          - Transaction-derived quantity and cost of one holding
    HoldingValuation       - One holding valued against a quote, in account currency
    AccountValuation       - Sum of an account's holdings, in account currency
    AssetTypeBreakdown     - Per-asset-type slice of a snapshot
    HoldingDailyPnL        - One ranking entry (per-holding daily P&L)
    SnapshotValues         - Figures written to one snapshot row
    ConvertedAccountTotals - An account's figures in the global base currency
    GlobalValuation        - All accounts combined in the global base currency
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from gainday.models import AssetType
from gainday.services.constants import PERCENT_SCALE, ZERO


def daily_pnl_percent_of(total_value: Decimal, daily_pnl: Decimal) -> Decimal:
    """
    Daily P&L as a percent of the previous day's value.

    Formula:
        previous_value = total_value - daily_pnl
        percent = daily_pnl / previous_value × 100   (0 if previous_value <= 0)
    """
    previous_value = total_value - daily_pnl
    if previous_value <= ZERO:
        return ZERO
    return daily_pnl / previous_value * PERCENT_SCALE


# =============================================================================
# POSITION
# =============================================================================

@dataclass(frozen=True)
class PositionState:
    """
    Quantity and cost of a holding derived from its transactions.

    Attributes:
        quantity: Shares held (bought - sold; dividends ignored)
        average_cost: Weighted average cost per share, fees included
        realized_pnl: Sum over sells of qty × price - qty × avg_before - fee
        total_dividends: Sum of price × qty over dividend transactions
        total_sell_fees: Fees paid on sells
    """

    quantity: Decimal = ZERO
    average_cost: Decimal = ZERO
    realized_pnl: Decimal = ZERO
    total_dividends: Decimal = ZERO
    total_sell_fees: Decimal = ZERO

    @property
    def total_cost(self) -> Decimal:
        return self.average_cost * self.quantity

    @property
    def has_position(self) -> bool:
        return self.quantity > ZERO


# =============================================================================
# HOLDING / ACCOUNT VALUATIONS
# =============================================================================

@dataclass(frozen=True)
class HoldingValuation:
    """
    Valuation of one holding in its account's currency.

    Attributes:
        holding_id: Database ID of the holding
        symbol: Holding symbol
        name: Display name
        asset_type: Asset type, for the breakdown
        currency: Holding's trading currency
        quantity: Shares valued
        effective_price: Price used (pre/post-market or regular), trading currency
        previous_close: Previous close used for daily P&L, trading currency
        fx_rate: Holding currency -> account currency rate applied
        market_value: effective_price × quantity × fx_rate
        cost_basis: average_cost × quantity × fx_rate
        daily_pnl: (effective_price - previous_close) × quantity × fx_rate
        daily_pnl_percent: daily_pnl / previous value × 100
        has_quote: False when the holding was valued without a quote (price 0)
    """

    holding_id: int | None
    symbol: str
    name: str
    asset_type: AssetType
    currency: str
    quantity: Decimal
    effective_price: Decimal
    previous_close: Decimal
    fx_rate: Decimal
    market_value: Decimal
    cost_basis: Decimal
    unrealized_pnl: Decimal
    unrealized_pnl_percent: Decimal
    daily_pnl: Decimal
    daily_pnl_percent: Decimal
    has_quote: bool = True


@dataclass
class AccountValuation:
    """
    An account's holdings summed in the account's own currency.

    Note:
        Holdings with quantity 0 are still listed (they contribute zero);
        the ranking filters them out later.
    """

    account_id: int | None
    account_name: str
    currency: str
    total_value: Decimal = ZERO
    total_cost: Decimal = ZERO
    daily_pnl: Decimal = ZERO
    holdings: list[HoldingValuation] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def daily_pnl_percent(self) -> Decimal:
        return daily_pnl_percent_of(self.total_value, self.daily_pnl)

    @property
    def unrealized_pnl(self) -> Decimal:
        return self.total_value - self.total_cost

    @property
    def has_holdings(self) -> bool:
        return len(self.holdings) > 0


# =============================================================================
# SNAPSHOT SUB-RECORDS
# =============================================================================

@dataclass
class AssetTypeBreakdown:
    """
    Per-asset-type slice of a snapshot.

    Attributes:
        pnl: Daily P&L of the slice (not unrealized)
    """

    asset_type: str
    value: Decimal = ZERO
    cost: Decimal = ZERO
    pnl: Decimal = ZERO
    currency: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_type": self.asset_type,
            "value": str(self.value),
            "cost": str(self.cost),
            "pnl": str(self.pnl),
            "currency": self.currency,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AssetTypeBreakdown:
        return cls(
            asset_type=data["asset_type"],
            value=Decimal(str(data.get("value", "0"))),
            cost=Decimal(str(data.get("cost", "0"))),
            pnl=Decimal(str(data.get("pnl", "0"))),
            currency=data.get("currency", ""),
        )


@dataclass(frozen=True)
class HoldingDailyPnL:
    """One ranking entry; money in the global base, percent currency-neutral."""

    symbol: str
    name: str
    daily_pnl: Decimal
    daily_pnl_percent: Decimal
    market_value: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "daily_pnl": str(self.daily_pnl),
            "daily_pnl_percent": str(self.daily_pnl_percent),
            "market_value": str(self.market_value),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HoldingDailyPnL:
        return cls(
            symbol=data["symbol"],
            name=data.get("name", ""),
            daily_pnl=Decimal(str(data.get("daily_pnl", "0"))),
            daily_pnl_percent=Decimal(str(data.get("daily_pnl_percent", "0"))),
            market_value=Decimal(str(data.get("market_value", "0"))),
        )


# =============================================================================
# SNAPSHOT FIGURES
# =============================================================================

@dataclass
class SnapshotValues:
    """
    Figures for one snapshot row.

    cumulative_pnl is always total_value - total_cost.
    """

    total_value: Decimal = ZERO
    total_cost: Decimal = ZERO
    daily_pnl: Decimal = ZERO
    daily_pnl_percent: Decimal = ZERO
    breakdown: list[AssetTypeBreakdown] = field(default_factory=list)
    holding_pnls: list[HoldingDailyPnL] = field(default_factory=list)

    @property
    def cumulative_pnl(self) -> Decimal:
        return self.total_value - self.total_cost


@dataclass
class ConvertedAccountTotals:
    """An account's totals converted into the global base currency."""

    account_id: int | None
    account_name: str
    account_currency: str
    fx_rate: Decimal
    total_value: Decimal = ZERO
    total_cost: Decimal = ZERO
    daily_pnl: Decimal = ZERO
    breakdown: list[AssetTypeBreakdown] = field(default_factory=list)
    holding_pnls: list[HoldingDailyPnL] = field(default_factory=list)

    @property
    def daily_pnl_percent(self) -> Decimal:
        return daily_pnl_percent_of(self.total_value, self.daily_pnl)

    def to_snapshot_values(self) -> SnapshotValues:
        return SnapshotValues(
            total_value=self.total_value,
            total_cost=self.total_cost,
            daily_pnl=self.daily_pnl,
            daily_pnl_percent=self.daily_pnl_percent,
            breakdown=list(self.breakdown),
            holding_pnls=list(self.holding_pnls),
        )


@dataclass
class GlobalValuation:
    """
    Every account combined in the global base currency.

    Attributes:
        accounts: Per-account totals in the base currency, in input order
        breakdown: Asset-type slices across all accounts
        holding_pnls: Ranking entries across all accounts, in account order
    """

    base_currency: str
    total_value: Decimal = ZERO
    total_cost: Decimal = ZERO
    daily_pnl: Decimal = ZERO
    accounts: list[ConvertedAccountTotals] = field(default_factory=list)
    breakdown: list[AssetTypeBreakdown] = field(default_factory=list)
    holding_pnls: list[HoldingDailyPnL] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def daily_pnl_percent(self) -> Decimal:
        return daily_pnl_percent_of(self.total_value, self.daily_pnl)

    @property
    def cumulative_pnl(self) -> Decimal:
        return self.total_value - self.total_cost

    def to_snapshot_values(self) -> SnapshotValues:
        return SnapshotValues(
            total_value=self.total_value,
            total_cost=self.total_cost,
            daily_pnl=self.daily_pnl,
            daily_pnl_percent=self.daily_pnl_percent,
            breakdown=list(self.breakdown),
            holding_pnls=list(self.holding_pnls),
        )
