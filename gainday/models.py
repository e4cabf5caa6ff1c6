# gainday/models.py
import enum
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import String, Date, DateTime, ForeignKey, Enum, Numeric, UniqueConstraint, Integer, JSON, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# =============================================================================
# ENUMERATIONS
# =============================================================================

class AssetType(str, enum.Enum):
    STOCK = "stock"
    FUND = "fund"
    METAL = "metal"
    CRYPTO = "crypto"
    BOND = "bond"
    CASH = "cash"


class Market(str, enum.Enum):
    """
    Market/exchange tag of a holding.

    The few behaviors that vary by market live in the mapping tables below
    rather than in string comparisons at call sites.
    """
    JP = "JP"
    JP_FUND = "JP_FUND"  # Japanese investment trusts (no standard daily series)
    CN = "CN"
    US = "US"
    HK = "HK"
    COMMODITY = "COMMODITY"
    CRYPTO = "CRYPTO"

    @property
    def currency(self) -> str:
        return MARKET_CURRENCIES[self]

    @property
    def uses_yahoo_finance(self) -> bool:
        return self not in NON_YAHOO_MARKETS


class TransactionType(str, enum.Enum):
    BUY = "buy"
    SELL = "sell"
    DIVIDEND = "dividend"


class AccountType(str, enum.Enum):
    NORMAL = "normal"
    NISA_TSUMITATE = "nisa_tsumitate"
    NISA_GROWTH = "nisa_growth"

    @classmethod
    def _missing_(cls, value):
        # Older records stored the general account as "general"
        if value == "general":
            return cls.NORMAL
        return None

    @property
    def is_nisa(self) -> bool:
        return self in (AccountType.NISA_TSUMITATE, AccountType.NISA_GROWTH)


class MarketState(str, enum.Enum):
    """Trading session reported with a quote."""
    PRE = "PRE"
    REGULAR = "REGULAR"
    POST = "POST"
    CLOSED = "CLOSED"
    PREPRE = "PREPRE"
    POSTPOST = "POSTPOST"

    @property
    def is_pre_market(self) -> bool:
        return self in (MarketState.PRE, MarketState.PREPRE)

    @property
    def is_post_market(self) -> bool:
        return self in (MarketState.POST, MarketState.POSTPOST)

    @property
    def is_trading(self) -> bool:
        return self != MarketState.CLOSED


class BaseCurrency(str, enum.Enum):
    JPY = "JPY"
    CNY = "CNY"
    USD = "USD"
    HKD = "HKD"


MARKET_CURRENCIES: dict[Market, str] = {
    Market.JP: "JPY",
    Market.JP_FUND: "JPY",
    Market.CN: "CNY",
    Market.US: "USD",
    Market.HK: "HKD",
    Market.COMMODITY: "USD",
    Market.CRYPTO: "USD",
}

NON_YAHOO_MARKETS: frozenset[Market] = frozenset({Market.JP_FUND})


# =============================================================================
# ACCOUNTS, HOLDINGS, TRANSACTIONS
# =============================================================================

class Account(Base):
    """
    A named container of holdings reporting in its own base currency.

    Maps to a brokerage account (general or NISA). Every holding belongs
    to exactly one account.
    """
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String)
    account_type: Mapped[AccountType] = mapped_column(Enum(AccountType), default=AccountType.NORMAL)
    base_currency: Mapped[str] = mapped_column(String(3), default=BaseCurrency.JPY.value)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    holdings: Mapped[list["Holding"]] = relationship(
        back_populates="account",
        cascade="all, delete-orphan",
        order_by="Holding.id",
    )

    @property
    def has_holdings(self) -> bool:
        return len(self.holdings) > 0


class Holding(Base):
    """
    A position in one instrument within one account.

    Quantity, average cost, realized P&L and dividends are derived from the
    transaction list (see PositionCalculator) and never stored. A fully sold
    holding keeps its record.
    """
    __tablename__ = "holdings"
    __table_args__ = (
        UniqueConstraint('account_id', 'symbol', name='uq_holding_account_symbol'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), index=True)
    symbol: Mapped[str] = mapped_column(String, index=True)  # e.g. "7203.T", "AAPL"
    name: Mapped[str] = mapped_column(String, default="")
    asset_type: Mapped[AssetType] = mapped_column(Enum(AssetType), default=AssetType.STOCK)
    market: Mapped[Market] = mapped_column(Enum(Market), default=Market.JP)

    account: Mapped["Account"] = relationship(back_populates="holdings")
    transactions: Mapped[list["Transaction"]] = relationship(
        back_populates="holding",
        cascade="all, delete-orphan",
        order_by="(Transaction.trade_date, Transaction.id)",
    )

    @property
    def currency(self) -> str:
        """Trading currency, determined by the market."""
        return self.market.currency


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index('ix_transaction_holding_date', 'holding_id', 'trade_date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    holding_id: Mapped[int] = mapped_column(ForeignKey("holdings.id"), index=True)
    transaction_type: Mapped[TransactionType] = mapped_column(Enum(TransactionType))
    trade_date: Mapped[date] = mapped_column(Date, index=True)

    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    price: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    fee: Mapped[Decimal] = mapped_column(Numeric(18, 8), default=Decimal(0))
    currency: Mapped[str] = mapped_column(String(3), default="JPY")
    note: Mapped[str] = mapped_column(String, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    holding: Mapped["Holding"] = relationship(back_populates="transactions")


# =============================================================================
# SNAPSHOTS
# =============================================================================

class Snapshot(Base):
    """
    Daily valuation record for one account, or for the global aggregate.

    Identified by (snapshot_date, account_id); account_id NULL denotes the
    global aggregate across all accounts. The unique constraint does not
    cover NULLs, so SnapshotStore.upsert is what keeps the global row unique.

    The two sub-lists are always read and written with their parent row,
    so they are stored as JSON rather than normalized tables:
        breakdown:    [{"asset_type", "value", "cost", "pnl", "currency"}]
        holding_pnls: [{"symbol", "name", "daily_pnl", "daily_pnl_percent", "market_value"}]
    Monetary values inside the JSON are decimal strings.
    """
    __tablename__ = "daily_snapshots"
    __table_args__ = (
        UniqueConstraint('snapshot_date', 'account_id', name='uq_snapshot_date_account'),
        # "All snapshots for account X in date range", the dominant query
        Index('ix_snapshot_account_date', 'account_id', 'snapshot_date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    snapshot_date: Mapped[date] = mapped_column(Date, index=True)
    account_id: Mapped[int | None] = mapped_column(ForeignKey("accounts.id"), nullable=True)

    total_value: Mapped[Decimal] = mapped_column(Numeric(24, 8), default=Decimal(0))
    total_cost: Mapped[Decimal] = mapped_column(Numeric(24, 8), default=Decimal(0))
    daily_pnl: Mapped[Decimal] = mapped_column(Numeric(24, 8), default=Decimal(0))
    daily_pnl_percent: Mapped[Decimal] = mapped_column(Numeric(18, 8), default=Decimal(0))
    cumulative_pnl: Mapped[Decimal] = mapped_column(Numeric(24, 8), default=Decimal(0))

    breakdown: Mapped[list] = mapped_column(JSON, default=list)
    holding_pnls: Mapped[list] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    @property
    def is_global(self) -> bool:
        return self.account_id is None

    @property
    def unrealized_pnl(self) -> Decimal:
        return self.total_value - self.total_cost

    @property
    def unrealized_pnl_percent(self) -> Decimal:
        if self.total_cost <= 0:
            return Decimal("0")
        return (self.total_value - self.total_cost) / self.total_cost * Decimal("100")
