#!/usr/bin/env python3
# scripts/seed_sample_data.py
import logging
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

# Setup path to import gainday modules
project_dir = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_dir))

from gainday.database import SessionLocal, init_db
from gainday.models import (
    Account,
    AccountType,
    AssetType,
    Holding,
    Market,
    Transaction,
    TransactionType,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def seed():
    init_db()
    db = SessionLocal()
    try:
        logger.info("Starting database seeding...")

        # 1. Accounts
        accounts_data = [
            {"name": "SBI General", "type": AccountType.NORMAL, "currency": "JPY", "order": 0},
            {"name": "US Brokerage", "type": AccountType.NORMAL, "currency": "USD", "order": 1},
        ]
        accounts = {}
        for data in accounts_data:
            account = db.query(Account).filter(Account.name == data["name"]).first()
            if not account:
                account = Account(
                    name=data["name"],
                    account_type=data["type"],
                    base_currency=data["currency"],
                    sort_order=data["order"],
                )
                db.add(account)
                db.commit()
                db.refresh(account)
                logger.info(f"Created account: {account.name} ({account.base_currency})")
            accounts[data["name"]] = account

        # 2. Holdings
        holdings_data = [
            {"account": "SBI General", "symbol": "7203.T", "name": "Toyota Motor",
             "type": AssetType.STOCK, "market": Market.JP},
            {"account": "SBI General", "symbol": "AAPL", "name": "Apple Inc.",
             "type": AssetType.STOCK, "market": Market.US},
            {"account": "US Brokerage", "symbol": "VOO", "name": "Vanguard S&P 500 ETF",
             "type": AssetType.FUND, "market": Market.US},
        ]
        holdings = {}
        for data in holdings_data:
            account = accounts[data["account"]]
            holding = db.query(Holding).filter(
                Holding.account_id == account.id,
                Holding.symbol == data["symbol"],
            ).first()
            if not holding:
                holding = Holding(
                    account_id=account.id,
                    symbol=data["symbol"],
                    name=data["name"],
                    asset_type=data["type"],
                    market=data["market"],
                )
                db.add(holding)
                db.commit()
                db.refresh(holding)
                logger.info(f"Created holding: {holding.symbol} in {account.name}")
            holdings[data["symbol"]] = holding

        # 3. Transactions
        if not db.query(Transaction).first():
            db.add_all([
                Transaction(
                    holding_id=holdings["7203.T"].id,
                    transaction_type=TransactionType.BUY,
                    trade_date=date(2024, 1, 4),
                    quantity=Decimal("100"),
                    price=Decimal("2600"),
                    fee=Decimal("0"),
                    currency="JPY",
                ),
                Transaction(
                    holding_id=holdings["AAPL"].id,
                    transaction_type=TransactionType.BUY,
                    trade_date=date(2024, 2, 1),
                    quantity=Decimal("10"),
                    price=Decimal("185.50"),
                    fee=Decimal("1.5"),
                    currency="USD",
                ),
                Transaction(
                    holding_id=holdings["VOO"].id,
                    transaction_type=TransactionType.BUY,
                    trade_date=date(2024, 3, 1),
                    quantity=Decimal("5"),
                    price=Decimal("470.00"),
                    fee=Decimal("0"),
                    currency="USD",
                ),
                Transaction(
                    holding_id=holdings["VOO"].id,
                    transaction_type=TransactionType.SELL,
                    trade_date=date(2024, 6, 3),
                    quantity=Decimal("2"),
                    price=Decimal("485.00"),
                    fee=Decimal("0"),
                    currency="USD",
                ),
            ])
            db.commit()
            logger.info("Created sample transactions")

        logger.info("Seeding complete")

    except Exception as e:
        logger.error(f"Seeding failed: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
