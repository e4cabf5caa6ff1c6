# gainday/services/accounts.py
"""
Account loading for the refresh and backfill services.

Both services walk every holding and transaction of every account, so
accounts are loaded with their holdings and transactions eagerly in a
fixed number of queries instead of lazily per holding.
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from gainday.models import Account, Holding
from gainday.services.exceptions import AccountNotFoundError

logger = logging.getLogger(__name__)


def _eager_options():
    return (
        selectinload(Account.holdings).selectinload(Holding.transactions),
    )


def load_accounts(db: Session) -> list[Account]:
    """All accounts ordered by sort_order, with holdings and transactions loaded."""
    stmt = (
        select(Account)
        .options(*_eager_options())
        .order_by(Account.sort_order, Account.id)
    )
    accounts = list(db.scalars(stmt).all())
    logger.debug(f"Loaded {len(accounts)} accounts")
    return accounts


def get_account(db: Session, account_id: int) -> Account:
    """
    Load a single account with holdings and transactions.

    Raises:
        AccountNotFoundError: If no account has this ID
    """
    stmt = select(Account).options(*_eager_options()).where(Account.id == account_id)
    account = db.scalars(stmt).first()
    if account is None:
        raise AccountNotFoundError(account_id)
    return account
