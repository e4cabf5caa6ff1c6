# gainday/services/snapshots/store.py
"""
Snapshot persistence.

SnapshotStore is the only component that reads or writes daily_snapshots.
Each public call runs in its own session and transaction; writes are also
serialized with a process-wide re-entrant lock so that overlapping refresh
and backfill runs never interleave their upserts.

Uniqueness:
    At most one snapshot exists per (day, account). The database constraint
    covers accounts but not the global row (account_id IS NULL), so every
    write looks the row up first and updates it in place when present.

Failure:
    Any database error rolls the transaction back and is raised as
    SnapshotPersistenceError. Rows written by earlier calls are untouched.

Usage:
    store = SnapshotStore(SessionLocal)

    store.upsert(date.today(), None, values)       # global snapshot
    store.query(date(2024, 1, 1), date(2024, 1, 31), account_id=3)
"""

import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from gainday.models import Snapshot
from gainday.services.exceptions import SnapshotNotFoundError, SnapshotPersistenceError
from gainday.services.valuation.types import HoldingDailyPnL, SnapshotValues
from gainday.utils.date_utils import month_bounds

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class SnapshotRecord:
    """One pending snapshot write for batch_persist."""

    snapshot_date: date
    account_id: int | None
    values: SnapshotValues


@dataclass(frozen=True)
class HeatmapDay:
    """One cell of the month heatmap (global snapshots only)."""

    day: int
    daily_pnl: Decimal
    daily_pnl_percent: Decimal


def _to_day(value: date | datetime) -> date:
    """Truncate a datetime to its calendar day."""
    if isinstance(value, datetime):
        return value.date()
    return value


# =============================================================================
# STORE
# =============================================================================

class SnapshotStore:
    """
    Snapshot repository over a SQLAlchemy session factory.

    Returned Snapshot objects are detached from their session but fully
    loaded, so callers can read them freely.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory
        self._write_lock = threading.RLock()

    # =========================================================================
    # SESSION HANDLING
    # =========================================================================

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory(expire_on_commit=False)
        try:
            yield session
        finally:
            session.close()

    @contextmanager
    def _transaction(
            self,
            snapshot_date: date | None = None,
            account_id: int | None = None,
    ) -> Iterator[Session]:
        """Locked read-write transaction; commits on success, rolls back on error."""
        with self._write_lock, self._session() as session:
            try:
                yield session
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Snapshot write failed, rolled back: {e}")
                raise SnapshotPersistenceError(
                    str(e), snapshot_date=snapshot_date, account_id=account_id
                ) from e

    # =========================================================================
    # WRITES
    # =========================================================================

    def upsert(
            self,
            snapshot_date: date | datetime,
            account_id: int | None,
            values: SnapshotValues,
    ) -> Snapshot:
        """
        Insert or update the snapshot for (day, account).

        Numeric fields are always overwritten (last write wins). The
        breakdown and ranking are only overwritten when the new values
        carry any, so a figures-only update keeps the stored lists.

        Raises:
            SnapshotPersistenceError: If the write fails
        """
        day = _to_day(snapshot_date)
        with self._transaction(day, account_id) as session:
            snapshot = self._find(session, day, account_id)
            if snapshot is None:
                snapshot = Snapshot(snapshot_date=day, account_id=account_id)
                session.add(snapshot)
                action = "Created"
            else:
                action = "Updated"
            self._apply(snapshot, values)
            session.flush()

        logger.debug(
            f"{action} snapshot {day} "
            f"{'global' if account_id is None else f'account={account_id}'}: "
            f"value={values.total_value} daily={values.daily_pnl}"
        )
        return snapshot

    def batch_persist(self, records: list[SnapshotRecord]) -> int:
        """
        Insert or update many snapshots in a single commit.

        Either every record is written or none is.

        Returns:
            Number of records written

        Raises:
            SnapshotPersistenceError: If the batch fails (nothing is written)
        """
        if not records:
            return 0

        with self._transaction() as session:
            days = {_to_day(r.snapshot_date) for r in records}
            existing: dict[tuple[date, int | None], Snapshot] = {
                (s.snapshot_date, s.account_id): s
                for s in session.scalars(
                    select(Snapshot).where(Snapshot.snapshot_date.in_(days))
                )
            }

            for record in records:
                key = (_to_day(record.snapshot_date), record.account_id)
                snapshot = existing.get(key)
                if snapshot is None:
                    snapshot = Snapshot(snapshot_date=key[0], account_id=key[1])
                    session.add(snapshot)
                    existing[key] = snapshot
                self._apply(snapshot, record.values)

        logger.info(f"Batch persisted {len(records)} snapshots")
        return len(records)

    def update_holding_pnls(self, snapshot_id: int, holding_pnls: list[HoldingDailyPnL]) -> Snapshot:
        """
        Replace the ranking of an existing snapshot.

        Raises:
            SnapshotNotFoundError: If no snapshot has this ID
            SnapshotPersistenceError: If the write fails
        """
        with self._transaction() as session:
            snapshot = session.get(Snapshot, snapshot_id)
            if snapshot is None:
                raise SnapshotNotFoundError(snapshot_id)
            snapshot.holding_pnls = [entry.to_dict() for entry in holding_pnls]
        return snapshot

    def delete_all(self, account_id: int | None = None) -> int:
        """
        Delete every snapshot, or every snapshot of one account.

        This is an explicit data reset; nothing else in the engine deletes.
        """
        with self._transaction(account_id=account_id) as session:
            stmt = delete(Snapshot)
            if account_id is not None:
                stmt = stmt.where(Snapshot.account_id == account_id)
            deleted = session.execute(stmt).rowcount or 0

        target = "all accounts" if account_id is None else f"account {account_id}"
        logger.warning(f"Deleted {deleted} snapshots for {target}")
        return deleted

    # =========================================================================
    # READS
    # =========================================================================

    def query(self, start: date, end: date, account_id: int | None = None) -> list[Snapshot]:
        """Snapshots of one series (account, or global when None) in [start, end], ascending."""
        with self._session() as session:
            stmt = (
                select(Snapshot)
                .where(
                    Snapshot.snapshot_date >= _to_day(start),
                    Snapshot.snapshot_date <= _to_day(end),
                    self._account_clause(account_id),
                )
                .order_by(Snapshot.snapshot_date)
            )
            return list(session.scalars(stmt).all())

    def query_month(self, year: int, month: int, account_id: int | None = None) -> list[Snapshot]:
        start, end = month_bounds(year, month)
        return self.query(start, end, account_id)

    def query_year(self, year: int, account_id: int | None = None) -> list[Snapshot]:
        return self.query(date(year, 1, 1), date(year, 12, 31), account_id)

    def exists_for_date(self, snapshot_date: date | datetime, account_id: int | None = None) -> bool:
        with self._session() as session:
            return self._find(session, _to_day(snapshot_date), account_id) is not None

    def existing_dates(self, account_id: int | None) -> set[date]:
        """Days that already have a snapshot for the series."""
        with self._session() as session:
            stmt = select(Snapshot.snapshot_date).where(self._account_clause(account_id))
            return set(session.scalars(stmt).all())

    def latest(self, account_id: int | None = None) -> Snapshot | None:
        with self._session() as session:
            stmt = (
                select(Snapshot)
                .where(self._account_clause(account_id))
                .order_by(Snapshot.snapshot_date.desc())
                .limit(1)
            )
            return session.scalars(stmt).first()

    def global_snapshots_without_rankings(self) -> list[Snapshot]:
        """Global snapshots whose ranking list is empty, ascending by day."""
        with self._session() as session:
            stmt = (
                select(Snapshot)
                .where(Snapshot.account_id.is_(None))
                .order_by(Snapshot.snapshot_date)
            )
            return [s for s in session.scalars(stmt).all() if not s.holding_pnls]

    def month_heatmap(self, year: int, month: int) -> list[HeatmapDay]:
        """Daily P&L of every global snapshot in a month, for calendar views."""
        return [
            HeatmapDay(
                day=s.snapshot_date.day,
                daily_pnl=s.daily_pnl,
                daily_pnl_percent=s.daily_pnl_percent,
            )
            for s in self.query_month(year, month, account_id=None)
        ]

    def count(self, snapshot_dates: Iterable[date] | None = None) -> int:
        """Number of stored snapshots, optionally restricted to some days."""
        with self._session() as session:
            stmt = select(Snapshot.id)
            if snapshot_dates is not None:
                stmt = stmt.where(Snapshot.snapshot_date.in_(set(snapshot_dates)))
            return len(session.scalars(stmt).all())

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _account_clause(account_id: int | None):
        if account_id is None:
            return Snapshot.account_id.is_(None)
        return Snapshot.account_id == account_id

    def _find(self, session: Session, day: date, account_id: int | None) -> Snapshot | None:
        stmt = select(Snapshot).where(
            Snapshot.snapshot_date == day,
            self._account_clause(account_id),
        )
        return session.scalars(stmt).first()

    @staticmethod
    def _apply(snapshot: Snapshot, values: SnapshotValues) -> None:
        snapshot.total_value = values.total_value
        snapshot.total_cost = values.total_cost
        snapshot.daily_pnl = values.daily_pnl
        snapshot.daily_pnl_percent = values.daily_pnl_percent
        snapshot.cumulative_pnl = values.cumulative_pnl
        if values.breakdown:
            snapshot.breakdown = [entry.to_dict() for entry in values.breakdown]
        elif snapshot.breakdown is None:
            snapshot.breakdown = []
        if values.holding_pnls:
            snapshot.holding_pnls = [entry.to_dict() for entry in values.holding_pnls]
        elif snapshot.holding_pnls is None:
            snapshot.holding_pnls = []
