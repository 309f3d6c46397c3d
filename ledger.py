from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload, sessionmaker

import models
import schemas
from balances import calculate_balances
from config import settings
from logger import get_logger

logger = get_logger(__name__)

EXPENSE_NOT_FOUND = "Expense not found"
SPLIT_NOT_FOUND = "Expense split not found"

Listener = Callable[["ExpenseLedger"], None]


class ExpenseLedger:
    """
    Expenses and splits of one trip, with an in-memory cache.

    The cache (`expenses`) holds ExpenseDetail views ordered newest first and
    is only written by this class. Store errors never escape the public
    operations: they are logged, kept in `error`, and the operation returns
    None or False.

    Sessions are synchronous, so an awaited operation blocks the event loop
    until the store answers.
    """

    def __init__(self, session_factory: sessionmaker, trip_id: Optional[str] = None,
                 atomic_inserts: Optional[bool] = None):
        self._session_factory = session_factory
        self.trip_id = trip_id
        self.atomic_inserts = settings.LEDGER_ATOMIC_INSERTS if atomic_inserts is None else atomic_inserts

        self.expenses: List[schemas.ExpenseDetail] = []
        self.balances: List[schemas.BalanceSummary] = []
        self.is_loading = False
        self.error: Optional[str] = None

        self._listeners: List[Listener] = []

    # --- change events ---
    def add_listener(self, callback: Listener) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception as e:
                logger.error(f"Ledger listener failed: {e}")

    def _fail(self, message: str) -> None:
        self.error = message
        self.is_loading = False

    # --- operations ---
    async def fetch_expenses(self, trip_id: str) -> Optional[List[schemas.ExpenseDetail]]:
        """Reload the cache with every expense of the trip and its splits."""
        self.is_loading = True
        self.error = None

        try:
            with self._session_factory() as db:
                rows = (
                    db.query(models.Expense)
                    .options(joinedload(models.Expense.paid_by_user))
                    .filter(models.Expense.trip_id == trip_id)
                    .order_by(models.Expense.created_at.desc())
                    .all()
                )

                if not rows:
                    self.expenses = []
                    self.is_loading = False
                    self._notify()
                    return self.expenses

                expense_ids = [row.id for row in rows]
                split_rows = (
                    db.query(models.ExpenseSplit)
                    .filter(models.ExpenseSplit.expense_id.in_(expense_ids))
                    .all()
                )

                splits_by_expense: Dict[str, List[schemas.ExpenseSplit]] = {}
                for split in split_rows:
                    splits_by_expense.setdefault(split.expense_id, []).append(
                        schemas.ExpenseSplit.model_validate(split)
                    )

                expenses = [
                    schemas.ExpenseDetail(
                        **schemas.Expense.model_validate(row).model_dump(),
                        paid_by_user=schemas.User.model_validate(row.paid_by_user) if row.paid_by_user else None,
                        splits=splits_by_expense.get(row.id, []),
                    )
                    for row in rows
                ]
        except SQLAlchemyError as e:
            logger.error(f"Fetch expenses error for trip {trip_id}: {e}")
            self._fail(str(e))
            return None

        self.expenses = expenses
        self.is_loading = False
        self._notify()
        return self.expenses

    async def add_expense(self, trip_id: str, expense: schemas.ExpenseFields,
                          split_among: List[str]) -> Optional[schemas.Expense]:
        """
        Record an expense split equally among `split_among`.

        The payer's own share is created settled. Amounts are persisted as
        given. Returns the new expense, or None when it could not be stored.
        """
        self.error = None

        with self._session_factory() as db:
            new_expense = models.Expense(
                trip_id=trip_id,
                description=expense.description or "Expense",
                amount=expense.amount or 0,
                currency=expense.currency or settings.DEFAULT_CURRENCY,
                paid_by=expense.paid_by,
                split_type=expense.split_type or "equal",
            )
            try:
                db.add(new_expense)
                if self.atomic_inserts:
                    db.flush()
                else:
                    db.commit()
                    db.refresh(new_expense)
                created = schemas.Expense.model_validate(new_expense)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Add expense error: {e}")
                self.error = str(e)
                return None

            # Equal split, no remainder redistribution
            share_amount = created.amount / len(split_among) if split_among else 0.0
            now = datetime.utcnow()

            try:
                for user_id in split_among:
                    is_payer = user_id == created.paid_by
                    db.add(models.ExpenseSplit(
                        expense_id=created.id,
                        user_id=user_id,
                        amount=share_amount,
                        is_settled=is_payer,
                        settled_at=now if is_payer else None,
                    ))
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Create splits error for expense {created.id}: {e}")
                if self.atomic_inserts:
                    self.error = str(e)
                    return None
                split_error = str(e)
            else:
                split_error = None

        logger.info(f"Created expense: {created.id} in trip: {trip_id}")

        await self.fetch_expenses(trip_id)
        if split_error:
            self.error = split_error
        return created

    async def delete_expense(self, expense_id: str) -> bool:
        """Delete an expense; its splits go with it."""
        self.error = None

        try:
            with self._session_factory() as db:
                query = db.query(models.Expense).filter(models.Expense.id == expense_id)
                if self.trip_id:
                    query = query.filter(models.Expense.trip_id == self.trip_id)
                expense = query.first()
                if not expense:
                    self.error = EXPENSE_NOT_FOUND
                    return False

                db.delete(expense)
                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Delete expense error: {e}")
            self.error = str(e)
            return False

        logger.info(f"Deleted expense: {expense_id}")
        self.expenses = [e for e in self.expenses if e.id != expense_id]
        self._notify()
        return True

    async def settle_expense(self, split_id: str) -> bool:
        """Mark one share as paid. There is no way back to unsettled."""
        self.error = None

        try:
            with self._session_factory() as db:
                query = db.query(models.ExpenseSplit).filter(models.ExpenseSplit.id == split_id)
                if self.trip_id:
                    query = query.join(models.Expense).filter(models.Expense.trip_id == self.trip_id)
                split = query.first()
                if not split:
                    self.error = SPLIT_NOT_FOUND
                    return False

                if not split.is_settled:
                    split.is_settled = True
                    split.settled_at = datetime.utcnow()
                    db.commit()
                settled_at = split.settled_at
        except SQLAlchemyError as e:
            logger.error(f"Settle expense error: {e}")
            self.error = str(e)
            return False

        logger.info(f"Settled split: {split_id}")
        for expense in self.expenses:
            for cached in expense.splits:
                if cached.id == split_id:
                    cached.is_settled = True
                    if cached.settled_at is None:
                        cached.settled_at = settled_at
        self._notify()
        return True

    def calculate_balances(self, members: List[schemas.Member]) -> List[schemas.BalanceSummary]:
        self.balances = calculate_balances(self.expenses, members)
        return self.balances
