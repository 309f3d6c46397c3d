from typing import Dict, Optional

from sqlalchemy.orm import sessionmaker

from database import SessionLocal
from ledger import ExpenseLedger
from realtime import TripChangeListener


class LedgerRegistry:
    """One ledger and one change listener per trip, created on first use."""

    def __init__(self, session_factory: sessionmaker, atomic_inserts: Optional[bool] = None):
        self.session_factory = session_factory
        self.atomic_inserts = atomic_inserts
        self._ledgers: Dict[str, ExpenseLedger] = {}
        self._listeners: Dict[str, TripChangeListener] = {}

    def ledger(self, trip_id: str) -> ExpenseLedger:
        if trip_id not in self._ledgers:
            self._ledgers[trip_id] = ExpenseLedger(
                self.session_factory, trip_id=trip_id, atomic_inserts=self.atomic_inserts
            )
        return self._ledgers[trip_id]

    def change_listener(self, trip_id: str) -> TripChangeListener:
        if trip_id not in self._listeners:
            self._listeners[trip_id] = TripChangeListener(trip_id, self.ledger(trip_id))
        return self._listeners[trip_id]

    def clear(self) -> None:
        self._ledgers.clear()
        self._listeners.clear()


registry = LedgerRegistry(SessionLocal)


def get_registry() -> LedgerRegistry:
    return registry
