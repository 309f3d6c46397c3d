from typing import Any, Dict, Optional

from ledger import ExpenseLedger
from logger import get_logger

logger = get_logger(__name__)

EXPENSES_TABLE = "expenses"
EXPENSE_SPLITS_TABLE = "expense_splits"


class TripChangeListener:
    """
    Reloads a trip's ledger when the store reports a change to its expenses.

    Payloads follow the database webhook shape (`type`, `table`, `record`,
    `old_record`); the realtime channel shape (`eventType`, `new`, `old`) is
    accepted as well. Every relevant event triggers a full reload.
    """

    def __init__(self, trip_id: str, ledger: ExpenseLedger):
        self.trip_id = trip_id
        self.ledger = ledger

    def applies_to(self, payload: Dict[str, Any]) -> bool:
        table = payload.get("table")

        if table == EXPENSE_SPLITS_TABLE:
            # splits carry no trip id to filter on
            return True

        if table == EXPENSES_TABLE:
            record = payload.get("record") or payload.get("new") or {}
            old_record = payload.get("old_record") or payload.get("old") or {}
            trip_ids = {r.get("trip_id") for r in (record, old_record) if r.get("trip_id")}
            if not trip_ids:
                return True
            return self.trip_id in trip_ids

        return False

    async def handle(self, payload: Dict[str, Any]) -> bool:
        """Returns True when the payload caused a reload."""
        event_type: Optional[str] = payload.get("type") or payload.get("eventType")

        if not self.applies_to(payload):
            logger.debug(f"Ignoring {event_type} on {payload.get('table')} for trip {self.trip_id}")
            return False

        logger.info(f"{payload.get('table')} changed ({event_type}), reloading trip {self.trip_id}")
        await self.ledger.fetch_expenses(self.trip_id)
        return True
