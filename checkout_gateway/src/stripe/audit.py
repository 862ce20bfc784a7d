import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from .schemas import InboundEvent

logger = logging.getLogger(__name__)


class AuditLog:
    """Mongo-backed audit trail for webhook activity.

    Writes are best-effort: a failing audit write is logged and never
    affects fulfillment.
    """

    def __init__(self, db: Database):
        self.entries = db["webhook_audit"]
        self.deliveries = db["webhook_events"]

    def log(self, event_type: str, payload: Dict[str, Any], status: str = "ok", note: str = "") -> None:
        """Generic audit logger.

        payload can include identifiers like:
        - event_id / type
        - session_id / order_id
        - customer_email
        """
        doc = {
            "event_type": event_type,
            "payload": payload,
            "status": status,
            "note": note,
            "created_at": datetime.utcnow(),
        }
        try:
            self.entries.insert_one(doc)
        except PyMongoError as e:
            logger.debug("Audit write failed for %s: %s", event_type, e)

    def record_delivery(self, event: InboundEvent) -> Optional[int]:
        """Count deliveries per event id. Returns the replay count (0 on first sight).

        Observability only: a replay is still processed in full, since the
        earlier delivery may have failed part-way.
        """
        now = datetime.utcnow()
        try:
            doc = self.deliveries.find_one_and_update(
                {"_id": event.id},
                {
                    "$setOnInsert": {"type": event.type_name, "created_at": now},
                    "$set": {"last_seen_at": now},
                    "$inc": {"deliveries": 1},
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            logger.debug("Delivery ledger write failed for %s: %s", event.id, e)
            return None
        return int(doc.get("deliveries", 1)) - 1
