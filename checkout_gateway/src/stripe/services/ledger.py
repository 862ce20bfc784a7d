"""Durable orders and customer aggregates.

Correctness under Stripe's at-least-once delivery rests on two primitives,
not on an in-process lock:

- orders are written with an upsert keyed by the checkout session id, so a
  redelivered event rewrites the same document; `status` and `created_at`
  are only set on insert;
- the customer delta is a single-document update guarded by
  `orders != order_id`, so `$addToSet` and `$inc` apply together at most
  once per order, even when two deliveries race.
"""
import logging
from datetime import datetime
from typing import Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from ..errors import PersistenceError
from ..schemas import Customer, Order

logger = logging.getLogger(__name__)


class LedgerStore:
    def __init__(self, db: Database):
        self.orders = db["orders"]
        self.customers = db["customers"]
        self.reconciliation = db["reconciliation"]

    def upsert_order(self, order: Order) -> bool:
        """Write the order keyed by session id. Returns True if it was new."""
        now = datetime.utcnow()
        content = order.to_document()
        # Status moves forward after creation (shipped); a replay must not reset it
        status = content.pop("status")
        try:
            res = self.orders.update_one(
                {"_id": order.id},
                {
                    "$set": {**content, "updated_at": now},
                    "$setOnInsert": {"status": status, "created_at": now},
                },
                upsert=True,
            )
        except DuplicateKeyError:
            # Lost an insert race with a duplicate delivery; the winner wrote identical content
            logger.info("Order %s inserted concurrently by another delivery", order.id)
            return False
        except PyMongoError as e:
            raise PersistenceError(f"order {order.id}: {e}") from e

        created = res.upserted_id is not None
        logger.info("Order %s %s", order.id, "created" if created else "rewritten (redelivery)")
        return created

    def apply_customer_delta(self, email: str, order_id: str, amount: int) -> bool:
        """Add `order_id` and `amount` to the customer keyed by `email`.

        Returns False when the order was already counted for this customer.
        """
        guard = {"_id": email, "orders": {"$ne": order_id}}
        update = {
            "$addToSet": {"orders": order_id},
            "$inc": {"total_spent": int(amount)},
            "$set": {"updated_at": datetime.utcnow()},
        }
        try:
            try:
                res = self.customers.update_one(guard, update, upsert=True)
            except DuplicateKeyError:
                # Either the order is already recorded (guard missed, upsert
                # collided with the existing email) or another delivery created
                # the customer first. Retry against the existing document only.
                res = self.customers.update_one(guard, update, upsert=False)
                if res.matched_count == 0:
                    logger.info("Customer %s already has order %s; delta skipped", email, order_id)
                    return False
        except PyMongoError as e:
            raise PersistenceError(f"customer {email}: {e}") from e

        logger.info("Customer %s credited %d for order %s", email, amount, order_id)
        return True

    def flag_for_reconciliation(self, session_id: str, event_id: str, reason: str) -> None:
        try:
            self.reconciliation.update_one(
                {"_id": session_id},
                {
                    "$set": {"event_id": event_id, "reason": reason, "resolved": False, "updated_at": datetime.utcnow()},
                    "$setOnInsert": {"created_at": datetime.utcnow()},
                    "$inc": {"attempts": 1},
                },
                upsert=True,
            )
        except PyMongoError as e:
            raise PersistenceError(f"reconciliation {session_id}: {e}") from e
        logger.warning("Session %s flagged for reconciliation: %s", session_id, reason)

    def get_order(self, order_id: str) -> Optional[Order]:
        doc = self.orders.find_one({"_id": order_id})
        return Order.from_document(doc) if doc else None

    def get_customer(self, email: str) -> Optional[Customer]:
        doc = self.customers.find_one({"_id": email})
        return Customer.from_document(doc) if doc else None
