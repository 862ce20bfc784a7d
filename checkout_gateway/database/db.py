# checkout_gateway/database/db.py
import logging
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from ..config import CheckoutSettings
from .mongo_helper import create_mongo_client

logger = logging.getLogger(__name__)


class DatabaseConnection:
    """Owns one MongoClient for the lifetime of the app.

    Built by the app lifespan and passed to whatever needs the database;
    there is no process-wide instance.
    """

    def __init__(self, settings: CheckoutSettings):
        logger.info("🔄 Initializing MongoDB connection for checkout gateway...")
        client = create_mongo_client(settings.MONGODB_URI, timeout_ms=settings.MONGODB_TIMEOUT_MS)
        if client is None:
            logger.error("❌ Failed to create MongoDB client after multiple attempts")
            raise ConnectionError("Unable to connect to MongoDB")

        self.client: MongoClient = client
        self._db = client[settings.DATABASE_NAME]
        logger.info(f"✅ MongoDB connection established for database '{settings.DATABASE_NAME}'")

    @property
    def db(self) -> Database:
        return self._db

    def close_connection(self):
        """Close MongoDB connection"""
        if self.client:
            self.client.close()
            logger.info("🔒 MongoDB connection closed")


def create_indexes(db: Database) -> None:
    """Create the indexes the fulfillment collections rely on.

    `orders` and `customers` are keyed by `_id` (session id / email), so
    only secondary lookups need indexes here. The unique index on
    `email_events` is what lets notifications dedupe across redeliveries.
    """
    db.orders.create_index("customer_email")
    db.orders.create_index([("created_at", DESCENDING)])
    db.email_events.create_index([("order_id", ASCENDING), ("email_type", ASCENDING)], unique=True)
    db.reconciliation.create_index("resolved")
    db.webhook_audit.create_index([("created_at", DESCENDING)])
