# checkout_gateway/database/mongo_helper.py
"""
MongoDB connection helper with bounded timeouts and retry logic
"""
import logging
import time
from typing import Optional
from pymongo import MongoClient
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError

logger = logging.getLogger(__name__)


def create_mongo_client(
    mongo_uri: str,
    timeout_ms: int = 5000,
    max_retries: int = 3,
    retry_delay: int = 2,
) -> Optional[MongoClient]:
    """
    Create a MongoDB client and confirm the server answers a ping.

    Args:
        mongo_uri: MongoDB connection URI (TLS options come from the URI)
        timeout_ms: Server selection / connect / socket timeout
        max_retries: Maximum number of connection attempts
        retry_delay: Initial delay between retries (exponential backoff)

    Returns:
        MongoClient instance or None if connection fails
    """
    connection_params = {
        'serverSelectionTimeoutMS': timeout_ms,
        'connectTimeoutMS': timeout_ms,
        'socketTimeoutMS': timeout_ms,
        'maxPoolSize': 20,
        'retryWrites': True,
        'appName': 'checkout-gateway',
    }

    for attempt in range(max_retries):
        try:
            logger.info(f"🔄 MongoDB connection attempt {attempt + 1}/{max_retries}")
            client = MongoClient(mongo_uri, **connection_params)
            client.admin.command('ping')
            logger.info(f"✅ MongoDB connection successful on attempt {attempt + 1}")
            return client

        except ServerSelectionTimeoutError as e:
            logger.warning(f"⚠️ MongoDB server selection timeout (attempt {attempt + 1}): {str(e)[:200]}...")

        except OperationFailure as e:
            logger.error(f"❌ MongoDB authentication/operation failed (attempt {attempt + 1}): {str(e)[:200]}...")

        if attempt < max_retries - 1:
            wait_time = retry_delay * (2 ** attempt)
            logger.info(f"🔄 Retrying in {wait_time} seconds...")
            time.sleep(wait_time)
        else:
            logger.error("❌ All MongoDB connection attempts failed")

    return None
