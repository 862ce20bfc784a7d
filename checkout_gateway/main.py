# checkout_gateway/main.py
"""
Checkout Gateway
Stripe webhook intake and order fulfillment
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from .config import CheckoutSettings, get_settings
from .database import DatabaseConnection, create_indexes
from .services.email import build_email_provider
from .src.stripe.audit import AuditLog
from .src.stripe.client import build_stripe_client
from .src.stripe.routes import router as stripe_router
from .src.stripe.services.ledger import LedgerStore
from .src.stripe.services.notifications import Notifier
from .src.stripe.services.sessions import OrderMaterializer
from .src.stripe.services.webhooks import FulfillmentPipeline

# Configure logging to reduce verbosity
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("pymongo").setLevel(logging.WARNING)
logging.getLogger("stripe").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def build_pipeline(settings: CheckoutSettings, connection: DatabaseConnection) -> FulfillmentPipeline:
    """Wire the fulfillment pipeline from settings and an open database."""
    db = connection.db
    return FulfillmentPipeline(
        materializer=OrderMaterializer(build_stripe_client(settings)),
        ledger=LedgerStore(db),
        notifier=Notifier.from_settings(build_email_provider(settings), settings, email_events=db["email_events"]),
        audit=AuditLog(db),
    )


def create_app(settings: Optional[CheckoutSettings] = None, pipeline: Optional[FulfillmentPipeline] = None) -> FastAPI:
    """Build the app. Passing `pipeline` skips the Mongo/Stripe wiring (tests)."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan event handler for startup and shutdown"""
        connection = None
        if pipeline is None:
            connection = DatabaseConnection(settings)
            create_indexes(connection.db)
            app.state.pipeline = build_pipeline(settings, connection)
            logger.info("✅ Fulfillment pipeline ready (%s)", settings.ENVIRONMENT)
        yield
        if connection is not None:
            connection.close_connection()

    app = FastAPI(
        title="Checkout Gateway",
        description="Stripe webhook verification and order fulfillment",
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    if pipeline is not None:
        app.state.pipeline = pipeline

    app.include_router(stripe_router)

    @app.get("/health")
    async def health_check():
        """Simple health check endpoint"""
        return {"status": "healthy", "service": settings.SERVICE_NAME}

    return app


# Main entry point
if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.SERVICE_HOST, port=settings.SERVICE_PORT, log_level="info")
