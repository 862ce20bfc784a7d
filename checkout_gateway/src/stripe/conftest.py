import pytest

from checkout_gateway.config import CheckoutSettings
from checkout_gateway.src.stripe.audit import AuditLog
from checkout_gateway.src.stripe.services.ledger import LedgerStore
from checkout_gateway.src.stripe.services.notifications import Notifier
from checkout_gateway.src.stripe.services.sessions import OrderMaterializer
from checkout_gateway.src.stripe.services.webhooks import FulfillmentPipeline
from checkout_gateway.src.stripe.tests.fakes import (
    OWNER_EMAIL,
    WEBHOOK_SECRET,
    FakeDB,
    FakeEmailProvider,
    FakeStripeClient,
    make_line_item,
    make_session,
)


@pytest.fixture
def settings():
    return CheckoutSettings(
        STRIPE_SECRET_KEY="sk_test_dummy",
        STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET,
        OWNER_EMAIL=OWNER_EMAIL,
        MAIL_FROM="shop@shop.test",
        SHOP_NAME="Test Shop",
        MAIL_PROVIDER="none",
        _env_file=None,
    )


@pytest.fixture
def db():
    return FakeDB()


@pytest.fixture
def stripe_client():
    client = FakeStripeClient()
    client.add_session(
        make_session("cs_test_1", amount_total=5000, currency="nok"),
        [make_line_item("Mug", 2, 1000), make_line_item("Poster", 1, 3000)],
    )
    client.add_session(
        make_session("cs_test_2", email="repeat@example.com", amount_total=2500),
        [make_line_item("Tote", 1, 2500)],
    )
    return client


@pytest.fixture
def provider():
    return FakeEmailProvider()


@pytest.fixture
def ledger(db):
    return LedgerStore(db)


@pytest.fixture
def notifier(provider, settings, db):
    return Notifier.from_settings(provider, settings, email_events=db["email_events"])


@pytest.fixture
def pipeline(stripe_client, ledger, notifier, db):
    return FulfillmentPipeline(
        materializer=OrderMaterializer(stripe_client),
        ledger=ledger,
        notifier=notifier,
        audit=AuditLog(db),
    )
