import asyncio

import pytest
import stripe
from pymongo.errors import PyMongoError

from checkout_gateway.src.stripe.schemas import DispatchOutcome, EventType, InboundEvent, OrderStatus
from checkout_gateway.src.stripe.services.webhooks import dispatch
from checkout_gateway.src.stripe.tests.fakes import OWNER_EMAIL, make_event


def _event(event_type="checkout.session.completed", session_id="cs_test_1", event_id="evt_test_1") -> InboundEvent:
    payload = make_event(event_type, object_id=session_id, event_id=event_id)
    return InboundEvent(
        id=event_id,
        type=EventType.from_provider(event_type),
        type_name=event_type,
        payload=payload,
        signature_header="t=0,v1=already-verified",
    )


@pytest.mark.asyncio
async def test_unhandled_event_type_is_ignored(pipeline, db, stripe_client, provider):
    result = await dispatch(_event("payment_intent.created"), pipeline)

    assert result.outcome == DispatchOutcome.IGNORED
    assert db["orders"].docs == {}
    assert db["customers"].docs == {}
    assert stripe_client.calls == []
    assert provider.attempts == []


@pytest.mark.asyncio
async def test_checkout_completed_creates_order_customer_and_emails(pipeline, ledger, provider):
    result = await dispatch(_event(), pipeline)

    assert result.outcome == DispatchOutcome.FULFILLED
    assert result.order_id == "cs_test_1"
    assert result.errors == []

    order = ledger.get_order("cs_test_1")
    assert order.total_amount == 5000
    assert order.currency == "nok"
    assert [(p.name, p.quantity) for p in order.products_purchased] == [("Mug", 2), ("Poster", 1)]
    assert order.created_at is not None

    customer = ledger.get_customer("buyer@example.com")
    assert customer.orders == ["cs_test_1"]
    assert customer.total_spent == 5000

    assert sorted(provider.attempts) == sorted(["buyer@example.com", OWNER_EMAIL])
    confirmation = next(m for m in provider.sent if m["to"] == "buyer@example.com")
    assert "50.00 NOK" in confirmation["text"]
    assert "2 x Mug" in confirmation["text"]
    assert "Oslo" in confirmation["text"]


@pytest.mark.asyncio
async def test_redelivery_does_not_double_count(pipeline, ledger, db, provider):
    first = await dispatch(_event(session_id="cs_test_2", event_id="evt_2"), pipeline)
    second = await dispatch(_event(session_id="cs_test_2", event_id="evt_2"), pipeline)

    assert first.outcome == second.outcome == DispatchOutcome.FULFILLED
    assert len(db["orders"].docs) == 1
    customer = ledger.get_customer("repeat@example.com")
    assert customer.orders == ["cs_test_2"]
    assert customer.total_spent == 2500
    # already-sent messages are not sent again
    assert len(provider.sent) == 2
    assert all(n.skipped for n in second.notifications)
    assert db["webhook_events"].find_one({"_id": "evt_2"})["deliveries"] == 2


@pytest.mark.asyncio
async def test_redelivery_does_not_reset_shipped_order(pipeline, ledger, db):
    await dispatch(_event(), pipeline)
    db["orders"].update_one({"_id": "cs_test_1"}, {"$set": {"status": "shipped"}})

    await dispatch(_event(), pipeline)

    assert ledger.get_order("cs_test_1").status == OrderStatus.SHIPPED


@pytest.mark.asyncio
async def test_concurrent_deliveries_apply_once(pipeline, ledger, db, provider):
    results = await asyncio.gather(
        dispatch(_event(session_id="cs_test_2", event_id="evt_2"), pipeline),
        dispatch(_event(session_id="cs_test_2", event_id="evt_2"), pipeline),
    )

    assert all(r.outcome == DispatchOutcome.FULFILLED for r in results)
    assert len(db["orders"].docs) == 1
    customer = ledger.get_customer("repeat@example.com")
    assert customer.orders == ["cs_test_2"]
    assert customer.total_spent == 2500
    assert len(provider.sent) == 2


@pytest.mark.asyncio
async def test_customer_total_is_sum_of_distinct_orders(pipeline, ledger, stripe_client):
    from checkout_gateway.src.stripe.tests.fakes import make_line_item, make_session

    stripe_client.add_session(
        make_session("cs_test_3", email="repeat@example.com", amount_total=1200),
        [make_line_item("Pin", 4, 300)],
    )
    await dispatch(_event(session_id="cs_test_2", event_id="evt_2"), pipeline)
    await dispatch(_event(session_id="cs_test_3", event_id="evt_3"), pipeline)
    await dispatch(_event(session_id="cs_test_3", event_id="evt_3"), pipeline)

    customer = ledger.get_customer("repeat@example.com")
    assert customer.orders == ["cs_test_2", "cs_test_3"]
    assert customer.total_spent == 2500 + 1200


@pytest.mark.asyncio
async def test_owner_mail_failure_does_not_block_customer_mail(pipeline, provider, ledger):
    provider.fail_for = {OWNER_EMAIL}
    result = await dispatch(_event(), pipeline)

    assert result.outcome == DispatchOutcome.FULFILLED
    assert ledger.get_order("cs_test_1") is not None
    assert sorted(provider.attempts) == sorted(["buyer@example.com", OWNER_EMAIL])
    assert [m["to"] for m in provider.sent] == ["buyer@example.com"]
    assert result.errors == ["NotificationError"]


@pytest.mark.asyncio
async def test_failed_email_is_retried_on_redelivery(pipeline, provider):
    provider.fail_for = {OWNER_EMAIL}
    await dispatch(_event(), pipeline)

    provider.fail_for = set()
    retry = await dispatch(_event(), pipeline)

    assert [m["to"] for m in provider.sent] == ["buyer@example.com", OWNER_EMAIL]
    assert retry.errors == []


@pytest.mark.asyncio
async def test_stripe_error_flags_reconciliation(pipeline, stripe_client, db, provider):
    stripe_client.error = stripe.APIConnectionError("timed out")
    result = await dispatch(_event(), pipeline)

    assert result.outcome == DispatchOutcome.FAILED
    assert result.errors == ["ProviderFetchError"]
    assert db["orders"].docs == {}
    assert provider.attempts == []
    flagged = db["reconciliation"].find_one({"_id": "cs_test_1"})
    assert flagged["event_id"] == "evt_test_1"
    assert flagged["resolved"] is False
    assert flagged["attempts"] == 1


@pytest.mark.asyncio
async def test_persistence_failure_sends_no_mail(pipeline, db, provider):
    db["orders"].fail_with = PyMongoError("connection closed")
    result = await dispatch(_event(), pipeline)

    assert result.outcome == DispatchOutcome.FAILED
    assert result.errors == ["PersistenceError"]
    assert provider.attempts == []
    assert db["reconciliation"].find_one({"_id": "cs_test_1"}) is not None


@pytest.mark.asyncio
async def test_missing_session_id_fails_without_fetch(pipeline, stripe_client):
    event = _event()
    event.payload["data"]["object"].pop("id")
    result = await dispatch(event, pipeline)

    assert result.outcome == DispatchOutcome.FAILED
    assert result.errors == ["MissingSessionId"]
    assert stripe_client.calls == []


@pytest.mark.asyncio
async def test_audit_failure_does_not_affect_fulfillment(pipeline, db, ledger):
    db["webhook_audit"].fail_with = PyMongoError("audit down")
    db["webhook_events"].fail_with = PyMongoError("audit down")
    result = await dispatch(_event(), pipeline)

    assert result.outcome == DispatchOutcome.FULFILLED
    assert ledger.get_order("cs_test_1") is not None


@pytest.mark.asyncio
async def test_order_without_shipping_stores_unavailable(pipeline, ledger, stripe_client, provider):
    from checkout_gateway.src.stripe.tests.fakes import make_line_item, make_session

    stripe_client.add_session(make_session("cs_digital", shipping=False), [make_line_item("E-book", 1, 900)])
    await dispatch(_event(session_id="cs_digital", event_id="evt_digital"), pipeline)

    assert ledger.get_order("cs_digital").shipping_details == "unavailable"
    owner_mail = next(m for m in provider.sent if m["to"] == OWNER_EMAIL)
    assert "Shipping information unavailable" in owner_mail["text"]
