import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from ..audit import AuditLog
from ..errors import FulfillmentError, PersistenceError, ProviderFetchError
from ..schemas import DispatchOutcome, DispatchResult, EventType, InboundEvent
from .ledger import LedgerStore
from .notifications import Notifier
from .sessions import OrderMaterializer, build_order

logger = logging.getLogger(__name__)


class FulfillmentPipeline:
    """materialize -> persist -> notify for one verified event.

    All collaborators are passed in by the app factory (or a test); the
    pipeline holds no state of its own between events.
    """

    def __init__(
        self,
        materializer: OrderMaterializer,
        ledger: LedgerStore,
        notifier: Notifier,
        audit: Optional[AuditLog] = None,
    ):
        self.materializer = materializer
        self.ledger = ledger
        self.notifier = notifier
        self.audit = audit

    async def audit_event(self, event_type: str, payload: dict, status: str = "ok", note: str = "") -> None:
        if self.audit is not None:
            await asyncio.to_thread(self.audit.log, event_type, payload, status, note)

    async def record_delivery(self, event: InboundEvent) -> Optional[int]:
        if self.audit is None:
            return None
        return await asyncio.to_thread(self.audit.record_delivery, event)

    async def fulfill_checkout(self, event: InboundEvent) -> DispatchResult:
        result = DispatchResult(event_id=event.id, event_type=event.type_name, outcome=DispatchOutcome.FAILED)
        session_id = event.session_id
        if not session_id:
            logger.error("Event %s carries no checkout session id", event.id)
            result.errors.append("MissingSessionId")
            await self.audit_event("checkout_completed", {"event_id": event.id}, "error", "missing session id")
            return result
        result.order_id = session_id

        try:
            checkout = await self.materializer.materialize(session_id)
        except ProviderFetchError as e:
            result.errors.append(type(e).__name__)
            try:
                await asyncio.to_thread(self.ledger.flag_for_reconciliation, session_id, event.id, str(e))
            except PersistenceError as pe:
                logger.error("Could not flag session %s for reconciliation: %s", session_id, pe)
                result.errors.append(type(pe).__name__)
            await self.audit_event("order_materialize", {"event_id": event.id, "session_id": session_id}, "error", str(e))
            return result

        order = build_order(checkout)
        try:
            created = await asyncio.to_thread(self.ledger.upsert_order, order)
            if order.customer_email:
                await asyncio.to_thread(
                    self.ledger.apply_customer_delta, order.customer_email, order.id, order.total_amount
                )
            else:
                logger.warning("Order %s has no customer email; customer aggregate not updated", order.id)
        except PersistenceError as e:
            # Replaying the event (Stripe redelivery or a manual resend) is safe: both writes are idempotent
            logger.error("Persisting order %s failed: %s", order.id, e)
            result.errors.append(type(e).__name__)
            try:
                await asyncio.to_thread(self.ledger.flag_for_reconciliation, order.id, event.id, str(e))
            except PersistenceError as pe:
                logger.error("Could not flag order %s for reconciliation: %s", order.id, pe)
            await self.audit_event("order_persist", {"event_id": event.id, "order_id": order.id}, "error", str(e))
            return result

        result.notifications = await self.notifier.send_order_notifications(order)
        for notification in result.notifications:
            if notification.error and not notification.skipped:
                result.errors.append("NotificationError")

        result.outcome = DispatchOutcome.FULFILLED
        await self.audit_event(
            "checkout_completed",
            {
                "event_id": event.id,
                "order_id": order.id,
                "customer_email": order.customer_email,
                "amount_total": order.total_amount,
                "currency": order.currency,
                "new_order": created,
            },
            "ok" if not result.errors else "partial",
        )
        return result


async def handle_checkout_completed(event: InboundEvent, pipeline: FulfillmentPipeline) -> DispatchResult:
    logger.info("Checkout session completed: %s (event %s)", event.session_id, event.id)
    return await pipeline.fulfill_checkout(event)


Handler = Callable[[InboundEvent, FulfillmentPipeline], Awaitable[DispatchResult]]

# Dispatch map must be defined after handler functions
dispatch_map: Dict[str, Handler] = {
    EventType.CHECKOUT_COMPLETED.value: handle_checkout_completed,
}


async def dispatch(event: InboundEvent, pipeline: FulfillmentPipeline) -> DispatchResult:
    """Route a verified event. Never raises for post-verification failures."""
    replays = await pipeline.record_delivery(event)
    if replays:
        logger.info("Event %s redelivered (%d previous deliveries); processing again", event.id, replays)
    await pipeline.audit_event("webhook_received", {"type": event.type_name, "event_id": event.id, "replays": replays}, "ok")

    handler = dispatch_map.get(event.type_name)
    if handler is None:
        logger.info("Unhandled event type %s (%s); acknowledged", event.type_name, event.id)
        return DispatchResult(event_id=event.id, event_type=event.type_name, outcome=DispatchOutcome.IGNORED)

    try:
        return await handler(event, pipeline)
    except FulfillmentError as e:
        logger.error("Fulfillment of %s/%s failed: %s", event.type_name, event.id, e)
        await pipeline.audit_event("webhook_process", {"type": event.type_name, "event_id": event.id}, "error", str(e))
        return DispatchResult(
            event_id=event.id,
            event_type=event.type_name,
            outcome=DispatchOutcome.FAILED,
            errors=[type(e).__name__],
        )
