from __future__ import annotations

import asyncio
import html
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError

from checkout_gateway.config import CheckoutSettings
from checkout_gateway.services.email import EmailProvider
from ..errors import NotificationError
from ..schemas import NotificationResult, Order
from .sessions import format_amount
from .templates import TemplateNotFound, render_templates

logger = logging.getLogger(__name__)

SHIPPING_UNAVAILABLE_TEXT = "Shipping information unavailable"

CUSTOMER_CONFIRMATION = "order_confirmation"
OWNER_NOTIFICATION = "owner_notification"

# A claim still pending after this long is treated as abandoned
PENDING_CLAIM_TIMEOUT = timedelta(minutes=10)


# ───────────── Rendering helpers ─────────────

def _item_lines(order: Order) -> List[Dict[str, str]]:
    return [
        {
            "name": p.name,
            "quantity": str(p.quantity),
            "unit": format_amount(p.unit_price, order.currency),
            "total": format_amount(p.total_price, order.currency),
        }
        for p in order.products_purchased
    ]


def render_items_text(order: Order) -> str:
    return "\n".join(
        f"{line['quantity']} x {line['name']} @ {line['unit']} = {line['total']}"
        for line in _item_lines(order)
    )


def render_items_html(order: Order) -> str:
    return "\n".join(
        "<tr><td>{name}</td><td align=\"center\">{quantity}</td><td align=\"right\">{unit}</td>"
        "<td align=\"right\">{total}</td></tr>".format(**{k: html.escape(v) for k, v in line.items()})
        for line in _item_lines(order)
    )


def _shipping_lines(order: Order) -> Optional[List[str]]:
    if not order.has_shipping:
        return None
    shipping = order.shipping_details
    address = shipping.address
    lines = [
        shipping.name,
        address.get("line1"),
        address.get("line2"),
        " ".join(part for part in (address.get("postal_code"), address.get("city")) if part),
        address.get("state"),
        address.get("country"),
    ]
    return [line for line in lines if line]


def render_shipping_text(order: Order) -> str:
    lines = _shipping_lines(order)
    if lines is None:
        return SHIPPING_UNAVAILABLE_TEXT
    return "\n".join(lines)


def render_shipping_html(order: Order) -> str:
    lines = _shipping_lines(order)
    if lines is None:
        return html.escape(SHIPPING_UNAVAILABLE_TEXT)
    return "<br>".join(html.escape(line) for line in lines)


def order_template_vars(order: Order, shop_name: str) -> Dict[str, Dict[str, Any]]:
    """Text and HTML variable sets for both order templates."""
    text_vars = {
        "shopName": shop_name,
        "orderId": order.id,
        "customerEmail": order.customer_email or "",
        "total": format_amount(order.total_amount, order.currency),
        "itemsText": render_items_text(order),
        "shippingText": render_shipping_text(order),
    }
    html_vars = {k: html.escape(str(v)) for k, v in text_vars.items()}
    html_vars["itemsHtml"] = render_items_html(order)
    html_vars["shippingHtml"] = render_shipping_html(order)
    return {"text": text_vars, "html": html_vars}


# ───────────── Notifier ─────────────

class Notifier:
    """Best-effort order e-mails.

    Sends never raise and are never retried inline; a failed message is left
    as `failed` in `email_events` so that Stripe's redelivery of the same
    event retries just that message.
    """

    def __init__(
        self,
        provider: EmailProvider,
        *,
        owner_email: Optional[str],
        shop_name: str = "Shop",
        sender: Optional[str] = None,
        sender_name: Optional[str] = None,
        enabled: bool = True,
        email_events: Optional[Collection] = None,
        pending_timeout: timedelta = PENDING_CLAIM_TIMEOUT,
    ):
        self.provider = provider
        self.owner_email = owner_email
        self.shop_name = shop_name
        self.sender = sender
        self.sender_name = sender_name
        self.enabled = enabled
        self.email_events = email_events
        self.pending_timeout = pending_timeout

    @classmethod
    def from_settings(cls, provider: EmailProvider, settings: CheckoutSettings, email_events: Optional[Collection] = None) -> "Notifier":
        return cls(
            provider,
            owner_email=settings.OWNER_EMAIL,
            shop_name=settings.SHOP_NAME,
            sender=settings.sender_address,
            sender_name=settings.MAIL_FROM_NAME,
            enabled=settings.EMAIL_NOTIFICATIONS_ENABLED,
            email_events=email_events,
        )

    # ─── dedup ledger ───

    def _claim(self, order_id: str, email_type: str, recipient: str, subject: str) -> bool:
        """Insert a pending record, or re-claim a failed or abandoned one. False means skip.

        A `pending` record older than `pending_timeout` belongs to a send
        whose outcome was never recorded, so it is claimable like `failed`.
        """
        if self.email_events is None:
            return True
        now = datetime.utcnow()
        key = {"order_id": order_id, "email_type": email_type}
        try:
            self.email_events.insert_one({**key, "status": "pending", "to": recipient, "subject": subject, "createdAt": now, "updatedAt": now})
            return True
        except DuplicateKeyError:
            pass
        except PyMongoError as e:
            logger.warning("Email dedup insert failed for %s/%s, sending anyway: %s", order_id, email_type, e)
            return True

        try:
            reclaimed = self.email_events.find_one_and_update(
                {
                    **key,
                    "$or": [
                        {"status": "failed"},
                        {"status": "pending", "updatedAt": {"$lt": now - self.pending_timeout}},
                    ],
                },
                {"$set": {"status": "pending", "updatedAt": now}, "$inc": {"retries": 1}},
            )
        except PyMongoError as e:
            logger.warning("Email dedup reclaim failed for %s/%s, skipping: %s", order_id, email_type, e)
            return False
        if reclaimed is None:
            logger.info("Email %s for order %s already sent or in flight; skipping", email_type, order_id)
            return False
        if reclaimed.get("status") == "pending":
            logger.warning("Re-claiming stale pending email %s for order %s", email_type, order_id)
        return True

    def _mark(self, order_id: str, email_type: str, status: str, error: Optional[str] = None) -> None:
        if self.email_events is None:
            return
        update: Dict[str, Any] = {"status": status, "updatedAt": datetime.utcnow()}
        if error:
            update["error"] = error
        try:
            self.email_events.update_one({"order_id": order_id, "email_type": email_type}, {"$set": update})
        except PyMongoError as e:
            logger.warning("Could not record email status %s for %s/%s: %s", status, order_id, email_type, e)

    # ─── sending ───

    def _send(self, recipient: str, subject: str, rendered: Dict[str, Optional[str]]) -> None:
        try:
            result = self.provider.send_email(
                to=recipient,
                subject=subject,
                text=rendered["text"],
                html=rendered.get("html"),
                from_email=self.sender,
                from_name=self.sender_name,
            )
        except Exception as e:
            raise NotificationError(f"mail transport raised: {e}") from e
        if not result.ok:
            raise NotificationError(result.error or f"{result.provider} rejected the message")

    def _deliver(self, recipient: str, subject: str, email_type: str, vars: Dict[str, Dict[str, Any]], order_id: str) -> NotificationResult:
        if not self._claim(order_id, email_type, recipient, subject):
            return NotificationResult(email_type=email_type, recipient=recipient, skipped=True)
        try:
            rendered = render_templates(email_type, vars["text"], vars["html"])
            self._send(recipient, subject, rendered)
        except (NotificationError, TemplateNotFound, KeyError, OSError) as e:
            logger.error("Email %s to %s for order %s failed: %s", email_type, recipient, order_id, e)
            self._mark(order_id, email_type, "failed", str(e))
            return NotificationResult(email_type=email_type, recipient=recipient, error=str(e))

        self._mark(order_id, email_type, "sent")
        logger.info("Email %s sent to %s for order %s", email_type, recipient, order_id)
        return NotificationResult(email_type=email_type, recipient=recipient, ok=True)

    async def notify(
        self,
        recipient: Optional[str],
        subject: str,
        email_type: str,
        vars: Dict[str, Dict[str, Any]],
        order_id: str,
    ) -> NotificationResult:
        if not self.enabled:
            logger.info("Email notifications disabled; skipping %s for order %s", email_type, order_id)
            return NotificationResult(email_type=email_type, recipient=recipient, skipped=True)
        if not recipient:
            logger.warning("No recipient for %s on order %s; skipping", email_type, order_id)
            return NotificationResult(email_type=email_type, skipped=True, error="recipient missing")
        return await asyncio.to_thread(self._deliver, recipient, subject, email_type, vars, order_id)

    async def send_order_notifications(self, order: Order) -> List[NotificationResult]:
        """Customer confirmation and owner notice, sent concurrently and independently."""
        vars = order_template_vars(order, self.shop_name)
        results = await asyncio.gather(
            self.notify(
                order.customer_email,
                f"Order confirmation - {self.shop_name}",
                CUSTOMER_CONFIRMATION,
                vars,
                order.id,
            ),
            self.notify(
                self.owner_email,
                f"New order {order.id}",
                OWNER_NOTIFICATION,
                vars,
                order.id,
            ),
        )
        return list(results)
