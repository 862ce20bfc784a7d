"""Checkout session re-fetch and order materialization.

The session embedded in a webhook is a snapshot taken when the event was
emitted and does not carry expanded line items, so the order is always
built from a fresh read of the session.
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

import stripe

from ..errors import ProviderFetchError
from ..schemas import (
    SHIPPING_UNAVAILABLE,
    CheckoutSession,
    LineItem,
    Order,
    OrderStatus,
    PurchasedProduct,
    ShippingInfo,
)

logger = logging.getLogger(__name__)

LINE_ITEM_PAGE_SIZE = 100
SESSION_EXPAND = ["customer_details"]
LINE_ITEM_EXPAND = ["data.price.product"]


def _as_dict(obj: Any) -> Dict[str, Any]:
    """Plain dict from a StripeObject (or a dict already)."""
    if obj is None:
        return {}
    if isinstance(obj, dict) and not isinstance(obj, stripe.StripeObject):
        return obj
    to_dict = getattr(obj, "to_dict_recursive", None) or obj.to_dict
    return to_dict()


def format_amount(amount_minor: int, currency: str = "") -> str:
    """Presentation only: 5000 -> '50.00'. Stored amounts stay in minor units."""
    text = f"{amount_minor / 100:.2f}"
    return f"{text} {currency.upper()}" if currency else text


def _product_name(item: Dict[str, Any]) -> str:
    price = item.get("price") or {}
    product = price.get("product") if isinstance(price, dict) else None
    if isinstance(product, dict) and product.get("name"):
        return product["name"]
    return item.get("description") or "Item"


def line_item_from_stripe(item: Dict[str, Any]) -> LineItem:
    quantity = int(item.get("quantity") or 1)
    price = item.get("price") or {}
    unit_amount = price.get("unit_amount")
    total = item.get("amount_total")
    if unit_amount is None:
        # Custom amounts carry no unit price; derive it from the line total
        unit_amount = int(total or 0) // quantity
    if total is None:
        total = int(unit_amount) * quantity
    return LineItem(
        product_name=_product_name(item),
        quantity=quantity,
        unit_amount=int(unit_amount),
        total_amount=int(total),
    )


def shipping_from_stripe(session: Dict[str, Any]) -> Optional[ShippingInfo]:
    """Shipping moved between API versions; check each place it has lived."""
    collected = session.get("collected_information") or {}
    block = (
        collected.get("shipping_details")
        or session.get("shipping_details")
        or session.get("shipping")
    )
    if not block or not block.get("address"):
        return None
    address = block["address"]
    return ShippingInfo(
        name=block.get("name"),
        address={
            "line1": address.get("line1"),
            "line2": address.get("line2"),
            "postal_code": address.get("postal_code"),
            "city": address.get("city"),
            "state": address.get("state"),
            "country": address.get("country"),
        },
    )


def customer_email_from_stripe(session: Dict[str, Any]) -> Optional[str]:
    details = session.get("customer_details") or {}
    metadata = session.get("metadata") or {}
    return details.get("email") or session.get("customer_email") or metadata.get("customerEmail")


def session_from_stripe(session: Dict[str, Any], line_items: Iterable[Dict[str, Any]]) -> CheckoutSession:
    return CheckoutSession(
        session_id=session["id"],
        customer_email=customer_email_from_stripe(session),
        amount_total=int(session.get("amount_total") or 0),
        currency=(session.get("currency") or "").lower(),
        line_items=[line_item_from_stripe(item) for item in line_items],
        shipping=shipping_from_stripe(session),
    )


def build_order(session: CheckoutSession) -> Order:
    return Order(
        id=session.session_id,
        customer_email=session.customer_email,
        products_purchased=[
            PurchasedProduct(
                name=item.product_name,
                quantity=item.quantity,
                unit_price=item.unit_amount,
                total_price=item.total_amount,
            )
            for item in session.line_items
        ],
        shipping_details=session.shipping or SHIPPING_UNAVAILABLE,
        total_amount=session.amount_total,
        currency=session.currency,
        status=OrderStatus.COMPLETED,
    )


class OrderMaterializer:
    """Reads the authoritative checkout session through an injected StripeClient."""

    def __init__(self, client: stripe.StripeClient):
        self.client = client

    def _fetch(self, session_id: str) -> CheckoutSession:
        sessions = self.client.checkout.sessions
        session = _as_dict(sessions.retrieve(session_id, params={"expand": SESSION_EXPAND}))
        listing = sessions.line_items.list(
            session_id,
            params={"limit": LINE_ITEM_PAGE_SIZE, "expand": LINE_ITEM_EXPAND},
        )
        items: List[Dict[str, Any]] = [_as_dict(item) for item in listing.auto_paging_iter()]
        return session_from_stripe(session, items)

    async def materialize(self, session_id: str) -> CheckoutSession:
        try:
            checkout = await asyncio.to_thread(self._fetch, session_id)
        except stripe.StripeError as e:
            logger.error("Stripe re-fetch failed for session %s: %s", session_id, e)
            raise ProviderFetchError(session_id, str(e)) from e
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Malformed checkout session %s from Stripe: %s", session_id, e)
            raise ProviderFetchError(session_id, f"malformed session: {e}") from e

        logger.info(
            "Materialized session %s: %d line items, %d %s",
            session_id,
            len(checkout.line_items),
            checkout.amount_total,
            checkout.currency,
        )
        return checkout
