# checkout_gateway/src/stripe/schemas.py
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# Stored on orders whose session carried no shipping block
SHIPPING_UNAVAILABLE = "unavailable"


class EventType(str, Enum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    OTHER = "other"

    @classmethod
    def from_provider(cls, type_name: str) -> "EventType":
        if type_name == cls.CHECKOUT_COMPLETED.value:
            return cls.CHECKOUT_COMPLETED
        return cls.OTHER


class OrderStatus(str, Enum):
    COMPLETED = "completed"
    SHIPPED = "shipped"


class DispatchOutcome(str, Enum):
    FULFILLED = "fulfilled"
    IGNORED = "ignored"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------------

class InboundEvent(BaseModel):
    """A Stripe event whose signature has already been checked."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: EventType
    type_name: str = Field(..., description="Event type exactly as Stripe sent it")
    payload: Dict[str, Any]
    signature_header: str

    @property
    def data_object(self) -> Dict[str, Any]:
        return (self.payload.get("data") or {}).get("object") or {}

    @property
    def session_id(self) -> Optional[str]:
        return self.data_object.get("id")


# ---------------------------------------------------------------------------
# Checkout session projection (read from Stripe, never stored)
# ---------------------------------------------------------------------------

class LineItem(BaseModel):
    product_name: str
    quantity: int
    unit_amount: int
    total_amount: int


class ShippingInfo(BaseModel):
    name: Optional[str] = None
    address: Dict[str, Optional[str]] = {}


class CheckoutSession(BaseModel):
    session_id: str
    customer_email: Optional[str] = None
    amount_total: int
    currency: str
    line_items: List[LineItem] = []
    shipping: Optional[ShippingInfo] = None


# ---------------------------------------------------------------------------
# Durable records
# ---------------------------------------------------------------------------

class PurchasedProduct(BaseModel):
    name: str
    quantity: int
    unit_price: int
    total_price: int


class Order(BaseModel):
    id: str = Field(..., description="Checkout session id; doubles as the idempotency key")
    customer_email: Optional[str] = None
    products_purchased: List[PurchasedProduct] = []
    shipping_details: Union[ShippingInfo, Literal["unavailable"]] = SHIPPING_UNAVAILABLE
    total_amount: int
    currency: str
    status: OrderStatus = OrderStatus.COMPLETED
    created_at: Optional[datetime] = None

    @property
    def has_shipping(self) -> bool:
        return isinstance(self.shipping_details, ShippingInfo)

    def to_document(self) -> Dict[str, Any]:
        """Mongo body without `_id` and `created_at` (the store owns both)."""
        return self.model_dump(mode="json", exclude={"id", "created_at"})

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Order":
        return cls(id=doc["_id"], **{k: v for k, v in doc.items() if k != "_id"})


class Customer(BaseModel):
    email: str
    orders: List[str] = []
    total_spent: int = 0

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Customer":
        return cls(email=doc["_id"], orders=doc.get("orders", []), total_spent=doc.get("total_spent", 0))


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class WebhookAck(BaseModel):
    received: bool = True


class NotificationResult(BaseModel):
    email_type: str
    recipient: Optional[str] = None
    ok: bool = False
    skipped: bool = False
    error: Optional[str] = None


class DispatchResult(BaseModel):
    event_id: str
    event_type: str
    outcome: DispatchOutcome
    order_id: Optional[str] = None
    errors: List[str] = []
    notifications: List[NotificationResult] = []
