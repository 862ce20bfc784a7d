import json
import logging
from typing import Optional

import stripe
from fastapi import Request

from ..errors import SignatureInvalid
from ..schemas import EventType, InboundEvent

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"
DEFAULT_TOLERANCE = stripe.Webhook.DEFAULT_TOLERANCE


def verify_event(
    raw_body: bytes,
    signature_header: Optional[str],
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE,
) -> InboundEvent:
    """Check a Stripe `v1` signature over the exact request bytes.

    The signed payload is `"{t}.{body}"` (HMAC-SHA256 with the endpoint
    secret); comparison is constant-time and timestamps older than
    `tolerance` seconds are rejected. JSON is parsed only once the digest
    matches. Raises SignatureInvalid on any failure.
    """
    if not secret:
        logger.warning("STRIPE_WEBHOOK_SECRET not set, rejecting webhook")
        raise SignatureInvalid("Webhook secret not configured")
    if not signature_header:
        raise SignatureInvalid("Missing Stripe-Signature header")
    if not signature_header.isascii():
        raise SignatureInvalid("Malformed Stripe-Signature header")

    try:
        payload = raw_body.decode("utf-8")
    except UnicodeDecodeError:
        raise SignatureInvalid("Body is not valid UTF-8")

    try:
        stripe.WebhookSignature.verify_header(payload, signature_header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        raise SignatureInvalid(str(e))

    try:
        data = json.loads(payload)
    except ValueError:
        raise SignatureInvalid("Signed body is not valid JSON")
    if not isinstance(data, dict) or not data.get("id") or not data.get("type"):
        raise SignatureInvalid("Signed body is not a Stripe event")

    return InboundEvent(
        id=data["id"],
        type=EventType.from_provider(data["type"]),
        type_name=data["type"],
        payload=data,
        signature_header=signature_header,
    )


async def verify_stripe_signature(request: Request, secret: str, tolerance: int = DEFAULT_TOLERANCE) -> InboundEvent:
    # Body must be read raw; parsing first would change the signed bytes
    payload = await request.body()
    sig_header = request.headers.get(SIGNATURE_HEADER)
    return verify_event(payload, sig_header, secret, tolerance)
