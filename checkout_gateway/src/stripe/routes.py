import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import PlainTextResponse

from ...config import CheckoutSettings
from .errors import SignatureInvalid
from .schemas import InboundEvent, WebhookAck
from .services import webhooks as dispatcher
from .services.webhooks import FulfillmentPipeline
from .webhooks.base import verify_stripe_signature

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Stripe"])


def get_app_settings(request: Request) -> CheckoutSettings:
    return request.app.state.settings


def get_pipeline(request: Request) -> FulfillmentPipeline:
    return request.app.state.pipeline


async def process_event(event: InboundEvent, pipeline: FulfillmentPipeline) -> None:
    """Background half of the webhook: runs after the ack has been sent."""
    try:
        result = await dispatcher.dispatch(event, pipeline)
    except Exception:
        logger.exception("Unexpected failure processing %s/%s", event.type_name, event.id)
        return
    logger.info(
        "Webhook %s/%s processed: outcome=%s order=%s errors=%s",
        event.type_name,
        event.id,
        result.outcome.value,
        result.order_id,
        result.errors or "none",
    )


@router.post("/webhook", include_in_schema=False)
@router.post("/stripe/webhook", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    settings: CheckoutSettings = Depends(get_app_settings),
    pipeline: FulfillmentPipeline = Depends(get_pipeline),
):
    """Verify, then ACK immediately; fulfillment runs as a background task."""
    try:
        event = await verify_stripe_signature(
            request,
            settings.STRIPE_WEBHOOK_SECRET,
            settings.WEBHOOK_TOLERANCE_SECONDS,
        )
    except SignatureInvalid as e:
        logger.warning("Webhook signature verification failed: %s", e)
        return PlainTextResponse(f"Webhook Error: {e}", status_code=400)

    background_tasks.add_task(process_event, event, pipeline)
    return WebhookAck().model_dump()
