import stripe

from ...config import CheckoutSettings


def build_stripe_client(settings: CheckoutSettings) -> stripe.StripeClient:
    """One StripeClient per app, handed to the pipeline by the app factory."""
    return stripe.StripeClient(
        settings.STRIPE_SECRET_KEY,
        stripe_version=settings.STRIPE_API_VERSION,
        max_network_retries=settings.STRIPE_MAX_NETWORK_RETRIES,
        http_client=stripe.RequestsClient(timeout=settings.STRIPE_TIMEOUT_SECONDS),
    )
