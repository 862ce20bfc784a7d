from .base import verify_event, verify_stripe_signature

__all__ = ["verify_event", "verify_stripe_signature"]
