"""Checkout gateway: Stripe webhook intake and order fulfillment."""

__version__ = "1.0.0"
