"""Failure classes of the fulfillment pipeline.

Only SignatureInvalid changes the HTTP response. Everything raised after
verification is absorbed by the dispatcher and logged.
"""


class FulfillmentError(Exception):
    """Base class for webhook fulfillment failures."""


class SignatureInvalid(FulfillmentError):
    """The body/signature pair did not verify; the event must not be processed."""


class ProviderFetchError(FulfillmentError):
    """Stripe could not return the authoritative checkout session."""

    def __init__(self, session_id: str, message: str):
        super().__init__(f"{session_id}: {message}")
        self.session_id = session_id


class PersistenceError(FulfillmentError):
    """A write to the orders/customers store failed."""


class NotificationError(FulfillmentError):
    """A transactional e-mail could not be handed to the mail provider."""
