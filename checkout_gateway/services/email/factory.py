from __future__ import annotations

from checkout_gateway.config import CheckoutSettings
from .email_provider import EmailProvider
from .mailersend_provider import MailerSendProvider
from .null_provider import NullProvider
from .smtp_provider import SMTPProvider


def _create_smtp(settings: CheckoutSettings) -> EmailProvider:
    return SMTPProvider(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        username=settings.SMTP_USER,
        password=settings.SMTP_PASS,
        default_from=settings.sender_address,
        default_from_name=settings.MAIL_FROM_NAME,
        timeout=settings.SMTP_TIMEOUT_SECONDS,
    )


def _create_mailersend(settings: CheckoutSettings) -> EmailProvider:
    return MailerSendProvider(
        api_key=settings.MAILERSEND_API_KEY,
        default_from=settings.sender_address,
        default_from_name=settings.MAIL_FROM_NAME,
    )


_FACTORIES = {
    "smtp": _create_smtp,
    "mailersend": _create_mailersend,
    "none": lambda settings: NullProvider(),
}


def build_email_provider(settings: CheckoutSettings) -> EmailProvider:
    """Build the provider named by MAIL_PROVIDER (smtp | mailersend | none)."""
    name = (settings.MAIL_PROVIDER or "none").strip().lower()
    factory = _FACTORIES.get(name)
    if factory is None:
        raise ValueError(f"Unknown MAIL_PROVIDER '{settings.MAIL_PROVIDER}'. Expected one of: {', '.join(_FACTORIES)}")
    return factory(settings)
