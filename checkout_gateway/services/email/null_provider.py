from __future__ import annotations
import logging
from typing import Optional

from .email_provider import EmailProvider, SendResult

logger = logging.getLogger(__name__)

class NullProvider(EmailProvider):
    """No-op provider for local/dev or when MAIL_PROVIDER=none. Always returns ok=True.
    Useful to run the webhook locally without mail credentials.
    """

    def send_email(self, *, to: str, subject: str, html: Optional[str], text: str, from_email: Optional[str] = None, from_name: Optional[str] = None) -> SendResult:
        logger.info("NullProvider dropping email to=%s subject=%r", to, subject)
        return SendResult(ok=True, provider="none", message_id="noop")
