from __future__ import annotations
import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional

from .email_provider import EmailProvider, SendResult

logger = logging.getLogger(__name__)


class SMTPProvider(EmailProvider):
    """Plain SMTP sender (Gmail, Zoho, ...).

    Port 465 uses implicit TLS, any other port upgrades with STARTTLS.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        default_from: Optional[str],
        default_from_name: Optional[str],
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = int(port)
        self.username = username
        self.password = password
        self.default_from = default_from or username
        self.default_from_name = default_from_name
        self.timeout = timeout

    def _build_message(self, *, to: str, subject: str, html: Optional[str], text: str, from_email: str, from_name: Optional[str]) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{from_name} <{from_email}>" if from_name else from_email
        msg["To"] = to
        msg.set_content(text)
        if html:
            msg.add_alternative(html, subtype="html")
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        context = ssl.create_default_context()
        if self.port == 465:
            with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as smtp:
                smtp.login(self.username, self.password)
                smtp.send_message(msg)
        else:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.ehlo()
                smtp.starttls(context=context)
                smtp.ehlo()
                smtp.login(self.username, self.password)
                smtp.send_message(msg)

    def send_email(
        self,
        *,
        to: str,
        subject: str,
        html: Optional[str],
        text: str,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
    ) -> SendResult:
        if not self.username or not self.password:
            return SendResult(
                ok=False,
                provider="smtp",
                error=f"SMTP credentials not configured. SMTP_USER: {'SET' if self.username else 'NOT SET'}, "
                      f"SMTP_PASS: {'SET' if self.password else 'NOT SET'}",
            )

        msg = self._build_message(
            to=to,
            subject=subject,
            html=html,
            text=text,
            from_email=from_email or self.default_from,
            from_name=from_name or self.default_from_name,
        )
        try:
            self._deliver(msg)
        except smtplib.SMTPAuthenticationError as e:
            logger.error("SMTP authentication failed for user %s: %s", self.username, e)
            return SendResult(ok=False, provider="smtp", error=f"SMTP authentication failed: {e}")
        except (smtplib.SMTPException, OSError) as e:
            return SendResult(ok=False, provider="smtp", error=f"SMTP error: {e}")

        return SendResult(ok=True, provider="smtp", message_id=msg.get("Message-ID"))
