from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Protocol

@dataclass
class SendResult:
    ok: bool
    provider: str
    message_id: Optional[str] = None
    error: Optional[str] = None

class EmailProvider(Protocol):
    """Pluggable email provider interface.

    Implementations should raise no exceptions on send; instead return SendResult with ok=False and error populated.
    Calls are blocking; async callers run them in a worker thread.
    """

    def send_email(self, *, to: str, subject: str, html: Optional[str], text: str, from_email: Optional[str] = None, from_name: Optional[str] = None) -> SendResult:
        ...
