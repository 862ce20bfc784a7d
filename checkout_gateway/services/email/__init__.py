from .email_provider import EmailProvider, SendResult
from .factory import build_email_provider

__all__ = ["EmailProvider", "SendResult", "build_email_provider"]
