"""Mail provider ingestion module."""

from .base import MailProvider
from .gmail import GmailSource, parse_message

__all__ = ["MailProvider", "GmailSource", "parse_message"]
