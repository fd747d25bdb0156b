"""Abstract base class for mail provider access."""

from abc import ABC, abstractmethod

from ..models import MailMessage


class MailProvider(ABC):
    """Abstract interface for searching and fetching messages from a mailbox."""

    @abstractmethod
    def search(self, query: str, max_results: int) -> list[str]:
        """Search the mailbox.

        Args:
            query: Provider search query (e.g. "has:attachment invoice after:2025/01/01")
            max_results: Maximum number of message ids to return

        Returns:
            list[str]: Message ids in provider order (newest first)
        """
        pass

    @abstractmethod
    def get_message(self, message_id: str) -> MailMessage:
        """Fetch a full message with headers and parts."""
        pass

    @abstractmethod
    def get_attachment(self, message_id: str, attachment_id: str) -> bytes:
        """Fetch the decoded payload of one attachment."""
        pass

    @abstractmethod
    def close(self):
        """Release the underlying connection."""
        pass
