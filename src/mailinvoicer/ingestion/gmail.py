"""Gmail REST API ingestion with an OAuth2 bearer token."""

import base64
import logging
from typing import Optional

import requests

from ..errors import ProviderFetchFailed
from ..models import MailMessage, MessagePart
from .base import MailProvider

logger = logging.getLogger(__name__)

GMAIL_API_URL = "https://gmail.googleapis.com/gmail/v1/users/me"


def _walk_parts(part: dict) -> list[MessagePart]:
    """Flatten a Gmail payload part tree, depth first."""
    flattened = []
    body = part.get("body") or {}
    flattened.append(MessagePart(
        part_id=part.get("partId"),
        mime_type=part.get("mimeType", ""),
        filename=part.get("filename", ""),
        attachment_id=body.get("attachmentId"),
        size=body.get("size", 0),
    ))
    for child in part.get("parts") or []:
        flattened.extend(_walk_parts(child))
    return flattened


def parse_message(data: dict) -> MailMessage:
    """Build a MailMessage from a Gmail ``messages.get`` response.

    Args:
        data: JSON body of the response (format=full)

    Returns:
        MailMessage: Message with headers and flattened parts
    """
    payload = data.get("payload") or {}
    headers = {h.get("name", "").lower(): h.get("value", "") for h in payload.get("headers") or []}

    return MailMessage(
        id=data["id"],
        thread_id=data.get("threadId"),
        subject=headers.get("subject", ""),
        from_address=headers.get("from", ""),
        sent_date=headers.get("date", ""),
        parts=_walk_parts(payload) if payload else [],
    )


class GmailSource(MailProvider):
    """Gmail mailbox accessed through the REST API."""

    def __init__(self, access_token: str, timeout: float = 30.0, session: Optional[requests.Session] = None):
        """Initialize Gmail source.

        Args:
            access_token: Valid OAuth2 access token
            timeout: Per-request timeout in seconds
            session: Optional requests session (a new one is created otherwise)
        """
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers["Authorization"] = f"Bearer {access_token}"

    def _get(self, path: str, params: Optional[dict] = None) -> dict:
        url = f"{GMAIL_API_URL}/{path}"
        try:
            response = self._session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise ProviderFetchFailed(f"Gmail request failed ({path}): {e}") from e
        except ValueError as e:
            raise ProviderFetchFailed(f"Gmail returned invalid JSON ({path}): {e}") from e

    def search(self, query: str, max_results: int) -> list[str]:
        """Search messages matching query.

        Only the first result page is read; callers pick up the rest on a
        later run.
        """
        data = self._get("messages", params={"q": query, "maxResults": max_results})
        message_ids = [m["id"] for m in data.get("messages") or []]
        logger.debug(f"Gmail search returned {len(message_ids)} messages")
        return message_ids

    def get_message(self, message_id: str) -> MailMessage:
        data = self._get(f"messages/{message_id}", params={"format": "full"})
        return parse_message(data)

    def get_attachment(self, message_id: str, attachment_id: str) -> bytes:
        data = self._get(f"messages/{message_id}/attachments/{attachment_id}")
        encoded = data.get("data")
        if not encoded:
            raise ProviderFetchFailed(f"Attachment {attachment_id} of message {message_id} has no data")

        # Gmail uses unpadded base64url
        padded = encoded + "=" * (-len(encoded) % 4)
        try:
            return base64.urlsafe_b64decode(padded)
        except ValueError as e:
            raise ProviderFetchFailed(f"Attachment {attachment_id} is not valid base64: {e}") from e

    def close(self):
        """Close HTTP session."""
        self._session.close()
