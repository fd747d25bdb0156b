"""Attachment extraction from provider messages."""

import logging

from ..errors import ProviderFetchFailed
from ..ingestion.base import MailProvider
from ..models import Attachment, AttachmentFailure, MailMessage, MessagePart

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"


def normalize_mime_type(mime_type: str) -> str:
    """Lower-case a MIME type and drop any parameters."""
    return mime_type.split(";", 1)[0].strip().lower()


def is_supported_mime_type(mime_type: str) -> bool:
    """Only PDFs and images are sent to the classifier."""
    normalized = normalize_mime_type(mime_type)
    return normalized == PDF_MIME_TYPE or normalized.startswith("image/")


class AttachmentExtractor:
    """Fetch the classifiable attachments of a message."""

    def __init__(self, provider: MailProvider):
        self.provider = provider

    @staticmethod
    def candidate_parts(message: MailMessage) -> list[MessagePart]:
        """Parts with a filename, an attachment id and a supported MIME type.

        Everything else (inline bodies, text files, archives...) is dropped
        without being reported.
        """
        return [
            part for part in message.parts
            if part.filename and part.attachment_id and is_supported_mime_type(part.mime_type)
        ]

    def extract_attachments(self, message: MailMessage) -> tuple[list[Attachment], list[AttachmentFailure]]:
        """Download each candidate attachment of message.

        Args:
            message: Full provider message

        Returns:
            tuple: (attachments fetched, attachments whose fetch failed)
        """
        attachments = []
        failures = []

        for part in self.candidate_parts(message):
            try:
                data = self.provider.get_attachment(message.id, part.attachment_id)
            except ProviderFetchFailed as e:
                # One bad attachment doesn't stop its siblings
                logger.warning(f"Failed to fetch attachment {part.filename} of message {message.id}: {e}")
                failures.append(AttachmentFailure(
                    filename=part.filename,
                    mime_type=part.mime_type,
                    error=str(e),
                ))
                continue

            attachments.append(Attachment(
                filename=part.filename,
                mime_type=normalize_mime_type(part.mime_type),
                data=data,
            ))

        logger.info(
            f"Message {message.id}: {len(attachments)} attachment(s) fetched, "
            f"{len(failures)} failed"
        )
        return attachments, failures
