"""Message processing utilities."""

from .attachments import AttachmentExtractor, is_supported_mime_type

__all__ = ["AttachmentExtractor", "is_supported_mime_type"]
