"""Tests for attachment extraction and the S3 archive."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from mailinvoicer.processing import AttachmentExtractor, is_supported_mime_type
from mailinvoicer.storage import S3Client

from conftest import FakeMailbox, make_message


@pytest.mark.parametrize("mime_type,supported", [
    ("application/pdf", True),
    ("APPLICATION/PDF", True),
    ("application/pdf; name=invoice.pdf", True),
    ("image/jpeg", True),
    ("image/png", True),
    ("text/plain", False),
    ("application/zip", False),
    ("application/vnd.ms-excel", False),
])
def test_is_supported_mime_type(mime_type, supported):
    assert is_supported_mime_type(mime_type) is supported


class TestAttachmentExtractor:
    """Candidate filtering and payload fetch."""

    def test_pdf_and_text_yields_only_pdf(self):
        mailbox = FakeMailbox()
        message = make_message("m1", [
            ("invoice.pdf", "application/pdf", "att-1"),
            ("notes.txt", "text/plain", "att-2"),
        ])
        mailbox.add(message, payload=b"%PDF")

        attachments, failures = AttachmentExtractor(mailbox).extract_attachments(message)

        assert [a.filename for a in attachments] == ["invoice.pdf"]
        assert attachments[0].data == b"%PDF"
        assert attachments[0].size_bytes == 4
        assert failures == []

    def test_parts_without_filename_or_attachment_id_are_skipped(self):
        message = make_message("m1", [
            ("", "image/png", "att-inline"),
            ("logo.png", "image/png", None),
            ("scan.jpg", "image/jpeg", "att-3"),
        ])

        candidates = AttachmentExtractor.candidate_parts(message)

        assert [p.filename for p in candidates] == ["scan.jpg"]

    def test_mime_type_is_normalized(self):
        mailbox = FakeMailbox()
        message = make_message("m1", [("Invoice.PDF", "Application/PDF; name=Invoice.PDF", "att-1")])
        mailbox.add(message)

        attachments, _ = AttachmentExtractor(mailbox).extract_attachments(message)

        assert attachments[0].mime_type == "application/pdf"

    def test_fetch_failure_does_not_stop_siblings(self):
        mailbox = FakeMailbox()
        message = make_message("m1", [
            ("broken.pdf", "application/pdf", "att-bad"),
            ("good.pdf", "application/pdf", "att-good"),
        ])
        mailbox.add(message)
        mailbox.failing_attachments.add("att-bad")

        attachments, failures = AttachmentExtractor(mailbox).extract_attachments(message)

        assert [a.filename for a in attachments] == ["good.pdf"]
        assert len(failures) == 1
        assert failures[0].filename == "broken.pdf"
        assert "no data" in failures[0].error

    def test_message_without_candidates(self):
        mailbox = FakeMailbox()
        message = make_message("m1", [("body.html", "text/html", "att-1")])
        mailbox.add(message)

        assert AttachmentExtractor(mailbox).extract_attachments(message) == ([], [])


class TestS3Client:
    """Attachment archive."""

    def _client(self, head_error_code=None):
        boto_client = MagicMock()
        if head_error_code:
            boto_client.head_object.side_effect = ClientError(
                {"Error": {"Code": head_error_code, "Message": "Not Found"}}, "HeadObject"
            )
        return boto_client, S3Client("invoices", client=boto_client)

    def test_generate_key_strips_path_components(self):
        _, s3 = self._client()

        assert s3.generate_key("u1", "m1", "../../etc/invoice.pdf") == "u1/gmail/m1/invoice.pdf"

    def test_archive_uploads_missing_object(self):
        boto_client, s3 = self._client(head_error_code="404")

        key = s3.archive("u1", "m1", "invoice.pdf", b"%PDF", "application/pdf")

        assert key == "u1/gmail/m1/invoice.pdf"
        boto_client.put_object.assert_called_once_with(
            Bucket="invoices", Key=key, Body=b"%PDF", ContentType="application/pdf"
        )

    def test_archive_skips_existing_object(self):
        boto_client, s3 = self._client()

        s3.archive("u1", "m1", "invoice.pdf", b"%PDF", "application/pdf")

        boto_client.put_object.assert_not_called()

    def test_object_exists_reraises_other_errors(self):
        _, s3 = self._client(head_error_code="403")

        with pytest.raises(ClientError):
            s3.object_exists("u1/gmail/m1/invoice.pdf")
