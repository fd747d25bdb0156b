"""Tests for the Gmail REST source."""

import base64
from unittest.mock import MagicMock

import pytest
import requests

from mailinvoicer.errors import ProviderFetchFailed
from mailinvoicer.ingestion.gmail import GMAIL_API_URL, GmailSource, parse_message

MESSAGE_RESPONSE = {
    "id": "18c2f0a",
    "threadId": "18c2f00",
    "payload": {
        "partId": "",
        "mimeType": "multipart/mixed",
        "filename": "",
        "headers": [
            {"name": "Subject", "value": "חשבונית מס 1001"},
            {"name": "FROM", "value": "Acme <billing@acme.example>"},
            {"name": "date", "value": "Sun, 1 Mar 2026 10:00:00 +0200"},
        ],
        "body": {"size": 0},
        "parts": [
            {
                "partId": "0",
                "mimeType": "multipart/alternative",
                "filename": "",
                "body": {"size": 0},
                "parts": [
                    {"partId": "0.0", "mimeType": "text/plain", "filename": "", "body": {"size": 120}},
                    {"partId": "0.1", "mimeType": "text/html", "filename": "", "body": {"size": 480}},
                ],
            },
            {
                "partId": "1",
                "mimeType": "application/pdf",
                "filename": "invoice-1001.pdf",
                "body": {"attachmentId": "att-pdf", "size": 20480},
            },
            {
                "partId": "2",
                "mimeType": "image/png",
                "filename": "receipt.png",
                "body": {"attachmentId": "att-png", "size": 4096},
            },
        ],
    },
}


def _response(payload: dict) -> MagicMock:
    response = MagicMock()
    response.json.return_value = payload
    return response


@pytest.fixture
def session():
    session = MagicMock()
    session.headers = {}
    return session


class TestParseMessage:
    """Gmail messages.get responses."""

    def test_headers_are_case_insensitive(self):
        message = parse_message(MESSAGE_RESPONSE)

        assert message.id == "18c2f0a"
        assert message.thread_id == "18c2f00"
        assert message.subject == "חשבונית מס 1001"
        assert message.from_address == "Acme <billing@acme.example>"
        assert message.sent_date == "Sun, 1 Mar 2026 10:00:00 +0200"

    def test_nested_parts_are_flattened(self):
        message = parse_message(MESSAGE_RESPONSE)

        mime_types = [p.mime_type for p in message.parts]
        assert mime_types == [
            "multipart/mixed",
            "multipart/alternative",
            "text/plain",
            "text/html",
            "application/pdf",
            "image/png",
        ]

        attachments = [p for p in message.parts if p.attachment_id]
        assert [(p.filename, p.attachment_id) for p in attachments] == [
            ("invoice-1001.pdf", "att-pdf"),
            ("receipt.png", "att-png"),
        ]
        assert attachments[0].size == 20480

    def test_single_part_message(self):
        message = parse_message({
            "id": "m1",
            "payload": {
                "mimeType": "application/pdf",
                "filename": "scan.pdf",
                "headers": [],
                "body": {"attachmentId": "att-1", "size": 10},
            },
        })

        assert len(message.parts) == 1
        assert message.parts[0].attachment_id == "att-1"
        assert message.subject == ""

    def test_message_without_payload(self):
        message = parse_message({"id": "m1"})

        assert message.parts == []


class TestGmailSource:
    """HTTP calls against the Gmail API."""

    def test_sets_bearer_token(self, session):
        GmailSource("token-123", session=session)

        assert session.headers["Authorization"] == "Bearer token-123"

    def test_search_returns_message_ids(self, session):
        session.get.return_value = _response({
            "messages": [{"id": "a", "threadId": "t"}, {"id": "b", "threadId": "t"}],
            "resultSizeEstimate": 2,
        })
        source = GmailSource("token", timeout=12.0, session=session)

        ids = source.search("has:attachment after:2026/03/08", max_results=50)

        assert ids == ["a", "b"]
        args, kwargs = session.get.call_args
        assert args[0] == f"{GMAIL_API_URL}/messages"
        assert kwargs["params"] == {"q": "has:attachment after:2026/03/08", "maxResults": 50}
        assert kwargs["timeout"] == 12.0

    def test_search_with_no_results(self, session):
        session.get.return_value = _response({"resultSizeEstimate": 0})
        source = GmailSource("token", session=session)

        assert source.search("anything", max_results=50) == []

    def test_search_http_error_raises_provider_fetch_failed(self, session):
        response = _response({})
        response.raise_for_status.side_effect = requests.HTTPError("401 Client Error: Unauthorized")
        session.get.return_value = response
        source = GmailSource("token", session=session)

        with pytest.raises(ProviderFetchFailed, match="401"):
            source.search("anything", max_results=50)

    def test_get_message_requests_full_format(self, session):
        session.get.return_value = _response(MESSAGE_RESPONSE)
        source = GmailSource("token", session=session)

        message = source.get_message("18c2f0a")

        assert message.id == "18c2f0a"
        args, kwargs = session.get.call_args
        assert args[0] == f"{GMAIL_API_URL}/messages/18c2f0a"
        assert kwargs["params"] == {"format": "full"}

    def test_get_attachment_decodes_unpadded_base64url(self, session):
        payload = b"%PDF-1.7\n\xff\xfe binary"
        encoded = base64.urlsafe_b64encode(payload).decode("ascii").rstrip("=")
        session.get.return_value = _response({"size": len(payload), "data": encoded})
        source = GmailSource("token", session=session)

        assert source.get_attachment("m1", "att-1") == payload
        assert session.get.call_args.args[0] == f"{GMAIL_API_URL}/messages/m1/attachments/att-1"

    def test_get_attachment_without_data(self, session):
        session.get.return_value = _response({"size": 0})
        source = GmailSource("token", session=session)

        with pytest.raises(ProviderFetchFailed, match="no data"):
            source.get_attachment("m1", "att-1")

    def test_network_error_raises_provider_fetch_failed(self, session):
        session.get.side_effect = requests.Timeout("read timed out")
        source = GmailSource("token", session=session)

        with pytest.raises(ProviderFetchFailed):
            source.get_message("m1")

    def test_close_closes_session(self, session):
        GmailSource("token", session=session).close()

        session.close.assert_called_once()
