"""Shared fixtures and in-memory fakes for the test suite."""

import copy
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Optional
from unittest.mock import MagicMock

import pytest

from mailinvoicer.auth import TokenManager
from mailinvoicer.classification import ClassificationOrchestrator
from mailinvoicer.errors import DuplicateLedgerEntry, ProviderFetchFailed
from mailinvoicer.ingestion.base import MailProvider
from mailinvoicer.ledger import ProcessedItemLedger
from mailinvoicer.materializer import InvoiceMaterializer
from mailinvoicer.models import Credential, LedgerEntry, LedgerStatus, MailMessage, MessagePart, QuotaState
from mailinvoicer.pipeline import EmailScanner
from mailinvoicer.quota import QuotaEnforcer
from mailinvoicer.semantic import DocumentClassifier

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
USER_ID = "user-1"

ACCEPTED_JSON = """{
  "is_invoice": true,
  "document_type": "חשבונית מס",
  "confidence": 94,
  "rejection_reason": null,
  "data": {
    "supplier_name": "Acme Ltd",
    "document_number": "INV-1001",
    "document_date": "2026-03-01",
    "total_amount": 1170.0,
    "vat_amount": 170.0,
    "business_type": "חברה בע\\"מ",
    "category": "Software"
  }
}"""

REJECTED_JSON = """{
  "is_invoice": false,
  "document_type": "אישור הזמנה",
  "confidence": 88,
  "rejection_reason": "Purchase order, not an invoice",
  "data": null
}"""


# =============================================================================
# Datastore
# =============================================================================


class FakeStore:
    """In-memory stand-in for DatabaseClient with snapshot rollback."""

    def __init__(self):
        self.credentials: dict[str, Credential] = {}
        self.ledger: dict[tuple[str, str], LedgerEntry] = {}
        self.invoices: dict[str, object] = {}
        self.quotas: dict[str, QuotaState] = {}
        self.profiles: dict[str, dict] = {}
        self.fail_invoice_insert = False
        self.ledger_writes = 0
        self._next_invoice = 1

    @contextmanager
    def transaction(self):
        snapshot = copy.deepcopy((self.ledger, self.invoices, self.quotas))
        try:
            yield self
        except Exception:
            self.ledger, self.invoices, self.quotas = snapshot
            raise

    # Credentials
    def get_credential(self, user_id: str) -> Optional[Credential]:
        return self.credentials.get(user_id)

    def get_all_credentials(self) -> list[Credential]:
        return list(self.credentials.values())

    def upsert_credential(self, credential: Credential):
        self.credentials[credential.user_id] = credential

    def update_access_token(self, user_id: str, access_token: str, expiry: datetime):
        current = self.credentials[user_id]
        self.credentials[user_id] = current.model_copy(update={"access_token": access_token, "expiry": expiry})

    def update_last_sync(self, user_id: str, synced_at: datetime):
        current = self.credentials[user_id]
        self.credentials[user_id] = current.model_copy(update={"last_sync_at": synced_at})
        self.profiles.setdefault(user_id, {})["gmail_last_sync"] = synced_at

    def delete_credential(self, user_id: str) -> bool:
        return self.credentials.pop(user_id, None) is not None

    def set_profile_connection(self, user_id: str, mail_address: Optional[str]):
        profile = self.profiles.setdefault(user_id, {})
        profile["gmail_connected"] = mail_address is not None
        profile["gmail_email"] = mail_address
        if mail_address is None:
            profile["gmail_last_sync"] = None

    # Ledger
    def get_ledger_entry(self, user_id: str, message_id: str) -> Optional[LedgerEntry]:
        return self.ledger.get((user_id, message_id))

    def insert_ledger_entry(self, entry: LedgerEntry):
        key = (entry.user_id, entry.provider_message_id)
        if key in self.ledger:
            raise DuplicateLedgerEntry(f"duplicate {key}")
        self.ledger[key] = entry
        self.ledger_writes += 1

    def update_ledger_entry(self, entry: LedgerEntry, expected_status: LedgerStatus) -> bool:
        key = (entry.user_id, entry.provider_message_id)
        current = self.ledger.get(key)
        if current is None or current.status != expected_status:
            return False
        self.ledger[key] = entry
        self.ledger_writes += 1
        return True

    # Quota
    def get_quota(self, user_id: str) -> Optional[QuotaState]:
        return self.quotas.get(user_id)

    def increment_document_count(self, user_id: str) -> bool:
        quota = self.quotas.get(user_id)
        if quota is None or quota.document_count >= quota.document_limit:
            return False
        self.quotas[user_id] = quota.model_copy(update={"document_count": quota.document_count + 1})
        return True

    # Invoices
    def insert_invoice(self, invoice) -> str:
        if self.fail_invoice_insert:
            raise RuntimeError("connection reset by peer")
        invoice_id = f"inv-{self._next_invoice}"
        self._next_invoice += 1
        self.invoices[invoice_id] = invoice.model_copy(update={"id": invoice_id})
        return invoice_id


# =============================================================================
# Mail provider
# =============================================================================


def make_message(message_id: str, parts: list[tuple[str, str, Optional[str]]], subject: str = "Your invoice") -> MailMessage:
    """Build a message from (filename, mime_type, attachment_id) tuples."""
    return MailMessage(
        id=message_id,
        subject=subject,
        from_address="billing@acme.example",
        parts=[
            MessagePart(filename=filename, mime_type=mime_type, attachment_id=attachment_id)
            for filename, mime_type, attachment_id in parts
        ],
    )


class FakeMailbox(MailProvider):
    """Mailbox with canned messages and attachment payloads."""

    def __init__(self):
        self.messages: dict[str, MailMessage] = {}
        self.payloads: dict[tuple[str, str], bytes] = {}
        self.failing_messages: set[str] = set()
        self.failing_attachments: set[str] = set()
        self.queries: list[tuple[str, int]] = []
        self.fetched: list[str] = []
        self.closed = False

    def add(self, message: MailMessage, payload: bytes = b"%PDF-1.7 fake"):
        self.messages[message.id] = message
        for part in message.parts:
            if part.attachment_id:
                self.payloads[(message.id, part.attachment_id)] = payload

    def search(self, query: str, max_results: int) -> list[str]:
        self.queries.append((query, max_results))
        return list(self.messages)[:max_results]

    def get_message(self, message_id: str) -> MailMessage:
        self.fetched.append(message_id)
        if message_id in self.failing_messages:
            raise ProviderFetchFailed(f"Gmail request failed (messages/{message_id}): 503 Server Error")
        return self.messages[message_id]

    def get_attachment(self, message_id: str, attachment_id: str) -> bytes:
        if attachment_id in self.failing_attachments:
            raise ProviderFetchFailed(f"Attachment {attachment_id} of message {message_id} has no data")
        return self.payloads[(message_id, attachment_id)]

    def close(self):
        self.closed = True


# =============================================================================
# Classifier
# =============================================================================


def completion(content: str):
    """Shape of an OpenAI chat completion response."""
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def make_openai_client(*contents: str) -> MagicMock:
    """OpenAI client whose completions return contents in order."""
    client = MagicMock()
    client.chat.completions.create.side_effect = [completion(c) for c in contents]
    return client


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def store():
    store = FakeStore()
    store.credentials[USER_ID] = Credential(
        user_id=USER_ID,
        access_token="valid-token",
        refresh_token="refresh-token",
        expiry=NOW + timedelta(hours=1),
        mail_address="owner@example.com",
        last_sync_at=NOW - timedelta(days=1),
    )
    store.quotas[USER_ID] = QuotaState(document_count=0, document_limit=5)
    return store


@pytest.fixture
def mailbox():
    return FakeMailbox()


@pytest.fixture
def oauth():
    return MagicMock()


@pytest.fixture
def make_scanner(store, mailbox, oauth):
    """Factory for an EmailScanner wired to the fakes."""

    def _make(*classifier_outputs: str, retry_errored: bool = False, archive=None, batch_size: int = 20):
        openai_client = make_openai_client(*classifier_outputs)
        classifier = DocumentClassifier(client=openai_client)
        quota = QuotaEnforcer(store)
        ledger = ProcessedItemLedger(store, retry_errored=retry_errored, now=lambda: NOW)
        scanner = EmailScanner(
            db=store,
            tokens=TokenManager(store, oauth, now=lambda: NOW),
            provider_factory=lambda token: mailbox,
            ledger=ledger,
            orchestrator=ClassificationOrchestrator(quota, classifier),
            materializer=InvoiceMaterializer(store, ledger, quota, archive=archive, now=lambda: NOW),
            batch_size=batch_size,
            now=lambda: NOW,
        )
        scanner.openai_client = openai_client
        return scanner

    return _make
