"""Email scanning pipeline - mailbox in, invoices and ledger rows out."""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .auth import TokenManager
from .classification import ClassificationOrchestrator
from .errors import ClassificationFailed, LedgerConflict, MaterializationFailed, QuotaExceeded
from .ingestion.base import MailProvider
from .ledger import Errored, LedgerState, Processed, ProcessedItemLedger, Rejected
from .materializer import InvoiceMaterializer
from .metrics import MetricsCollector
from .models import Attachment, ScanMode, ScanResult
from .processing import AttachmentExtractor

logger = logging.getLogger(__name__)

# Attachment filter plus invoice/receipt terms in Hebrew and English
SEARCH_TERMS = "has:attachment (חשבונית OR invoice OR receipt OR קבלה)"


def search_lower_bound(
    mode: ScanMode,
    last_sync_at: Optional[datetime],
    now: datetime,
    initial_lookback_days: int = 365,
    incremental_lookback_days: int = 7,
) -> datetime:
    """Earliest date a scan looks at.

    Initial scans go back a year. Incremental scans start at the last sync
    but never look back further than the incremental window.
    """
    if mode == ScanMode.INITIAL:
        return now - timedelta(days=initial_lookback_days)

    floor = now - timedelta(days=incremental_lookback_days)
    if last_sync_at is None:
        return floor
    if last_sync_at.tzinfo is None:
        last_sync_at = last_sync_at.replace(tzinfo=timezone.utc)
    return max(last_sync_at, floor)


def build_search_query(lower_bound: datetime) -> str:
    """Gmail query for candidate messages received after lower_bound."""
    return f"{SEARCH_TERMS} after:{lower_bound.astimezone(timezone.utc):%Y/%m/%d}"


@dataclass
class MessageOutcome:
    """What happened to one message during a scan."""

    message_id: str
    classified: int = 0
    invoice_ids: list[str] = field(default_factory=list)
    rejections: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    quota_blocked: int = 0
    duplicate: bool = False
    state: Optional[LedgerState] = None  # None leaves the message unrecorded

    def resolve_state(self) -> Optional[LedgerState]:
        """Collapse per-attachment results into the message's ledger state.

        Precedence: owned elsewhere > accepted > error > rejected. A document
        blocked by the quota counts as a rejection.
        """
        if self.duplicate:
            return None
        if self.invoice_ids:
            return Processed(invoice_id=self.invoice_ids[0])
        if self.errors:
            return Errored(reason="; ".join(self.errors))
        if self.rejections:
            return Rejected(reason="; ".join(self.rejections))
        return Rejected(reason="No PDF or image attachments")


class EmailScanner:
    """Scans one user's mailbox and runs each candidate attachment through classification."""

    def __init__(
        self,
        db,
        tokens: TokenManager,
        provider_factory: Callable[[str], MailProvider],
        ledger: ProcessedItemLedger,
        orchestrator: ClassificationOrchestrator,
        materializer: InvoiceMaterializer,
        search_page_size: int = 50,
        batch_size: int = 20,
        initial_lookback_days: int = 365,
        incremental_lookback_days: int = 7,
        now: Callable[[], datetime] = None,
    ):
        """Initialize the scanner.

        Args:
            db: Datastore (used for the last-sync timestamp)
            tokens: Token lifecycle manager
            provider_factory: Builds a mail provider from an access token
            ledger: Processed-item ledger for this invocation
            orchestrator: Quota-gated classifier
            materializer: Invoice writer
            search_page_size: Maximum message ids read from the search
            batch_size: Maximum unseen messages handled per scan
        """
        self.db = db
        self.tokens = tokens
        self.provider_factory = provider_factory
        self.ledger = ledger
        self.orchestrator = orchestrator
        self.materializer = materializer
        self.search_page_size = search_page_size
        self.batch_size = batch_size
        self.initial_lookback_days = initial_lookback_days
        self.incremental_lookback_days = incremental_lookback_days
        self._now = now or (lambda: datetime.now(timezone.utc))

    def scan(self, user_id: str, mode: ScanMode = ScanMode.INCREMENTAL) -> ScanResult:
        """Run one scan invocation for user_id.

        Raises:
            NotConnected: If the user has no credential
            RefreshFailed: If the expired token could not be refreshed
            ProviderFetchFailed: If the mailbox search itself fails
        """
        mode = ScanMode(mode)
        started_at = self._now()
        started = time.perf_counter()
        metrics = MetricsCollector()

        credential = self.tokens.ensure_valid_credential(user_id)
        provider = self.provider_factory(credential.access_token)
        extractor = AttachmentExtractor(provider)

        try:
            lower_bound = search_lower_bound(
                mode,
                credential.last_sync_at,
                started_at,
                initial_lookback_days=self.initial_lookback_days,
                incremental_lookback_days=self.incremental_lookback_days,
            )
            query = build_search_query(lower_bound)

            metrics.start_timer("search")
            message_ids = provider.search(query, max_results=self.search_page_size)
            metrics.stop_timer("search")
            logger.info(f"Found {len(message_ids)} potential invoice emails for user {user_id} ({mode.value})")

            result = ScanResult(user_id=user_id, mode=mode, found=len(message_ids), started_at=started_at)

            for message_id in message_ids:
                if result.messages_handled >= self.batch_size:
                    logger.info(f"Batch limit of {self.batch_size} reached, leaving the rest for the next run")
                    break

                if not self.ledger.is_eligible(user_id, message_id):
                    logger.debug(f"Skipping already processed email: {message_id}")
                    result.skipped += 1
                    continue

                outcome = self._run_message(provider, extractor, user_id, message_id, metrics)
                result.messages_handled += 1
                result.processed += outcome.classified
                result.invoice_count += len(outcome.invoice_ids)
                if isinstance(outcome.state, Rejected):
                    result.rejected += 1
                elif isinstance(outcome.state, Errored):
                    result.errors.append({"message_id": message_id, "error": outcome.state.reason})

            self.db.update_last_sync(user_id, started_at)
        finally:
            provider.close()

        timings = metrics.create_scan_metrics(started)
        result = result.model_copy(update=timings)
        logger.info(
            f"Scan complete for user {user_id}: {result.processed} attachments classified, "
            f"{result.invoice_count} invoices, {result.rejected} rejected, "
            f"{len(result.errors)} errors, {result.skipped} skipped "
            f"in {result.duration_sec:.2f}s"
        )
        return result

    def _run_message(
        self,
        provider: MailProvider,
        extractor: AttachmentExtractor,
        user_id: str,
        message_id: str,
        metrics: MetricsCollector,
    ) -> MessageOutcome:
        """Process one message and record it.

        The failure boundary here only sees message fetch and extraction
        errors; attachments have their own boundary in process_message.
        """
        try:
            outcome = self.process_message(provider, extractor, user_id, message_id, metrics)
        except Exception as e:
            logger.error(f"Error processing message {message_id}: {e}", exc_info=True)
            outcome = MessageOutcome(message_id=message_id, errors=[str(e)])
            outcome.state = outcome.resolve_state()

        if outcome.state is None:
            return outcome

        try:
            self.ledger.record(user_id, message_id, outcome.state)
        except LedgerConflict as e:
            logger.info(f"Message {message_id} already recorded elsewhere: {e}")
            outcome.duplicate = True
            outcome.state = None
        return outcome

    def process_message(
        self,
        provider: MailProvider,
        extractor: AttachmentExtractor,
        user_id: str,
        message_id: str,
        metrics: MetricsCollector,
    ) -> MessageOutcome:
        """Extract, classify and materialize the attachments of one message."""
        message = provider.get_message(message_id)
        attachments, failures = extractor.extract_attachments(message)

        outcome = MessageOutcome(message_id=message_id)
        outcome.errors.extend(f"{f.filename}: {f.error}" for f in failures)

        for attachment in attachments:
            try:
                self._process_attachment(user_id, message_id, attachment, outcome, metrics)
            except Exception as e:
                # Invoices already committed for this message stay in the outcome
                logger.error(
                    f"Error processing attachment {attachment.filename} in message {message_id}: {e}",
                    exc_info=True,
                )
                outcome.errors.append(f"{attachment.filename}: {e}")
                continue
            if outcome.duplicate:
                break

        outcome.state = outcome.resolve_state()
        return outcome

    def _process_attachment(
        self,
        user_id: str,
        message_id: str,
        attachment: Attachment,
        outcome: MessageOutcome,
        metrics: MetricsCollector,
    ):
        metrics.start_timer("classification")
        try:
            verdict = self.orchestrator.classify(
                user_id, attachment.data, attachment.mime_type, attachment.filename
            )
        except QuotaExceeded as e:
            outcome.quota_blocked += 1
            outcome.rejections.append(f"{attachment.filename}: {e}")
            return
        except ClassificationFailed as e:
            outcome.classified += 1
            outcome.errors.append(f"{attachment.filename}: {e}")
            return
        finally:
            metrics.stop_timer("classification")

        outcome.classified += 1

        if not verdict.is_invoice:
            outcome.rejections.append(
                f"{attachment.filename}: {verdict.rejection_reason or 'Not an invoice'}"
            )
            return

        try:
            invoice_id = self.materializer.materialize(user_id, message_id, verdict, attachment)
        except QuotaExceeded as e:
            outcome.quota_blocked += 1
            outcome.rejections.append(f"{attachment.filename}: {e}")
        except LedgerConflict as e:
            logger.info(f"Message {message_id} was recorded by another scan, dropping invoice: {e}")
            outcome.duplicate = True
        except MaterializationFailed as e:
            logger.error(f"Materialization failed for {attachment.filename} in message {message_id}: {e}")
            outcome.errors.append(f"{attachment.filename}: {e}")
        else:
            outcome.invoice_ids.append(invoice_id)
