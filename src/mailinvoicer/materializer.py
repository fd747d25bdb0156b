"""Turn accepted verdicts into invoice records."""

import logging
import time
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .errors import MaterializationFailed, QuotaExceeded
from .ledger import Processed, ProcessedItemLedger
from .models import Attachment, ClassificationVerdict, Invoice
from .quota import QuotaEnforcer
from .storage import S3Client

logger = logging.getLogger(__name__)

# Labels read by the invoice-management UI
DEFAULT_SUPPLIER_NAME = "לא זוהה"  # "not identified"
DEFAULT_DOCUMENT_TYPE = "חשבונית מס"
DEFAULT_BUSINESS_TYPE = "עוסק מורשה"
DEFAULT_CATEGORY = "כללי"
STATUS_NEW = "חדש"
ENTRY_METHOD_DIGITAL = "דיגיטלי"


class InvoiceMaterializer:
    """Writes the invoice, links the ledger row and consumes quota in one transaction."""

    def __init__(
        self,
        db,
        ledger: ProcessedItemLedger,
        quota: QuotaEnforcer,
        archive: Optional[S3Client] = None,
        now: Callable[[], datetime] = None,
    ):
        self.db = db
        self.ledger = ledger
        self.quota = quota
        self.archive = archive
        self._now = now or (lambda: datetime.now(timezone.utc))

    def build_invoice(
        self,
        user_id: str,
        message_id: str,
        verdict: ClassificationVerdict,
        image_url: Optional[str] = None,
    ) -> Invoice:
        """Apply defaults for every field the classifier didn't extract."""
        fields = verdict.extracted_fields
        now = self._now()
        today: date = now.date()

        return Invoice(
            user_id=user_id,
            supplier_name=fields.supplier_name or DEFAULT_SUPPLIER_NAME,
            document_number=fields.document_number or f"AUTO-{int(now.timestamp() * 1000)}",
            document_type=verdict.document_type or DEFAULT_DOCUMENT_TYPE,
            document_date=fields.document_date or today,
            intake_date=today,
            total_amount=fields.total_amount if fields.total_amount is not None else Decimal("0"),
            vat_amount=fields.vat_amount,
            business_type=fields.business_type or DEFAULT_BUSINESS_TYPE,
            category=fields.category or DEFAULT_CATEGORY,
            status=STATUS_NEW,
            entry_method=ENTRY_METHOD_DIGITAL,
            source_message_id=message_id,
            image_url=image_url,
        )

    def materialize(
        self,
        user_id: str,
        message_id: str,
        verdict: ClassificationVerdict,
        attachment: Attachment,
    ) -> str:
        """Create the invoice for an accepted attachment.

        Returns:
            str: The new invoice ID

        Raises:
            MaterializationFailed: If archiving or writing the invoice fails
            LedgerConflict: If another invocation already recorded the message
            QuotaExceeded: If the limit was reached since the quota check
        """
        if not verdict.is_invoice:
            raise ValueError("Only accepted verdicts can be materialized")

        image_url = None
        if self.archive is not None:
            start = time.perf_counter()
            try:
                image_url = self.archive.archive(
                    user_id=user_id,
                    message_id=message_id,
                    filename=attachment.filename,
                    data=attachment.data,
                    content_type=attachment.mime_type,
                )
            except (BotoCoreError, ClientError) as e:
                raise MaterializationFailed(f"Failed to archive {attachment.filename}: {e}") from e
            logger.debug(f"Archived {attachment.filename} in {time.perf_counter() - start:.3f}s")

        invoice = self.build_invoice(user_id, message_id, verdict, image_url=image_url)

        # Invoice, ledger link and quota commit or roll back together
        with self.db.transaction():
            try:
                invoice_id = self.db.insert_invoice(invoice)
            except Exception as e:
                raise MaterializationFailed(f"Failed to create invoice: {e}") from e

            self.ledger.record(user_id, message_id, Processed(invoice_id=invoice_id))

            if not self.quota.increment(user_id):
                raise QuotaExceeded(user_id)

        logger.info(
            f"Materialized invoice {invoice_id} ({invoice.supplier_name}, "
            f"{invoice.document_number}) from message {message_id}"
        )
        return invoice_id
