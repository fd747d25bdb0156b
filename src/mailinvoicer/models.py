"""Pydantic models aligned with the PostgreSQL schema and internal processing."""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ScanMode(str, Enum):
    """How far back a scan looks."""

    INITIAL = "initial"
    INCREMENTAL = "incremental"


class LedgerStatus(str, Enum):
    """Stored value of ``processed_emails.status``."""

    PROCESSED = "processed"
    REJECTED = "rejected"
    ERROR = "error"


# ============================================================================
# Database Models (aligned with PostgreSQL schema)
# ============================================================================


class Credential(BaseModel):
    """Gmail OAuth credential for one user (gmail_tokens row)."""

    user_id: str
    access_token: str
    refresh_token: str
    expiry: datetime
    mail_address: str
    last_sync_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class QuotaState(BaseModel):
    """Document counter stored on the user's profile."""

    document_count: int = 0
    document_limit: int = 5

    @property
    def exhausted(self) -> bool:
        return self.document_count >= self.document_limit


class LedgerEntry(BaseModel):
    """Dedup record for a provider message (processed_emails row)."""

    user_id: str
    provider_message_id: str
    status: LedgerStatus
    linked_invoice_id: Optional[str] = None
    reason_text: Optional[str] = None
    processed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class Invoice(BaseModel):
    """Invoice record written by the materializer (invoices row)."""

    id: Optional[str] = None  # Generated by the database
    user_id: str

    supplier_name: str
    document_number: str
    document_type: str
    document_date: date
    intake_date: date
    total_amount: Decimal
    vat_amount: Optional[Decimal] = None
    business_type: str
    category: str

    # Markers consumed by the invoice-management UI
    status: str
    entry_method: str

    source: str = "gmail"
    source_message_id: Optional[str] = None
    image_url: Optional[str] = None  # Object storage key of the archived attachment

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Classifier Models
# ============================================================================


class ExtractedFields(BaseModel):
    """Fields read off an accepted document. All optional."""

    supplier_name: Optional[str] = None
    document_number: Optional[str] = None
    document_date: Optional[date] = None
    total_amount: Optional[Decimal] = None
    vat_amount: Optional[Decimal] = None
    business_type: Optional[str] = None
    category: Optional[str] = None

    @field_validator("supplier_name", "document_number", "business_type", "category", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("document_date", mode="before")
    @classmethod
    def _parse_date(cls, value):
        # Dates are advisory; anything that isn't YYYY-MM-DD falls back to the default
        if value is None or isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value).strip()[:10])
        except ValueError:
            return None

    @field_validator("total_amount", "vat_amount", mode="before")
    @classmethod
    def _parse_amount(cls, value):
        if value is None or isinstance(value, (int, float, Decimal)):
            return value
        cleaned = str(value).replace(",", "").replace("₪", "").replace("$", "").strip()
        if not cleaned:
            return None
        try:
            return Decimal(cleaned)
        except InvalidOperation:
            raise ValueError(f"not a number: {value!r}")


class ClassificationVerdict(BaseModel):
    """Structured accept/reject decision returned by the classifier."""

    is_invoice: bool = Field(description="Whether the document is an accepted invoice type")
    document_type: Optional[str] = Field(None, description="Document type label")
    confidence: Optional[float] = Field(None, description="Confidence 0-100 (advisory)")
    rejection_reason: Optional[str] = Field(None, description="Why the document was rejected")
    extracted_fields: ExtractedFields = Field(default_factory=ExtractedFields, alias="data")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        if value is None or value == "":
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError(f"confidence must be a number, got {type(value).__name__}")
        return min(max(float(value), 0.0), 100.0)

    @field_validator("extracted_fields", mode="before")
    @classmethod
    def _null_fields(cls, value):
        return {} if value is None else value


# ============================================================================
# Internal Processing Models (not stored in database)
# ============================================================================


class TokenGrant(BaseModel):
    """Response of the OAuth token endpoint."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 3600


class MessagePart(BaseModel):
    """A MIME part of a provider message, flattened out of the part tree."""

    part_id: Optional[str] = None
    mime_type: str = ""
    filename: str = ""
    attachment_id: Optional[str] = None
    size: int = 0


class MailMessage(BaseModel):
    """Full provider message with headers and flattened parts."""

    id: str
    thread_id: Optional[str] = None
    subject: str = ""
    from_address: str = ""
    sent_date: str = ""
    parts: list[MessagePart] = Field(default_factory=list)


class Attachment(BaseModel):
    """Attachment payload downloaded from the provider."""

    filename: str
    mime_type: str
    data: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.data)


class AttachmentFailure(BaseModel):
    """An attachment whose payload could not be fetched."""

    filename: str
    mime_type: str
    error: str


class ScanResult(BaseModel):
    """Aggregate result of one scan invocation."""

    user_id: str
    mode: ScanMode
    found: int = 0
    skipped: int = 0
    messages_handled: int = 0
    processed: int = 0  # Attachments sent through classification
    invoice_count: int = 0
    rejected: int = 0
    errors: list[dict] = Field(default_factory=list)  # [{"message_id": str, "error": str}, ...]
    started_at: datetime
    duration_sec: float = 0.0
    search_time_sec: float = 0.0
    classification_time_sec: float = 0.0

    def to_summary(self) -> dict:
        """Payload returned to the triggering caller."""
        return {
            "success": True,
            "processed": self.processed,
            "invoices_found": self.invoice_count,
            "total_emails": self.found,
        }
