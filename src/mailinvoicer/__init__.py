"""Gmail invoice ingestion - mailbox in, invoice records out."""

# Models
from .models import (
    # Database models
    Credential,
    LedgerEntry,
    LedgerStatus,
    Invoice,
    QuotaState,
    # Classifier models
    ClassificationVerdict,
    ExtractedFields,
    # Processing models
    Attachment,
    MailMessage,
    MessagePart,
    ScanMode,
    ScanResult,
)

# Errors
from .errors import (
    IngestionError,
    NotConnected,
    RefreshFailed,
    ProviderFetchFailed,
    ClassificationFailed,
    InvalidClassifierResponse,
    QuotaExceeded,
    MaterializationFailed,
    LedgerConflict,
)

# Components
from .auth import GoogleOAuthClient, TokenManager
from .ingestion import GmailSource
from .processing import AttachmentExtractor
from .semantic import DocumentClassifier
from .classification import ClassificationOrchestrator
from .quota import QuotaEnforcer
from .ledger import ProcessedItemLedger
from .materializer import InvoiceMaterializer
from .pipeline import EmailScanner
from .storage import DatabaseClient, S3Client

# Entry points
from .sync import run_sync, connect_account, disconnect_account

# Configuration
from .config import Config

__version__ = "0.1.0"

__all__ = [
    # Models
    "Credential",
    "LedgerEntry",
    "LedgerStatus",
    "Invoice",
    "QuotaState",
    "ClassificationVerdict",
    "ExtractedFields",
    "Attachment",
    "MailMessage",
    "MessagePart",
    "ScanMode",
    "ScanResult",
    # Errors
    "IngestionError",
    "NotConnected",
    "RefreshFailed",
    "ProviderFetchFailed",
    "ClassificationFailed",
    "InvalidClassifierResponse",
    "QuotaExceeded",
    "MaterializationFailed",
    "LedgerConflict",
    # Components
    "GoogleOAuthClient",
    "TokenManager",
    "GmailSource",
    "AttachmentExtractor",
    "DocumentClassifier",
    "ClassificationOrchestrator",
    "QuotaEnforcer",
    "ProcessedItemLedger",
    "InvoiceMaterializer",
    "EmailScanner",
    "DatabaseClient",
    "S3Client",
    "run_sync",
    "connect_account",
    "disconnect_account",
    "Config",
]
