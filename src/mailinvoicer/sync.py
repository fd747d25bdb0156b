"""Invocation entry points: build the pipeline from config and run it."""

import logging
from typing import Optional

from .auth import GoogleOAuthClient, TokenManager
from .classification import ClassificationOrchestrator
from .config import Config
from .errors import IngestionError
from .ingestion import GmailSource
from .ledger import ProcessedItemLedger
from .materializer import InvoiceMaterializer
from .models import Credential, ScanMode
from .pipeline import EmailScanner
from .quota import QuotaEnforcer
from .semantic import DocumentClassifier
from .storage import DatabaseClient, S3Client

logger = logging.getLogger(__name__)


def build_token_manager(config: Config, db) -> TokenManager:
    oauth = GoogleOAuthClient(
        client_id=config.google_oauth2_client_id,
        client_secret=config.google_oauth2_client_secret,
        redirect_uri=config.google_redirect_uri,
        timeout=config.request_timeout_sec,
    )
    return TokenManager(db, oauth)


def build_scanner(
    config: Config,
    db,
    classifier: Optional[DocumentClassifier] = None,
    archive: Optional[S3Client] = None,
) -> EmailScanner:
    """Assemble an EmailScanner for one invocation.

    Args:
        config: Application configuration
        db: Datastore client
        classifier: Classifier to use (built from config when omitted)
        archive: Attachment archive (built from config when omitted and enabled)
    """
    if classifier is None:
        classifier = DocumentClassifier(
            api_key=config.openai_api_key,
            model_name=config.classifier_model,
            base_url=config.openai_base_url,
        )
    if archive is None and config.archive_enabled:
        archive = S3Client(
            bucket_name=config.s3_bucket,
            endpoint_url=config.s3_endpoint,
            access_key_id=config.aws_access_key_id,
            secret_access_key=config.aws_secret_access_key,
        )

    quota = QuotaEnforcer(db)
    ledger = ProcessedItemLedger(db, retry_errored=config.retry_errored_messages)

    return EmailScanner(
        db=db,
        tokens=build_token_manager(config, db),
        provider_factory=lambda token: GmailSource(token, timeout=config.request_timeout_sec),
        ledger=ledger,
        orchestrator=ClassificationOrchestrator(quota, classifier),
        materializer=InvoiceMaterializer(db, ledger, quota, archive=archive),
        search_page_size=config.search_page_size,
        batch_size=config.scan_batch_size,
        initial_lookback_days=config.initial_lookback_days,
        incremental_lookback_days=config.incremental_lookback_days,
    )


def run_sync(user_id: str, mode: ScanMode, config: Config, db=None) -> dict:
    """Scan a user's mailbox once.

    Args:
        user_id: User to scan
        mode: "initial" or "incremental"
        config: Application configuration
        db: Datastore client (a DatabaseClient is opened and closed when omitted)

    Returns:
        dict: {"success", "processed", "invoices_found", "total_emails"} on
        success, {"error": message} if the scan could not run
    """
    try:
        mode = ScanMode(mode)
    except ValueError:
        logger.error(f"Invalid scan mode for user {user_id}: {mode!r}")
        return {"error": f"Invalid scan mode: {mode}"}

    owns_db = db is None
    if owns_db:
        db = DatabaseClient(config.database_url)

    try:
        scanner = build_scanner(config, db)
        result = scanner.scan(user_id, mode)
        return result.to_summary()
    except IngestionError as e:
        logger.error(f"Gmail sync failed for user {user_id}: {e}", exc_info=True)
        return {"error": str(e)}
    finally:
        if owns_db:
            db.close()


def connect_account(user_id: str, code: str, config: Config, db=None) -> Credential:
    """Exchange an authorization code and store the resulting credential."""
    owns_db = db is None
    if owns_db:
        db = DatabaseClient(config.database_url)
    try:
        return build_token_manager(config, db).connect(user_id, code)
    finally:
        if owns_db:
            db.close()


def disconnect_account(user_id: str, config: Config, db=None) -> bool:
    """Forget the user's mail credential."""
    owns_db = db is None
    if owns_db:
        db = DatabaseClient(config.database_url)
    try:
        return build_token_manager(config, db).disconnect(user_id)
    finally:
        if owns_db:
            db.close()
