"""Database operations using psycopg (PostgreSQL)."""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import dict_row

from ..errors import DuplicateLedgerEntry
from ..models import Credential, Invoice, LedgerEntry, LedgerStatus, QuotaState

logger = logging.getLogger(__name__)


class DatabaseClient:
    """PostgreSQL database client using psycopg.

    The connection runs in autocommit mode: every statement outside
    ``transaction()`` is its own unit, and nested ``transaction()`` blocks
    become savepoints.
    """

    def __init__(self, database_url: str):
        """Initialize database client.

        Args:
            database_url: PostgreSQL connection string
        """
        self.database_url = database_url
        self._conn: Optional[psycopg.Connection] = None

    def connect(self):
        """Establish database connection."""
        if self._conn is None or self._conn.closed:
            self._conn = psycopg.connect(
                self.database_url,
                row_factory=dict_row,
                autocommit=True,
            )
            logger.info("Database connection established")
        return self._conn

    def close(self):
        """Close database connection."""
        if self._conn and not self._conn.closed:
            self._conn.close()
            logger.info("Database connection closed")

    @contextmanager
    def transaction(self):
        """Context manager for database transactions.

        Usage:
            with db.transaction():
                db.insert_invoice(...)
                # Automatically commits on success, rolls back on exception
        """
        conn = self.connect()
        try:
            with conn.transaction():
                yield conn
            logger.debug("Transaction committed")
        except Exception as e:
            logger.error(f"Transaction rolled back: {e}")
            raise

    # ========================================================================
    # Credential Operations
    # ========================================================================

    @staticmethod
    def _credential_from_row(row: dict) -> Credential:
        return Credential(
            user_id=str(row["user_id"]),
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expiry=row["token_expiry"],
            mail_address=row["gmail_email"],
            last_sync_at=row.get("gmail_last_sync"),
        )

    def get_credential(self, user_id: str) -> Optional[Credential]:
        """Fetch the Gmail credential for a user.

        Args:
            user_id: User ID

        Returns:
            Optional[Credential]: Credential if the user is connected, None otherwise
        """
        conn = self.connect()
        with conn.cursor() as cur:
            cur.execute("""
                SELECT user_id, access_token, refresh_token, token_expiry,
                       gmail_email, gmail_last_sync
                FROM gmail_tokens
                WHERE user_id = %s
            """, (user_id,))
            row = cur.fetchone()
            return self._credential_from_row(row) if row else None

    def get_all_credentials(self) -> list[Credential]:
        """Fetch the credentials of every connected user."""
        conn = self.connect()
        with conn.cursor() as cur:
            cur.execute("""
                SELECT user_id, access_token, refresh_token, token_expiry,
                       gmail_email, gmail_last_sync
                FROM gmail_tokens
                ORDER BY created_at
            """)
            return [self._credential_from_row(row) for row in cur.fetchall()]

    def upsert_credential(self, credential: Credential):
        """Insert or replace the credential for a user (one row per user)."""
        conn = self.connect()
        with conn.cursor() as cur:
            cur.execute("""
                INSERT INTO gmail_tokens
                    (user_id, access_token, refresh_token, token_expiry, gmail_email)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (user_id) DO UPDATE
                SET access_token = EXCLUDED.access_token,
                    refresh_token = EXCLUDED.refresh_token,
                    token_expiry = EXCLUDED.token_expiry,
                    gmail_email = EXCLUDED.gmail_email
            """, (
                credential.user_id,
                credential.access_token,
                credential.refresh_token,
                credential.expiry,
                credential.mail_address,
            ))
            logger.info(f"Stored Gmail credential for user={credential.user_id}")

    def update_access_token(self, user_id: str, access_token: str, expiry: datetime):
        """Persist a refreshed access token. The refresh token is left untouched."""
        conn = self.connect()
        with conn.cursor() as cur:
            cur.execute("""
                UPDATE gmail_tokens
                SET access_token = %s, token_expiry = %s
                WHERE user_id = %s
            """, (access_token, expiry, user_id))

    def update_last_sync(self, user_id: str, synced_at: datetime):
        """Record the start time of the last completed scan.

        Written to the credential row and mirrored on the profile, which is
        what the settings screen reads.
        """
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE gmail_tokens SET gmail_last_sync = %s WHERE user_id = %s",
                    (synced_at, user_id),
                )
                cur.execute(
                    "UPDATE profiles SET gmail_last_sync = %s WHERE id = %s",
                    (synced_at, user_id),
                )

    def delete_credential(self, user_id: str) -> bool:
        """Delete the credential for a user.

        Returns:
            bool: True if a row was deleted
        """
        conn = self.connect()
        with conn.cursor() as cur:
            cur.execute("DELETE FROM gmail_tokens WHERE user_id = %s", (user_id,))
            deleted = cur.rowcount > 0
            logger.info(f"Deleted Gmail credential for user={user_id} (existed={deleted})")
            return deleted

    def set_profile_connection(self, user_id: str, mail_address: Optional[str]):
        """Flag the profile as connected to mail_address, or disconnected when None."""
        conn = self.connect()
        with conn.cursor() as cur:
            if mail_address:
                cur.execute("""
                    UPDATE profiles
                    SET gmail_connected = TRUE, gmail_email = %s
                    WHERE id = %s
                """, (mail_address, user_id))
            else:
                cur.execute("""
                    UPDATE profiles
                    SET gmail_connected = FALSE, gmail_email = NULL, gmail_last_sync = NULL
                    WHERE id = %s
                """, (user_id,))

    # ========================================================================
    # Ledger Operations
    # ========================================================================

    @staticmethod
    def _ledger_from_row(row: dict) -> LedgerEntry:
        return LedgerEntry(
            user_id=str(row["user_id"]),
            provider_message_id=row["gmail_message_id"],
            status=row["status"],
            linked_invoice_id=str(row["invoice_id"]) if row["invoice_id"] else None,
            reason_text=row["rejection_reason"],
            processed_at=row["processed_at"],
        )

    def get_ledger_entry(self, user_id: str, message_id: str) -> Optional[LedgerEntry]:
        """Fetch the ledger row for a provider message, if any."""
        conn = self.connect()
        with conn.cursor() as cur:
            cur.execute("""
                SELECT user_id, gmail_message_id, status, invoice_id,
                       rejection_reason, processed_at
                FROM processed_emails
                WHERE user_id = %s AND gmail_message_id = %s
            """, (user_id, message_id))
            row = cur.fetchone()
            return self._ledger_from_row(row) if row else None

    def insert_ledger_entry(self, entry: LedgerEntry):
        """Insert a ledger row.

        Raises:
            DuplicateLedgerEntry: If (user_id, message_id) is already recorded
        """
        conn = self.connect()
        try:
            # Savepoint so a unique violation doesn't poison an outer transaction
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.execute("""
                        INSERT INTO processed_emails
                            (user_id, email_id, gmail_message_id, status,
                             invoice_id, rejection_reason, processed_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """, (
                        entry.user_id,
                        entry.provider_message_id,
                        entry.provider_message_id,
                        entry.status.value,
                        entry.linked_invoice_id,
                        entry.reason_text,
                        entry.processed_at or datetime.now(timezone.utc),
                    ))
        except pg_errors.UniqueViolation as e:
            raise DuplicateLedgerEntry(
                f"Message {entry.provider_message_id} already recorded for user {entry.user_id}"
            ) from e

    def update_ledger_entry(self, entry: LedgerEntry, expected_status: LedgerStatus) -> bool:
        """Overwrite status, link and reason of a ledger row still in expected_status.

        Returns:
            bool: False if the row is missing or another writer changed it first
        """
        conn = self.connect()
        with conn.cursor() as cur:
            cur.execute("""
                UPDATE processed_emails
                SET status = %s, invoice_id = %s, rejection_reason = %s, processed_at = %s
                WHERE user_id = %s AND gmail_message_id = %s AND status = %s
            """, (
                entry.status.value,
                entry.linked_invoice_id,
                entry.reason_text,
                entry.processed_at or datetime.now(timezone.utc),
                entry.user_id,
                entry.provider_message_id,
                expected_status.value,
            ))
            return cur.rowcount > 0

    # ========================================================================
    # Quota Operations
    # ========================================================================

    def get_quota(self, user_id: str) -> Optional[QuotaState]:
        """Read the document counter from the user's profile."""
        conn = self.connect()
        with conn.cursor() as cur:
            cur.execute("""
                SELECT COALESCE(document_count, 0) AS document_count,
                       COALESCE(document_limit, 5) AS document_limit
                FROM profiles
                WHERE id = %s
            """, (user_id,))
            row = cur.fetchone()
            return QuotaState(**row) if row else None

    def increment_document_count(self, user_id: str) -> bool:
        """Atomically increment the document counter if it is below the limit.

        Returns:
            bool: True if the counter was incremented, False if the limit was reached
        """
        conn = self.connect()
        with conn.cursor() as cur:
            cur.execute("""
                UPDATE profiles
                SET document_count = COALESCE(document_count, 0) + 1
                WHERE id = %s
                  AND COALESCE(document_count, 0) < COALESCE(document_limit, 5)
                RETURNING document_count
            """, (user_id,))
            row = cur.fetchone()
            if row:
                logger.debug(f"document_count for user={user_id} is now {row['document_count']}")
            return row is not None

    # ========================================================================
    # Invoice Operations
    # ========================================================================

    def insert_invoice(self, invoice: Invoice) -> str:
        """Insert an invoice and return its generated ID.

        Note:
            Called inside the materializer's transaction.
        """
        conn = self.connect()
        with conn.cursor() as cur:
            cur.execute("""
                INSERT INTO invoices (
                    user_id, supplier_name, document_number, document_type,
                    document_date, intake_date, total_amount, vat_amount,
                    business_type, category, status, entry_method,
                    image_url, source, gmail_message_id
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id
            """, (
                invoice.user_id,
                invoice.supplier_name,
                invoice.document_number,
                invoice.document_type,
                invoice.document_date,
                invoice.intake_date,
                invoice.total_amount,
                invoice.vat_amount,
                invoice.business_type,
                invoice.category,
                invoice.status,
                invoice.entry_method,
                invoice.image_url,
                invoice.source,
                invoice.source_message_id,
            ))
            invoice_id = str(cur.fetchone()["id"])
            logger.info(f"Inserted invoice id={invoice_id} for user={invoice.user_id}")
            return invoice_id
