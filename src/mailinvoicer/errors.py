"""Error taxonomy for the ingestion pipeline.

Invocation-level errors (``NotConnected``, ``RefreshFailed``) abort a whole
scan. Everything else is item-level: it is caught at the message boundary and
recorded in the ledger.
"""


class IngestionError(Exception):
    """Base class for all pipeline errors."""


class NotConnected(IngestionError):
    """No mail credential is stored for the user."""

    def __init__(self, user_id: str):
        super().__init__(f"Gmail not connected for user {user_id}")
        self.user_id = user_id


class RefreshFailed(IngestionError):
    """The refresh-token exchange did not yield a new access token."""


class AuthorizationFailed(IngestionError):
    """The authorization-code exchange failed."""


class ProviderFetchFailed(IngestionError):
    """A mail provider call (search, message or attachment fetch) failed."""


class ClassificationFailed(IngestionError):
    """The classifier service could not be reached or returned an error."""


class InvalidClassifierResponse(ClassificationFailed):
    """The classifier output could not be parsed as a verdict."""

    def __init__(self, message: str, raw_output: str = ""):
        super().__init__(message)
        self.raw_output = raw_output


class QuotaExceeded(IngestionError):
    """The user's document limit has been reached."""

    def __init__(self, user_id: str):
        super().__init__("Document limit reached. Please upgrade your plan.")
        self.user_id = user_id


class MaterializationFailed(IngestionError):
    """Writing the invoice (or archiving its attachment) failed."""


class DuplicateLedgerEntry(IngestionError):
    """Raised by the datastore when a ledger row already exists."""


class LedgerConflict(IngestionError):
    """A ledger write was refused because the row is already recorded.

    This is a benign outcome: another invocation (or an earlier scan) owns the
    message.
    """
