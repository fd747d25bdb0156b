"""Per-user document quota."""

import logging

logger = logging.getLogger(__name__)


class QuotaEnforcer:
    """Gates classification on the profile's document counter."""

    def __init__(self, db):
        self.db = db

    def check_and_reserve(self, user_id: str) -> bool:
        """Return False when the user has no documents left.

        This is a read-only check made before the classifier is called; the
        counter only moves in ``increment`` once a document is accepted.
        """
        quota = self.db.get_quota(user_id)
        if quota is None:
            logger.error(f"No profile found for user {user_id}, blocking classification")
            return False
        if quota.exhausted:
            logger.info(
                f"User {user_id} reached document limit "
                f"({quota.document_count}/{quota.document_limit})"
            )
            return False
        return True

    def increment(self, user_id: str) -> bool:
        """Consume one document.

        The increment is a single conditional update, so concurrent
        acceptances cannot push the counter past the limit.

        Returns:
            bool: False if the limit was reached in the meantime
        """
        return self.db.increment_document_count(user_id)
