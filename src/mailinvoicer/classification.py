"""Classification orchestration: quota gate, classifier call, verdict."""

import logging

from .errors import QuotaExceeded
from .models import ClassificationVerdict
from .quota import QuotaEnforcer
from .semantic import DocumentClassifier

logger = logging.getLogger(__name__)


class ClassificationOrchestrator:
    """Sends attachments to the classifier once the quota allows it."""

    def __init__(self, quota: QuotaEnforcer, classifier: DocumentClassifier):
        self.quota = quota
        self.classifier = classifier

    def classify(self, user_id: str, data: bytes, mime_type: str, filename: str) -> ClassificationVerdict:
        """Classify one attachment for user_id.

        Raises:
            QuotaExceeded: Before any external call, if the user has no documents left
            ClassificationFailed: If the classifier call fails or its output can't be parsed
        """
        if not self.quota.check_and_reserve(user_id):
            raise QuotaExceeded(user_id)

        logger.info(f"Classifying document: {filename} ({mime_type}, {len(data)} bytes)")
        verdict = self.classifier.classify_document(data, mime_type, filename)

        if verdict.is_invoice:
            logger.info(
                f"Accepted {filename} as {verdict.document_type or 'invoice'} "
                f"(confidence: {verdict.confidence})"
            )
        else:
            logger.info(f"Rejected {filename}: {verdict.rejection_reason or 'not an invoice'}")
        return verdict
