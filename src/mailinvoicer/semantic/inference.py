"""LLM vision inference for invoice document classification."""

import base64
import json
import logging
import re
from typing import Optional

from openai import OpenAI, OpenAIError
from pydantic import ValidationError

from ..errors import ClassificationFailed, InvalidClassifierResponse
from ..models import ClassificationVerdict

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You classify Israeli business documents attached to emails.

Decide whether the document is one of the accepted types and, if it is, read its key fields.

ACCEPT only:
- Tax invoices (חשבונית מס, חשבונית מס קבלה)
- Receipts that include VAT (קבלה)
- Regular invoices (חשבונית)

REJECT:
- Purchase orders (אישור הזמנה)
- Transaction confirmations (אישור עסקה)
- Bank statements (דפי חשבון)
- Delivery notes (תעודת משלוח)
- Price quotes (הצעת מחיר)
- Personal emails, letters and any other non-commercial correspondence

Respond with ONLY a JSON object. Do not include markdown blocks or any text before or after the JSON.

Output JSON with these exact fields:
{
  "is_invoice": true or false,
  "document_type": "חשבונית מס" or "קבלה" or "אישור הזמנה" or "אחר",
  "confidence": number from 0 to 100,
  "rejection_reason": "why it was rejected, or null",
  "data": {
    "supplier_name": "...",
    "document_number": "...",
    "document_date": "YYYY-MM-DD",
    "total_amount": number,
    "vat_amount": number,
    "business_type": "עוסק מורשה" or "עוסק פטור" or "חברה בע\\"מ" or "ספק חו\\"ל",
    "category": "..."
  }
}"""

USER_PROMPT = "Classify this document and extract its details."


class DocumentClassifier:
    """Client for the vision classifier using the OpenAI API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = "gpt-4o",
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        client: Optional[OpenAI] = None,
    ):
        """Initialize classifier client.

        Args:
            api_key: OpenAI API key
            model_name: Vision-capable model to use
            base_url: Optional OpenAI-compatible endpoint
            timeout: Request timeout in seconds
            client: Pre-built OpenAI client (used as-is when given)
        """
        self.client = client or OpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
        self.model_name = model_name
        logger.info(f"Document classifier initialized with model: {model_name}")

    def classify_document(self, data: bytes, mime_type: str, filename: str) -> ClassificationVerdict:
        """Classify a single attachment.

        Args:
            data: Raw attachment bytes
            mime_type: MIME type of the attachment (PDF or image)
            filename: Original filename

        Returns:
            ClassificationVerdict: Parsed verdict

        Raises:
            ClassificationFailed: If the API call fails
            InvalidClassifierResponse: If the output is not a verdict
        """
        try:
            response = self.client.chat.completions.create(
                model=self.model_name,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": USER_PROMPT},
                            self._document_content(data, mime_type, filename),
                        ],
                    },
                ],
                temperature=0.1,
                max_tokens=1000,
            )
        except OpenAIError as e:
            raise ClassificationFailed(f"Classifier API error: {e}") from e

        if not response.choices:
            raise InvalidClassifierResponse("Classifier returned no choices")

        response_text = (response.choices[0].message.content or "").strip()
        return self.parse_verdict(response_text)

    def parse_verdict(self, response_text: str) -> ClassificationVerdict:
        """Parse raw classifier output into a verdict.

        Raises:
            InvalidClassifierResponse: If the output is not valid verdict JSON
        """
        cleaned = self._extract_json(response_text)
        try:
            data = json.loads(cleaned)
            return ClassificationVerdict.model_validate(data)
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.error(f"Failed to parse classifier response: {response_text[:500]!r}")
            raise InvalidClassifierResponse(
                f"Invalid response from classifier: {e}", raw_output=response_text
            ) from e

    @staticmethod
    def _document_content(data: bytes, mime_type: str, filename: str) -> dict:
        encoded = base64.b64encode(data).decode("ascii")
        data_uri = f"data:{mime_type};base64,{encoded}"

        if mime_type == "application/pdf":
            return {"type": "file", "file": {"filename": filename, "file_data": data_uri}}
        return {"type": "image_url", "image_url": {"url": data_uri, "detail": "high"}}

    def _extract_json(self, text: str) -> str:
        """Extract JSON from text that may contain markdown code blocks or thinking tags.

        Args:
            text: Response text that may contain JSON

        Returns:
            str: Cleaned JSON string
        """
        # Remove thinking tags if present
        if '<think>' in text or '</think>' in text:
            text = re.sub(r'<think>.*?</think>', '', text, flags=re.DOTALL)
            text = text.strip()

        # Handle markdown code blocks
        if '```' in text:
            json_match = re.search(r'```(?:json)?\s*(\{.*?\})\s*```', text, re.DOTALL)
            if json_match:
                return json_match.group(1)

        # Find the JSON object if it doesn't start with {
        if not text.startswith('{'):
            json_match = re.search(r'\{.*\}', text, re.DOTALL)
            if json_match:
                return json_match.group(0)

        return text
