"""Receipt field extraction using Claude Vision."""

import base64
import json
import logging
from datetime import date
from typing import Any

import anthropic

from receipt_tracker.config import get_settings
from receipt_tracker.services.extraction import (
    NO_RECEIPT_FOUND_MESSAGE,
    FieldReading,
    RawExtraction,
)

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """Analyze this receipt and extract the following fields.

For each field, report the value exactly as printed (normalized as described)
and a confidence between 0.0 and 1.0 for how sure you are of that value:
1. merchant_name: the store or business name
2. total_amount: the final amount paid, as a number without currency symbols
3. currency: ISO 4217 code if you can tell (e.g. "EUR"), otherwise the symbol
4. transaction_date: the purchase date in YYYY-MM-DD format

Use null for any field you cannot find. If the document is not a receipt,
set "is_receipt" to false.

Return ONLY a JSON object in this shape:
{
  "is_receipt": true,
  "merchant_name": {"value": "Konzum", "confidence": 0.95},
  "total_amount": {"value": 12.5, "confidence": 0.97},
  "currency": "EUR",
  "transaction_date": {"value": "2025-06-15", "confidence": 0.92}
}

Return ONLY the JSON object, no other text."""


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if not text.startswith("```"):
        return text

    json_lines = []
    in_json = False
    for line in text.split("\n"):
        if line.startswith("```") and not in_json:
            in_json = True
            continue
        elif line.startswith("```") and in_json:
            break
        elif in_json:
            json_lines.append(line)
    return "\n".join(json_lines)


def _reading(data: dict[str, Any], key: str) -> FieldReading | None:
    field = data.get(key)
    if not isinstance(field, dict) or field.get("value") in (None, ""):
        return None
    return FieldReading(field["value"], float(field.get("confidence") or 0.0))


def parse_vision_response(response_text: str) -> RawExtraction:
    """Parse Claude's JSON reply into a RawExtraction.

    Raises:
        ValueError: the reply is not the JSON object we asked for
    """
    try:
        data = json.loads(_strip_code_fence(response_text))
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse Claude response as JSON: {e}")
        logger.error(f"Response was: {response_text}")
        raise ValueError(f"Failed to parse receipt: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("Failed to parse receipt: expected a JSON object")
    if data.get("is_receipt") is False:
        return RawExtraction.failed(NO_RECEIPT_FOUND_MESSAGE)

    transaction_date = _reading(data, "transaction_date")
    if transaction_date is not None:
        try:
            transaction_date = FieldReading(
                date.fromisoformat(str(transaction_date.value)[:10]), transaction_date.confidence
            )
        except ValueError:
            logger.info(f"Unparseable transaction date: {transaction_date.value!r}")
            transaction_date = None

    return RawExtraction(
        success=True,
        merchant_name=_reading(data, "merchant_name"),
        total_amount=_reading(data, "total_amount"),
        transaction_date=transaction_date,
        currency=data.get("currency") or None,
    )


class VisionReceiptExtractor:
    """Reads receipt fields from images and PDFs with Claude Vision."""

    def __init__(self) -> None:
        settings = get_settings()
        self.api_key = settings.anthropic_api_key
        self.model = settings.anthropic_model
        self._configured = bool(self.api_key)

    @property
    def is_configured(self) -> bool:
        """Check if the Anthropic API is configured."""
        return self._configured

    async def analyze(self, content: bytes, media_type: str) -> RawExtraction:
        """Extract receipt fields from a document.

        Args:
            content: Raw bytes of the image or PDF
            media_type: MIME type (e.g., "image/jpeg", "application/pdf")

        Returns:
            RawExtraction with the recognized fields
        """
        if not self.is_configured:
            raise ValueError("Anthropic API not configured")

        data = base64.standard_b64encode(content).decode("utf-8")
        block_type = "document" if media_type == "application/pdf" else "image"

        client = anthropic.AsyncAnthropic(api_key=self.api_key)
        message = await client.messages.create(
            model=self.model,
            max_tokens=1024,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {
                            "type": block_type,
                            "source": {
                                "type": "base64",
                                "media_type": media_type,
                                "data": data,
                            },
                        },
                        {
                            "type": "text",
                            "text": EXTRACTION_PROMPT,
                        },
                    ],
                }
            ],
        )

        return parse_vision_response(message.content[0].text)
