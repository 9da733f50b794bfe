"""Azure AI Document Intelligence client for the prebuilt receipt model."""

import asyncio
import logging
from datetime import date
from typing import Any

import httpx

from receipt_tracker.config import get_settings
from receipt_tracker.services.extraction import (
    NO_RECEIPT_FOUND_MESSAGE,
    FieldReading,
    RawExtraction,
)

logger = logging.getLogger(__name__)


class DocumentIntelligenceError(Exception):
    """The analyze operation did not succeed."""


class DocumentIntelligenceClient:
    """Submits documents to the analyze API and maps the receipt fields."""

    def __init__(
        self,
        endpoint: str | None = None,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        poll_interval: float = 1.0,
        max_polls: int = 120,
    ) -> None:
        self.settings = get_settings()
        self.endpoint = (endpoint or self.settings.document_intelligence_endpoint or "").rstrip("/")
        self.api_key = api_key or self.settings.document_intelligence_key
        self.model = self.settings.document_intelligence_model
        self.api_version = self.settings.document_intelligence_api_version
        self.transport = transport
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.timeout = 60.0

    @property
    def is_configured(self) -> bool:
        """Check if an endpoint and key are available."""
        return bool(self.endpoint and self.api_key)

    async def analyze(self, content: bytes, media_type: str) -> RawExtraction:
        """Run the prebuilt receipt model over a document.

        Args:
            content: Raw document bytes
            media_type: MIME type of the document

        Returns:
            RawExtraction with whatever receipt fields were recognized
        """
        if not self.is_configured:
            raise ValueError("Document Intelligence is not configured")

        headers = {"Ocp-Apim-Subscription-Key": self.api_key}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(
                f"{self.endpoint}/documentintelligence/documentModels/{self.model}:analyze",
                params={"api-version": self.api_version},
                headers={**headers, "Content-Type": media_type},
                content=content,
            )
            response.raise_for_status()

            operation_url = response.headers.get("Operation-Location")
            if not operation_url:
                raise DocumentIntelligenceError("Analyze response had no Operation-Location")

            analyze_result = await self._wait_for_result(client, operation_url, headers)

        documents = analyze_result.get("documents") or []
        if not documents:
            logger.warning("Document Intelligence found no receipt in the document")
            return RawExtraction.failed(NO_RECEIPT_FOUND_MESSAGE)

        return parse_receipt_document(documents[0])

    async def _wait_for_result(
        self, client: httpx.AsyncClient, operation_url: str, headers: dict[str, str]
    ) -> dict[str, Any]:
        for _ in range(self.max_polls):
            response = await client.get(operation_url, headers=headers)
            response.raise_for_status()
            data = response.json()

            status = data.get("status")
            if status == "succeeded":
                return data.get("analyzeResult") or {}
            if status == "failed":
                error = data.get("error") or {}
                raise DocumentIntelligenceError(error.get("message", "Analyze operation failed"))

            await asyncio.sleep(self.poll_interval)

        raise DocumentIntelligenceError(f"Analyze operation still running after {self.max_polls} polls")


def _confidence(field: dict[str, Any]) -> float:
    return float(field.get("confidence") or 0.0)


def parse_receipt_document(document: dict[str, Any]) -> RawExtraction:
    """Map an analyzed receipt document to a RawExtraction.

    Fields reported with an unexpected type are treated as missing.
    """
    fields = document.get("fields") or {}

    merchant = None
    merchant_field = fields.get("MerchantName")
    if merchant_field and merchant_field.get("type") == "string":
        merchant = FieldReading(merchant_field.get("valueString"), _confidence(merchant_field))

    total = None
    currency = None
    total_field = fields.get("Total")
    if total_field and total_field.get("type") == "currency":
        value = total_field.get("valueCurrency") or {}
        total = FieldReading(value.get("amount"), _confidence(total_field))
        currency = value.get("currencyCode") or value.get("currencySymbol")

    transaction_date = None
    date_field = fields.get("TransactionDate")
    if date_field and date_field.get("type") == "date":
        raw_date = date_field.get("valueDate")
        parsed = date.fromisoformat(raw_date[:10]) if raw_date else None
        transaction_date = FieldReading(parsed, _confidence(date_field))

    return RawExtraction(
        success=True,
        merchant_name=merchant,
        total_amount=total,
        transaction_date=transaction_date,
        currency=currency,
    )
