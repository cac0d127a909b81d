"""
Vision extractor backed by an OpenAI-compatible chat completions API.

The client is constructed explicitly from settings and injected into the
pipeline; nothing here is a module-level singleton.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Mapping, Optional, Protocol, Union

from openai import OpenAI, OpenAIError

from receiptflow.config import Settings
from receiptflow.errors import ExtractionError
from receiptflow.processing.pipeline.normalizer import CATEGORIES, PAYMENT_METHODS, normalize_extraction
from receiptflow.processing.schemas import ExtractedReceipt

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?\s*")

EXTRACTION_PROMPT = f"""You extract structured data from a receipt, invoice or bill image.
Return a single JSON object with these keys:
- merchant_name (string), amount (number, total incl. tax), currency (ISO 4217 code)
- receipt_date (YYYY-MM-DD or null), tax_amount (number or null), subtotal (number or null)
- category: one of {", ".join(CATEGORIES)}
- payment_method: one of {", ".join(PAYMENT_METHODS)}
- confidence_score (0-1), raw_text (all text on the document)
- document_type: one of receipt, invoice, medical_invoice, bill
- invoice_number, vendor_address, due_date (YYYY-MM-DD) or null
- for invoices: purchase_order_number, payment_reference, vendor_tax_id
- for medical invoices: patient_name, patient_dob, treatment_date, insurance_claim_number,
  diagnosis_codes, procedure_codes, provider_id, insurance_covered_amount,
  patient_responsibility_amount
- line_items: array of {{line_number, description, quantity, unit_price, line_total, item_code, tax_rate}}
Use null for anything not printed on the document. Never invent invoice numbers.
Amounts use 2 decimal places in the document's currency.
Return only JSON, no explanations or markdown."""


class Extractor(Protocol):
    def extract(self, document_url: str) -> Union[ExtractedReceipt, Mapping[str, Any]]: ...


def parse_model_json(content: Optional[str]) -> dict:
    """Parse the model's reply, tolerating markdown code fences."""
    if not content:
        raise ExtractionError("No response from vision API")
    cleaned = _CODE_FENCE.sub("", content).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ExtractionError(
            f"Invalid JSON response from vision API. Response preview: {content[:200]}..."
        ) from exc
    if not isinstance(data, dict):
        raise ExtractionError("Vision API response is not a JSON object")
    return data


class OpenAIVisionExtractor:
    def __init__(
        self,
        client: Optional[OpenAI],
        model: str = "gpt-4o",
        max_tokens: int = 1500,
        temperature: float = 0.1,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAIVisionExtractor":
        client = None
        if settings.LLM_API_KEY:
            client = OpenAI(
                api_key=settings.LLM_API_KEY,
                base_url=settings.LLM_BASE_URL,
                timeout=settings.LLM_TIMEOUT_SECONDS,
            )
        else:
            logger.warning("LLM_API_KEY is not set; extraction requests will fail")
        return cls(
            client,
            model=settings.LLM_MODEL,
            max_tokens=settings.LLM_MAX_TOKENS,
            temperature=settings.LLM_TEMPERATURE,
        )

    def extract(self, document_url: str) -> ExtractedReceipt:
        if self.client is None:
            raise ExtractionError("Vision API key is not configured")

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": EXTRACTION_PROMPT},
                            {"type": "image_url", "image_url": {"url": document_url, "detail": "high"}},
                        ],
                    }
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            logger.error("Vision API call failed: %s", exc)
            raise ExtractionError(f"Vision API request failed: {exc}") from exc

        content = response.choices[0].message.content if response.choices else None
        return normalize_extraction(parse_model_json(content))
