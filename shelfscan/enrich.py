"""Single-shot describe / suggest-usage calls for one selected product."""

from __future__ import annotations

import asyncio
import enum
import logging

from .errors import EnrichmentError, RecognitionError
from .models import PRODUCT_FIELDS, ProductRecord
from .parser import decode_envelope
from .vision import RecognitionClient

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"

_LABELS = {
    "product_name": "Name",
    "price": "Price",
    "brand": "Brand",
    "barcode": "Barcode",
    "weight": "Weight/volume",
}

_INSTRUCTIONS = {
    "describe": (
        "Write a short, engaging product description (2-3 sentences) for the "
        "following retail product. Do not invent details for fields marked "
        f"'{UNKNOWN}'."
    ),
    "suggest_usage": (
        "Suggest three practical ways a customer could use the following "
        "retail product, as a short bulleted list. Do not invent details for "
        f"fields marked '{UNKNOWN}'."
    ),
}


class EnrichmentKind(enum.Enum):
    DESCRIBE = "describe"
    SUGGEST_USAGE = "suggest_usage"


def build_prompt(product: ProductRecord, kind: EnrichmentKind) -> str:
    lines = [_INSTRUCTIONS[kind.value], ""]
    for attr, _ in PRODUCT_FIELDS:
        value = getattr(product, attr) if product.is_available(attr) else UNKNOWN
        lines.append(f"{_LABELS[attr]}: {value}")
    return "\n".join(lines)


class ProductEnrichmentService:
    """One text-only call per request, never retried."""

    def __init__(self, client: RecognitionClient, timeout: float = 30.0) -> None:
        self._client = client
        self._timeout = timeout

    async def enrich(self, product: ProductRecord, kind: EnrichmentKind) -> str:
        """Return the generated text.

        Raises:
            EnrichmentError: On any network, envelope or empty-content failure.
        """
        prompt = build_prompt(product, kind)
        try:
            raw = await asyncio.wait_for(
                self._client.generate_text(prompt), timeout=self._timeout
            )
        except asyncio.TimeoutError as e:
            raise EnrichmentError(
                f"Enrichment request timed out after {self._timeout:g}s."
            ) from e
        except RecognitionError as e:
            raise EnrichmentError(str(e)) from e

        try:
            text = decode_envelope(
                raw, self._client.locate_content, self._client.describe_block
            )
        except RecognitionError as e:
            raise EnrichmentError(str(e)) from e

        text = text.strip()
        if not text:
            raise EnrichmentError("AI returned no text for this product.")
        logger.debug("%s for %s: %d chars", kind.value, product.product_name, len(text))
        return text
