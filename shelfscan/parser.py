"""Validate provider responses and normalize them into product records.

Parsing happens in four stages, each with its own error type:

1. the envelope text must be JSON (``EnvelopeParseError``);
2. the envelope must carry generated content where the provider puts it
   (``EnvelopeShapeError``);
3. that content must be JSON (``ContentParseError``, with ``truncated`` set
   when the input ended early);
4. the content must be an array of objects (``SchemaError``).
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from .errors import (
    ContentParseError,
    EnvelopeParseError,
    EnvelopeShapeError,
    SchemaError,
)
from .models import ProductRecord

logger = logging.getLogger(__name__)

ContentLocator = Callable[[Any], str]

_EXCERPT = 200


def _excerpt(text: str) -> str:
    return text[:_EXCERPT]


def is_truncated(error: json.JSONDecodeError) -> bool:
    """True when decoding failed because the document ended too early."""
    if error.msg.startswith("Unterminated string"):
        return True
    return error.pos >= len(error.doc.rstrip())


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines).strip()
    return cleaned


def decode_envelope(
    raw: str,
    locate_content: ContentLocator,
    describe_block: Callable[[Any], str] | None = None,
) -> str:
    """Run stages 1 and 2 and return the generated content text."""
    if raw is None or not raw.strip():
        raise EnvelopeParseError("AI returned an empty response.")

    try:
        envelope = json.loads(raw)
    except json.JSONDecodeError as e:
        if is_truncated(e):
            raise EnvelopeParseError(
                "AI API response was incomplete or cut off.", truncated=True
            ) from e
        raise EnvelopeParseError(
            f"Failed to parse initial AI response as JSON. Raw: {_excerpt(raw)}..."
        ) from e

    try:
        content = locate_content(envelope)
    except (KeyError, IndexError, TypeError) as e:
        reason = describe_block(envelope) if describe_block else ""
        message = "AI response structure invalid (missing candidates/content)."
        if reason:
            message = f"{message[:-1]}: {reason}."
        raise EnvelopeShapeError(message) from e

    if content is not None and not isinstance(content, str):
        raise EnvelopeShapeError(
            "AI response structure invalid (content is not text)."
        )
    return content or ""


class ResponseParser:
    """Turn one raw recognition response into a list of ``ProductRecord``."""

    def __init__(
        self,
        locate_content: ContentLocator,
        describe_block: Callable[[Any], str] | None = None,
    ) -> None:
        self._locate_content = locate_content
        self._describe_block = describe_block

    def parse(self, raw: str) -> list[ProductRecord]:
        content = decode_envelope(raw, self._locate_content, self._describe_block)
        items = self.parse_content(content)
        return [ProductRecord.from_mapping(item) for item in items]

    @staticmethod
    def parse_content(content: str) -> list[dict]:
        """Run stages 3 and 4 on the generated content text."""
        cleaned = strip_code_fences(content)
        if not cleaned:
            raise ContentParseError(
                "AI content part was empty. No products identified."
            )

        try:
            value = json.loads(cleaned)
        except json.JSONDecodeError as e:
            logger.debug("Unparsable AI content: %s", _excerpt(cleaned))
            if is_truncated(e):
                raise ContentParseError(
                    "AI response was incomplete or cut off for this image.",
                    truncated=True,
                ) from e
            raise ContentParseError(
                f"Failed to parse AI product JSON. Raw content: {_excerpt(cleaned)}..."
            ) from e

        if not isinstance(value, list):
            raise SchemaError(
                "AI returned unexpected product data format. "
                "Expected an array of products."
            )
        for item in value:
            if not isinstance(item, dict):
                raise SchemaError(
                    "AI returned unexpected product data format. "
                    f"Expected product objects, got {type(item).__name__}."
                )
        return value
