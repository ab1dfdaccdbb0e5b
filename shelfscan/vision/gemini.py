"""Gemini REST transport for product recognition."""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from ..config import DEFAULT_GEMINI_API_BASE, DEFAULT_GEMINI_MODEL
from ..errors import ClientError, ClientTimeout
from ..models import UploadedImage
from . import PRODUCT_RESPONSE_SCHEMA, RECOGNITION_PROMPT, RecognitionClient

logger = logging.getLogger(__name__)


def _redact_key(s: str) -> str:
    """Redact 'key=...' so API keys never end up in logs or messages."""
    if not s:
        return s
    return re.sub(r"(key=)([^&\s]+)", r"\1REDACTED", s)


def _retry_after(resp: httpx.Response) -> float | None:
    value = resp.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    message = ""
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        message = str(body["error"].get("message") or "")
    return _redact_key(message) or "Unknown error"


class GeminiRecognitionClient(RecognitionClient):
    """Calls ``models/{model}:generateContent`` with structured output."""

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_GEMINI_MODEL,
        api_base: str = DEFAULT_GEMINI_API_BASE,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model.removeprefix("models/")
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def url(self) -> str:
        return f"{self._api_base}/models/{self._model}:generateContent"

    async def recognize(self, image: UploadedImage) -> str:
        payload = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": RECOGNITION_PROMPT},
                        {
                            "inlineData": {
                                "mimeType": image.mime_type,
                                "data": image.encoded_payload,
                            }
                        },
                    ],
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": PRODUCT_RESPONSE_SCHEMA,
            },
        }
        return await self._post(payload)

    async def generate_text(self, prompt: str) -> str:
        payload = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        return await self._post(payload)

    async def _post(self, payload: dict[str, Any]) -> str:
        headers = {"x-goog-api-key": self._api_key}
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(self.url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise ClientTimeout(self._timeout) from e
        except httpx.HTTPError as e:
            raise ClientError(_redact_key(str(e)) or type(e).__name__) from e

        if resp.status_code >= 400:
            raise ClientError(
                f"API request failed with status {resp.status_code}: {_error_message(resp)}",
                status=resp.status_code,
                retry_after=_retry_after(resp),
            )
        return resp.text

    @staticmethod
    def locate_content(envelope: Any) -> str:
        return envelope["candidates"][0]["content"]["parts"][0]["text"]

    @staticmethod
    def describe_block(envelope: Any) -> str:
        if not isinstance(envelope, dict):
            return ""
        feedback = envelope.get("promptFeedback") or {}
        if isinstance(feedback, dict) and feedback.get("blockReason"):
            return f"prompt blocked: {feedback['blockReason']}"
        candidates = envelope.get("candidates") or []
        if candidates and isinstance(candidates[0], dict):
            reason = candidates[0].get("finishReason")
            if reason and reason != "STOP":
                return f"finish reason: {reason}"
        return ""
