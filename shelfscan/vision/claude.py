"""Claude API transport for product recognition."""

from __future__ import annotations

from typing import Any

from ..config import DEFAULT_CLAUDE_MODEL
from ..errors import ClientError, ClientTimeout
from ..models import UploadedImage
from . import RECOGNITION_PROMPT, RecognitionClient

_JSON_ONLY = "Return only the JSON array. No markdown, no code fences, no extra text."


class ClaudeRecognitionClient(RecognitionClient):
    """Recognize products using Claude's vision capability.

    Claude has no response schema parameter, so the prompt carries the
    output contract and the parser strips any code fences.
    """

    name = "claude"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_CLAUDE_MODEL,
        timeout: float = 30.0,
        max_tokens: int = 4096,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout = timeout
        self._max_tokens = max_tokens

    async def recognize(self, image: UploadedImage) -> str:
        content = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image.mime_type,
                    "data": image.encoded_payload,
                },
            },
            {"type": "text", "text": f"{RECOGNITION_PROMPT}\n{_JSON_ONLY}"},
        ]
        return await self._create(content)

    async def generate_text(self, prompt: str) -> str:
        return await self._create([{"type": "text", "text": prompt}])

    async def _create(self, content: list[dict]) -> str:
        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "anthropic SDK is required: pip install 'shelfscan[claude]'"
            ) from None

        try:
            async with anthropic.AsyncAnthropic(
                api_key=self._api_key, timeout=self._timeout, max_retries=0
            ) as client:
                response = await client.messages.create(
                    model=self._model,
                    max_tokens=self._max_tokens,
                    messages=[{"role": "user", "content": content}],
                )
        except anthropic.APITimeoutError as e:
            raise ClientTimeout(self._timeout) from e
        except anthropic.APIStatusError as e:
            retry_after = None
            header = e.response.headers.get("retry-after")
            if header:
                try:
                    retry_after = float(header)
                except ValueError:
                    retry_after = None
            raise ClientError(
                f"API request failed with status {e.status_code}: {e.message}",
                status=e.status_code,
                retry_after=retry_after,
            ) from e
        except anthropic.APIError as e:
            raise ClientError(str(e)) from e

        return response.model_dump_json()

    @staticmethod
    def locate_content(envelope: Any) -> str:
        return envelope["content"][0]["text"]

    @staticmethod
    def describe_block(envelope: Any) -> str:
        if isinstance(envelope, dict):
            reason = envelope.get("stop_reason")
            if reason and reason != "end_turn":
                return f"stop reason: {reason}"
        return ""
