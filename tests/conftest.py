"""Shared fixtures: a scripted recognition client and image factories."""

import asyncio
import json

import pytest

from shelfscan.models import UploadedImage
from shelfscan.retry import RetryPolicy
from shelfscan.vision import RecognitionClient


def gemini_envelope(content) -> str:
    """Wrap generated content the way generateContent returns it."""
    text = content if isinstance(content, str) else json.dumps(content)
    return json.dumps({"candidates": [{"content": {"parts": [{"text": text}]}}]})


class ScriptedClient(RecognitionClient):
    """Returns queued outcomes per file name; exceptions in the queue are raised."""

    name = "scripted"

    def __init__(self, script=None, default=None, delays=None, text=None):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.default = default if default is not None else gemini_envelope([])
        self.delays = delays or {}
        self.text = text if text is not None else gemini_envelope("A fine product.")
        self.calls: list[str] = []
        self.prompts: list[str] = []

    async def recognize(self, image):
        self.calls.append(image.file_name)
        delay = self.delays.get(image.file_name)
        if delay:
            await asyncio.sleep(delay)
        queue = self.script.get(image.file_name)
        outcome = queue.pop(0) if queue else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def generate_text(self, prompt):
        self.prompts.append(prompt)
        outcome = self.text
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return await outcome(prompt)
        return outcome

    @staticmethod
    def locate_content(envelope):
        return envelope["candidates"][0]["content"]["parts"][0]["text"]


@pytest.fixture
def make_image():
    def _make(name: str, mime_type: str = "image/jpeg") -> UploadedImage:
        return UploadedImage(
            id=f"id-{name}",
            file_name=name,
            mime_type=mime_type,
            encoded_payload="/9j/4AAQ",
        )

    return _make


@pytest.fixture
def fast_policy():
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0, timeout=5.0)


@pytest.fixture
def envelope():
    return gemini_envelope


@pytest.fixture
def scripted_client():
    return ScriptedClient
