"""Recognition client base class, request contract, and factory."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from ..errors import ConfigError
from ..models import PRODUCT_FIELDS

if TYPE_CHECKING:
    from ..config import AppConfig
    from ..models import UploadedImage

RECOGNITION_PROMPT = """\
Identify all distinct products visible in this image. For each product, extract \
its name, any visible price, any visible brand, any visible barcode number, and \
any visible weight or volume.
Respond with a JSON array where each object has 'productName' (string), 'price' \
(string, or 'N/A' if no price is visible), 'brand' (string, or 'N/A' if no brand \
is visible), 'barcode' (string, or 'N/A' if no barcode is visible), and 'weight' \
(string such as '500 g' or '1 L', or 'N/A' if no weight or volume is visible).
If no products are identified, return an empty array [].
Example:
[
  {"productName": "Milk", "price": "$3.49", "brand": "DairyCo", "barcode": "123456789012", "weight": "1 L"},
  {"productName": "Whole Wheat Bread", "price": "N/A", "brand": "Bakery Delights", "barcode": "N/A", "weight": "N/A"}
]
"""

_WIRE_NAMES = [wire for _, wire in PRODUCT_FIELDS]

PRODUCT_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {name: {"type": "STRING"} for name in _WIRE_NAMES},
        "propertyOrdering": _WIRE_NAMES,
    },
}


class RecognitionClient(ABC):
    """One provider round trip per call, no retries.

    Both calls return the raw response envelope as text; pulling the
    generated content out of it is the parser's job, using
    ``locate_content``.
    """

    name = "base"

    @abstractmethod
    async def recognize(self, image: UploadedImage) -> str:
        """Send one image with the recognition prompt and schema."""
        ...

    @abstractmethod
    async def generate_text(self, prompt: str) -> str:
        """Send a text-only prompt with no output schema."""
        ...

    @staticmethod
    @abstractmethod
    def locate_content(envelope: Any) -> str:
        """Return the generated text inside a decoded envelope.

        Raises KeyError, IndexError or TypeError when the path is absent.
        """
        ...

    @staticmethod
    def describe_block(envelope: Any) -> str:
        """Return the provider's reason for an empty envelope, if any."""
        return ""


def create_client(config: AppConfig) -> RecognitionClient:
    """Create the configured recognition client.

    Raises:
        ConfigError: If the backend is unknown or has no API key.
    """
    backend_name = config.vision.backend
    timeout = config.recognition.timeout

    match backend_name:
        case "gemini":
            if not config.vision.gemini.api_key:
                raise ConfigError(
                    "Gemini API key is not set. "
                    "Set it in the config file or the GEMINI_API_KEY environment variable."
                )
            from .gemini import GeminiRecognitionClient

            return GeminiRecognitionClient(
                api_key=config.vision.gemini.api_key,
                model=config.vision.gemini.model,
                api_base=config.vision.gemini.api_base,
                timeout=timeout,
            )
        case "claude":
            if not config.vision.claude.api_key:
                raise ConfigError(
                    "Anthropic API key is not set. "
                    "Set it in the config file or the ANTHROPIC_API_KEY environment variable."
                )
            from .claude import ClaudeRecognitionClient

            return ClaudeRecognitionClient(
                api_key=config.vision.claude.api_key,
                model=config.vision.claude.model,
                timeout=timeout,
            )
        case _:
            raise ConfigError(
                f"Unknown vision backend: {backend_name!r} (choose gemini or claude)"
            )
