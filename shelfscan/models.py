"""Domain records shared by the pipeline, the exporter and the UI."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping

NOT_AVAILABLE = "N/A"

# (attribute, wire name) in the fixed output order.
PRODUCT_FIELDS: tuple[tuple[str, str], ...] = (
    ("product_name", "productName"),
    ("price", "price"),
    ("brand", "brand"),
    ("barcode", "barcode"),
    ("weight", "weight"),
)


def new_image_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class UploadedImage:
    """An ingested image, ready to be sent to the provider."""

    id: str
    file_name: str
    mime_type: str
    encoded_payload: str  # base64, ASCII


@dataclass(frozen=True)
class ProductRecord:
    product_name: str = NOT_AVAILABLE
    price: str = NOT_AVAILABLE
    brand: str = NOT_AVAILABLE
    barcode: str = NOT_AVAILABLE
    weight: str = NOT_AVAILABLE

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ProductRecord:
        """Build a record from a provider object.

        Missing, null and blank values become ``"N/A"``, other scalars are
        stringified and unknown keys are ignored.
        """
        values = {}
        for attr, wire in PRODUCT_FIELDS:
            value = raw.get(wire)
            if value is None:
                value = raw.get(attr)
            values[attr] = _normalize_value(value)
        return cls(**values)

    def to_dict(self) -> dict[str, str]:
        return {wire: getattr(self, attr) for attr, wire in PRODUCT_FIELDS}

    def is_available(self, attr: str) -> bool:
        return getattr(self, attr) != NOT_AVAILABLE


def _normalize_value(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return NOT_AVAILABLE
    text = str(value).strip()
    return text or NOT_AVAILABLE


@dataclass
class ImageRecognitionResult:
    """Outcome of recognizing one image.

    A failed result never carries products.
    """

    image_id: str
    file_name: str
    products: list[ProductRecord] = field(default_factory=list)
    error: str = ""

    def __post_init__(self) -> None:
        if self.error and self.products:
            raise ValueError(
                f"result for {self.image_id} has both an error and products"
            )

    @property
    def failed(self) -> bool:
        return bool(self.error)

    @property
    def ok(self) -> bool:
        return not self.error

    def to_dict(self) -> dict[str, Any]:
        return {
            "imageId": self.image_id,
            "fileName": self.file_name,
            "products": [p.to_dict() for p in self.products],
            "error": self.error,
        }


@dataclass
class RecognitionSession:
    images: list[UploadedImage] = field(default_factory=list)
    results: list[ImageRecognitionResult] = field(default_factory=list)
    global_error: str = ""

    def replace_images(self, images: list[UploadedImage]) -> None:
        """Swap in a new upload batch; results of the old batch are dropped."""
        self.images = list(images)
        self.results = []

    def replace_results(self, results: list[ImageRecognitionResult]) -> None:
        self.results = list(results)

    def result_for(self, image_id: str) -> ImageRecognitionResult | None:
        for result in self.results:
            if result.image_id == image_id:
                return result
        return None


@dataclass(frozen=True)
class SelectedProductRef:
    """Points at one product inside ``RecognitionSession.results``."""

    image_id: str
    product_index: int

    def resolve(self, session: RecognitionSession) -> ProductRecord | None:
        result = session.result_for(self.image_id)
        if result is None:
            return None
        if not 0 <= self.product_index < len(result.products):
            return None
        return result.products[self.product_index]


@dataclass
class EnrichmentResult:
    text: str = ""
    error: str = ""
