"""Product recognition from photos via a vision+text generation service."""

from .config import AppConfig, load_config
from .enrich import EnrichmentKind, ProductEnrichmentService
from .export import CsvDocument, CsvExporter
from .ingest import ImageIngestor, IngestReport, RawFile
from .models import (
    NOT_AVAILABLE,
    EnrichmentResult,
    ImageRecognitionResult,
    ProductRecord,
    RecognitionSession,
    SelectedProductRef,
    UploadedImage,
)
from .parser import ResponseParser
from .pipeline import PipelineOrchestrator
from .retry import ImageTask, RetryController, RetryPolicy, TaskState
from .session import SessionController
from .vision import RecognitionClient, create_client

__all__ = [
    "UploadedImage",
    "ProductRecord",
    "ImageRecognitionResult",
    "RecognitionSession",
    "SelectedProductRef",
    "EnrichmentResult",
    "NOT_AVAILABLE",
    "RawFile",
    "IngestReport",
    "ImageIngestor",
    "RecognitionClient",
    "create_client",
    "ResponseParser",
    "RetryPolicy",
    "RetryController",
    "ImageTask",
    "TaskState",
    "PipelineOrchestrator",
    "EnrichmentKind",
    "ProductEnrichmentService",
    "CsvExporter",
    "CsvDocument",
    "SessionController",
    "AppConfig",
    "load_config",
]
