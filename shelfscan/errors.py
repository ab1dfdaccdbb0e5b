"""Error taxonomy for the recognition pipeline."""

from __future__ import annotations

# Client errors with these statuses will not succeed on a second try.
_PERMANENT_STATUSES = frozenset({400, 401, 403, 404})


class ShelfScanError(Exception):
    """Base class for all shelfscan errors."""


class ConfigError(ShelfScanError, ValueError):
    """Missing or invalid configuration, raised at startup."""


class IngestionError(ShelfScanError):
    """A single uploaded file could not be turned into an image."""

    def __init__(self, file_name: str, reason: str) -> None:
        super().__init__(f"Failed to read file: {file_name} ({reason})")
        self.file_name = file_name
        self.reason = reason


class QuotaExceeded(ShelfScanError):
    """Upload batch is larger than the configured maximum."""

    def __init__(self, count: int, limit: int) -> None:
        super().__init__(
            f"You can only upload a maximum of {limit} files at once. "
            f"Please select fewer files. ({count} selected)"
        )
        self.count = count
        self.limit = limit


class RecognitionError(ShelfScanError):
    """One failed recognition attempt for one image."""

    retryable = True


class ClientError(RecognitionError):
    """Network or HTTP failure talking to the provider."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(f"Network/Response error: {message}")
        self.status = status
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status not in _PERMANENT_STATUSES


class ClientTimeout(ClientError):
    """The provider did not answer within the per-call timeout."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"request timed out after {timeout:g}s")
        self.timeout = timeout


class EnvelopeParseError(RecognitionError):
    """The outer response envelope is empty or not valid JSON."""

    def __init__(self, message: str, truncated: bool = False) -> None:
        super().__init__(message)
        self.truncated = truncated


class EnvelopeShapeError(RecognitionError):
    """The envelope parsed but has no generated content where expected."""


class ContentParseError(RecognitionError):
    """The generated content is not valid JSON.

    ``truncated`` is set when the parser ran out of input, which usually
    means the generation was cut off rather than malformed.
    """

    def __init__(self, message: str, truncated: bool = False) -> None:
        super().__init__(message)
        self.truncated = truncated


class SchemaError(RecognitionError):
    """The generated content parsed but is not an array of products."""


class RetryExhausted(ShelfScanError):
    """Terminal failure of an image after its last attempt."""

    def __init__(self, attempts: int, last_error: RecognitionError) -> None:
        self.attempts = attempts
        self.last_error = last_error
        if last_error.retryable:
            suffix = (
                f"Max retries reached after {attempts} attempt(s). "
                "Please try again later."
            )
        else:
            suffix = "This error is permanent; check the configuration or the image."
        super().__init__(f"{_sentence(str(last_error))} {suffix}")


class EmptyBatchError(ShelfScanError):
    """Recognition was requested with no images loaded."""

    def __init__(self) -> None:
        super().__init__(
            "Please upload one or more images before attempting to recognize products."
        )


class RunInProgress(ShelfScanError):
    """A recognition run is already active for this session."""

    def __init__(self) -> None:
        super().__init__("A recognition run is already in progress.")


class RunCancelled(ShelfScanError):
    """The in-flight recognition run was cancelled; nothing was published."""

    def __init__(self) -> None:
        super().__init__("Recognition run was cancelled.")


class EnrichmentError(ShelfScanError):
    """A describe / suggest-usage call failed."""


class NoDataError(ShelfScanError):
    """Export was requested with no recognition results."""

    def __init__(self) -> None:
        super().__init__("No recognition results to export.")


def _sentence(text: str) -> str:
    text = text.strip()
    if text and text[-1] not in ".!?":
        text += "."
    return text
