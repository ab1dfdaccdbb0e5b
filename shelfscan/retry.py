"""Bounded per-image retry around one client call plus one parse."""

from __future__ import annotations

import asyncio
import enum
import logging
import random
from dataclasses import dataclass, field
from typing import Callable

from .errors import ClientError, ClientTimeout, RecognitionError, RetryExhausted
from .models import ImageRecognitionResult, ProductRecord, UploadedImage
from .parser import ResponseParser
from .vision import RecognitionClient

logger = logging.getLogger(__name__)


class TaskState(enum.Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    jitter: float = 0.25
    timeout: float = 30.0

    @classmethod
    def from_config(cls, config) -> RetryPolicy:
        rc = config.recognition
        return cls(
            max_attempts=rc.max_attempts,
            base_delay=rc.backoff_base,
            max_delay=rc.backoff_max,
            jitter=rc.jitter,
            timeout=rc.timeout,
        )

    def delay_for(self, attempt: int, retry_after: float | None = None) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based).

        A provider Retry-After wins over the exponential schedule, capped at
        ``max_delay``.
        """
        if retry_after is not None:
            return min(retry_after, self.max_delay)
        base = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        return base + random.uniform(0.0, self.jitter)


@dataclass
class ImageTask:
    """Recognition state of one image: Pending -> Attempting(n) -> Succeeded | Failed."""

    index: int
    image: UploadedImage
    state: TaskState = TaskState.PENDING
    attempts: int = 0
    products: list[ProductRecord] = field(default_factory=list)
    last_error: RecognitionError | None = None
    terminal_error: str = ""

    def start_attempt(self) -> None:
        if self.state not in (TaskState.PENDING, TaskState.ATTEMPTING):
            raise RuntimeError(f"cannot start an attempt from {self.state.value}")
        self.state = TaskState.ATTEMPTING
        self.attempts += 1

    def record_failure(self, error: RecognitionError) -> None:
        self.last_error = error

    def succeed(self, products: list[ProductRecord]) -> None:
        self.state = TaskState.SUCCEEDED
        self.products = list(products)
        self.last_error = None

    def fail(self) -> None:
        if self.last_error is None:
            raise RuntimeError("cannot fail a task without a recorded error")
        self.state = TaskState.FAILED
        self.products = []
        self.terminal_error = str(RetryExhausted(self.attempts, self.last_error))

    @property
    def done(self) -> bool:
        return self.state in (TaskState.SUCCEEDED, TaskState.FAILED)

    def label(self) -> str:
        if self.state is TaskState.ATTEMPTING:
            return f"Attempting({self.attempts})"
        return self.state.value.capitalize()

    def to_result(self) -> ImageRecognitionResult:
        if not self.done:
            raise RuntimeError(f"task {self.index} is still {self.label()}")
        return ImageRecognitionResult(
            image_id=self.image.id,
            file_name=self.image.file_name,
            products=list(self.products),
            error=self.terminal_error,
        )


ProgressCallback = Callable[[ImageTask], None]


class RetryController:
    """Runs one image through up to ``policy.max_attempts`` attempts."""

    def __init__(
        self,
        client: RecognitionClient,
        policy: RetryPolicy | None = None,
        parser: ResponseParser | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self._client = client
        self._policy = policy or RetryPolicy()
        self._parser = parser or ResponseParser(
            client.locate_content, client.describe_block
        )
        self._on_progress = on_progress

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def run(
        self,
        image: UploadedImage,
        index: int = 0,
        cancel_event: asyncio.Event | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ImageTask:
        """Drive one image to Succeeded or Failed.

        Raises:
            asyncio.CancelledError: If ``cancel_event`` is set before an
                attempt or during a retry delay.
        """
        notify = on_progress or self._on_progress
        task = ImageTask(index=index, image=image)

        while True:
            _check_cancelled(cancel_event)
            task.start_attempt()
            _notify(notify, task)

            try:
                raw = await self._call_client(image, cancel_event)
                logger.debug("Raw AI response for %s: %.2000s", image.id, raw)
                products = self._parser.parse(raw)
            except RecognitionError as e:
                task.record_failure(e)
                logger.warning(
                    "%s (%s) attempt %d/%d failed: %s",
                    image.file_name, image.id, task.attempts,
                    self._policy.max_attempts, e,
                )
            else:
                task.succeed(products)
                logger.info(
                    "%s (%s): %d product(s) after %d attempt(s)",
                    image.file_name, image.id, len(products), task.attempts,
                )
                _notify(notify, task)
                return task

            if task.attempts >= self._policy.max_attempts or not task.last_error.retryable:
                task.fail()
                logger.error("%s (%s): %s", image.file_name, image.id, task.terminal_error)
                _notify(notify, task)
                return task

            retry_after = (
                task.last_error.retry_after
                if isinstance(task.last_error, ClientError)
                else None
            )
            delay = self._policy.delay_for(task.attempts, retry_after)
            _check_cancelled(cancel_event)
            await _interruptible_sleep(delay, cancel_event)

    async def _call_client(
        self, image: UploadedImage, cancel_event: asyncio.Event | None
    ) -> str:
        """One client call bounded by the policy timeout and the cancel event."""
        timeout = self._policy.timeout
        if cancel_event is None:
            try:
                return await asyncio.wait_for(
                    self._client.recognize(image), timeout=timeout
                )
            except asyncio.TimeoutError as e:
                raise ClientTimeout(timeout) from e

        call = asyncio.ensure_future(self._client.recognize(image))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {call, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
            if not call.done():
                call.cancel()
        if call in done:
            return call.result()
        if waiter in done:
            raise asyncio.CancelledError()
        raise ClientTimeout(timeout)


def _notify(callback: ProgressCallback | None, task: ImageTask) -> None:
    if callback is not None:
        callback(task)


def _check_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise asyncio.CancelledError()


async def _interruptible_sleep(
    delay: float, cancel_event: asyncio.Event | None
) -> None:
    if cancel_event is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return
    raise asyncio.CancelledError()
