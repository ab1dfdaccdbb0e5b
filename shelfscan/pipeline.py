"""Run the retry controller over a whole upload batch."""

from __future__ import annotations

import asyncio
import logging

from .errors import EmptyBatchError, RunCancelled
from .models import ImageRecognitionResult, RecognitionSession
from .retry import ImageTask, ProgressCallback, RetryController

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """Produce exactly one result per image, in submission order.

    Images are processed by at most ``concurrency`` workers (1 means strictly
    sequential). Each worker writes into the slot of its source index and the
    session's results are replaced only once every slot is filled.
    """

    def __init__(
        self,
        controller: RetryController,
        concurrency: int = 1,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._controller = controller
        self._concurrency = concurrency
        self._on_progress = on_progress

    async def run(
        self,
        session: RecognitionSession,
        cancel_event: asyncio.Event | None = None,
    ) -> RecognitionSession:
        """Recognize every image of ``session`` and publish the results.

        With no images, ``session.global_error`` is set and no call is made.

        Raises:
            RunCancelled: If ``cancel_event`` fires before the batch
                completes. ``session.results`` is left as it was.
        """
        images = list(session.images)
        session.global_error = ""
        if not images:
            session.global_error = str(EmptyBatchError())
            session.replace_results([])
            return session

        logger.info(
            "Recognizing %d image(s) with concurrency %d",
            len(images), self._concurrency,
        )
        try:
            results = await self.recognize_all(images, cancel_event)
        except asyncio.CancelledError:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Recognition run cancelled; results discarded")
                raise RunCancelled() from None
            raise

        session.replace_results(results)
        failed = sum(1 for r in results if r.failed)
        logger.info(
            "Recognition finished: %d succeeded, %d failed",
            len(results) - failed, failed,
        )
        return session

    async def recognize_all(
        self, images, cancel_event: asyncio.Event | None = None
    ) -> list[ImageRecognitionResult]:
        slots: list[ImageTask | None] = [None] * len(images)
        semaphore = asyncio.Semaphore(self._concurrency)

        async def work(index: int) -> None:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    raise asyncio.CancelledError()
                slots[index] = await self._controller.run(
                    images[index],
                    index=index,
                    cancel_event=cancel_event,
                    on_progress=self._on_progress,
                )

        tasks = [asyncio.create_task(work(i)) for i in range(len(images))]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return [task.to_result() for task in slots]
