"""Observable session state for the presentation layer.

``SessionController`` is the only writer of its ``RecognitionSession``. A UI
subscribes with a callback and re-renders from ``controller.session`` (and
the selection / enrichment properties) on every notification.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from .enrich import EnrichmentKind, ProductEnrichmentService
from .errors import (
    EnrichmentError,
    NoDataError,
    QuotaExceeded,
    RunCancelled,
    RunInProgress,
)
from .export import CsvDocument, CsvExporter
from .ingest import ImageIngestor, IngestReport, RawFile
from .models import (
    EnrichmentResult,
    ProductRecord,
    RecognitionSession,
    SelectedProductRef,
)
from .pipeline import PipelineOrchestrator

logger = logging.getLogger(__name__)

# Notification topics
IMAGES = "images"
RUNNING = "running"
RESULTS = "results"
SELECTION = "selection"
ENRICHMENT = "enrichment"
ERROR = "error"

Listener = Callable[[str, "SessionController"], None]


class SessionController:
    def __init__(
        self,
        ingestor: ImageIngestor,
        orchestrator: PipelineOrchestrator,
        enrichment: ProductEnrichmentService,
        exporter: CsvExporter | None = None,
    ) -> None:
        self._ingestor = ingestor
        self._orchestrator = orchestrator
        self._enrichment = enrichment
        self._exporter = exporter or CsvExporter()

        self.session = RecognitionSession()
        self.ingestion_errors: list[str] = []
        self.selection: SelectedProductRef | None = None
        self.enrichment_result = EnrichmentResult()
        self.enrichment_pending = False

        self._listeners: list[Listener] = []
        self._run_task: asyncio.Task | None = None
        self._cancel_event: asyncio.Event | None = None
        # Bumped whenever an enrichment response would become stale.
        self._enrichment_generation = 0

    # -- observation -----------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, topic: str) -> None:
        for listener in list(self._listeners):
            listener(topic, self)

    def _set_global_error(self, message: str) -> None:
        self.session.global_error = message
        self._emit(ERROR)

    # -- action availability ---------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._run_task is not None and not self._run_task.done()

    @property
    def can_recognize(self) -> bool:
        return not self.is_running and bool(self.session.images)

    @property
    def can_export(self) -> bool:
        return bool(self.session.results)

    # -- upload ----------------------------------------------------------

    async def load_images(self, files: list[RawFile]) -> IngestReport:
        """Replace the current batch with ``files``.

        Raises:
            QuotaExceeded: If the batch is too large; the current images,
                results and selection are left untouched.
            RunInProgress: If a recognition run is active.
        """
        if self.is_running:
            raise RunInProgress()
        try:
            self._ingestor.check_quota(files)
        except QuotaExceeded as e:
            self._set_global_error(str(e))
            raise

        report = await self._ingestor.ingest(files)
        self.session.replace_images(report.images)
        self.ingestion_errors = [str(e) for e in report.errors]
        self.session.global_error = "; ".join(self.ingestion_errors)
        self._clear_selection()
        self._emit(IMAGES)
        return report

    # -- recognition -----------------------------------------------------

    async def recognize(self) -> RecognitionSession:
        """Run the pipeline over the loaded images.

        Raises:
            RunInProgress: If a run is already active.
            RunCancelled: If ``cancel()`` was called during the run.
        """
        if self.is_running:
            raise RunInProgress()

        self._clear_selection()
        self._cancel_event = asyncio.Event()
        self._run_task = asyncio.create_task(
            self._orchestrator.run(self.session, self._cancel_event)
        )
        self._emit(RUNNING)
        try:
            await self._run_task
        except RunCancelled:
            self._emit(RUNNING)
            raise
        finally:
            self._cancel_event = None

        self._clear_selection()
        self._emit(RUNNING)
        if self.session.global_error:
            self._emit(ERROR)
        self._emit(RESULTS)
        return self.session

    def cancel(self) -> bool:
        """Cancel the in-flight run; returns False when nothing is running."""
        if not self.is_running or self._cancel_event is None:
            return False
        logger.info("Cancelling recognition run")
        self._cancel_event.set()
        return True

    # -- selection & enrichment ------------------------------------------

    def select_product(self, image_id: str, product_index: int) -> ProductRecord:
        """Select a product of the current results.

        Raises:
            RunInProgress: If a run is active; its results replace the
                current ones.
            IndexError: If there is no such product.
        """
        if self.is_running:
            raise RunInProgress()
        ref = SelectedProductRef(image_id=image_id, product_index=product_index)
        product = ref.resolve(self.session)
        if product is None:
            raise IndexError(
                f"no product {product_index} for image {image_id}"
            )
        self._clear_selection(emit=False)
        self.selection = ref
        self._emit(SELECTION)
        return product

    @property
    def selected_product(self) -> ProductRecord | None:
        if self.selection is None:
            return None
        return self.selection.resolve(self.session)

    async def enrich(self, kind: EnrichmentKind) -> EnrichmentResult:
        """Run one enrichment call for the selected product.

        The previous result is cleared before the call starts; a response
        that arrives after a newer request (or a new recognition run) is
        dropped.
        """
        product = self.selected_product
        if product is None:
            raise LookupError("no product selected")

        self._enrichment_generation += 1
        generation = self._enrichment_generation
        self.enrichment_result = EnrichmentResult()
        self.enrichment_pending = True
        self._emit(ENRICHMENT)

        try:
            text = await self._enrichment.enrich(product, kind)
            outcome = EnrichmentResult(text=text)
        except EnrichmentError as e:
            logger.warning("Enrichment failed: %s", e)
            outcome = EnrichmentResult(error=str(e))

        if generation != self._enrichment_generation:
            logger.debug("Dropping stale enrichment response")
            return outcome

        self.enrichment_result = outcome
        self.enrichment_pending = False
        self._emit(ENRICHMENT)
        return outcome

    def _clear_selection(self, emit: bool = True) -> None:
        self.selection = None
        self.enrichment_result = EnrichmentResult()
        self.enrichment_pending = False
        self._enrichment_generation += 1
        if emit:
            self._emit(SELECTION)

    # -- export ----------------------------------------------------------

    def export_csv(self) -> CsvDocument:
        """Serialize the current results.

        Raises:
            NoDataError: If there are no results.
        """
        try:
            document = self._exporter.export(self.session.results)
        except NoDataError as e:
            self._set_global_error(str(e))
            raise
        self.session.global_error = ""
        return document
