"""Tests for the observable session controller."""

import asyncio

import pytest

from shelfscan.enrich import EnrichmentKind, ProductEnrichmentService
from shelfscan.errors import NoDataError, QuotaExceeded, RunCancelled, RunInProgress
from shelfscan.export import CsvExporter
from shelfscan.ingest import ImageIngestor, RawFile
from shelfscan.models import SelectedProductRef
from shelfscan.pipeline import PipelineOrchestrator
from shelfscan.retry import RetryController
from shelfscan.session import SessionController

JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 16
PRODUCTS = [{"productName": "Milk"}, {"productName": "Bread"}]


def _controller(client, policy, max_files=1000):
    return SessionController(
        ingestor=ImageIngestor(max_files=max_files),
        orchestrator=PipelineOrchestrator(RetryController(client, policy)),
        enrichment=ProductEnrichmentService(client, timeout=5.0),
        exporter=CsvExporter(),
    )


def _files(*names):
    return [RawFile(name, JPEG) for name in names]


@pytest.mark.asyncio
async def test_load_recognize_export(scripted_client, envelope, fast_policy):
    client = scripted_client(default=envelope(PRODUCTS))
    controller = _controller(client, fast_policy)
    events = []
    controller.subscribe(lambda topic, c: events.append(topic))

    assert not controller.can_recognize
    assert not controller.can_export
    await controller.load_images(_files("a.jpg", "b.jpg"))
    assert controller.can_recognize

    session = await controller.recognize()
    assert [r.file_name for r in session.results] == ["a.jpg", "b.jpg"]
    assert controller.can_export
    assert not controller.is_running
    assert "images" in events and "results" in events

    doc = controller.export_csv()
    assert len(doc.content.splitlines()) == 5


@pytest.mark.asyncio
async def test_quota_exceeded_keeps_previous_state(scripted_client, envelope, fast_policy):
    controller = _controller(scripted_client(default=envelope(PRODUCTS)), fast_policy, max_files=2)
    await controller.load_images(_files("a.jpg"))
    await controller.recognize()
    previous_images = list(controller.session.images)
    previous_results = list(controller.session.results)

    with pytest.raises(QuotaExceeded):
        await controller.load_images(_files("1.jpg", "2.jpg", "3.jpg"))

    assert controller.session.images == previous_images
    assert controller.session.results == previous_results
    assert "maximum of 2 files" in controller.session.global_error


@pytest.mark.asyncio
async def test_new_upload_replaces_batch(scripted_client, envelope, fast_policy):
    controller = _controller(scripted_client(default=envelope(PRODUCTS)), fast_policy)
    await controller.load_images(_files("a.jpg"))
    await controller.recognize()

    report = await controller.load_images(_files("b.jpg") + [RawFile("c.txt", b"text")])
    assert [i.file_name for i in controller.session.images] == ["b.jpg"]
    assert controller.session.results == []
    assert len(report.errors) == 1
    assert "c.txt" in controller.session.global_error


@pytest.mark.asyncio
async def test_recognize_without_images(scripted_client, fast_policy):
    client = scripted_client()
    controller = _controller(client, fast_policy)
    await controller.recognize()
    assert "upload one or more images" in controller.session.global_error
    assert client.calls == []


@pytest.mark.asyncio
async def test_export_without_results(scripted_client, fast_policy):
    controller = _controller(scripted_client(), fast_policy)
    with pytest.raises(NoDataError):
        controller.export_csv()
    assert controller.session.global_error == "No recognition results to export."


@pytest.mark.asyncio
async def test_second_run_rejected_while_running(scripted_client, envelope, fast_policy):
    client = scripted_client(default=envelope([]), delays={"a.jpg": 0.2})
    controller = _controller(client, fast_policy)
    await controller.load_images(_files("a.jpg"))

    first = asyncio.create_task(controller.recognize())
    await asyncio.sleep(0.02)
    assert controller.is_running
    assert not controller.can_recognize
    with pytest.raises(RunInProgress):
        await controller.recognize()
    with pytest.raises(RunInProgress):
        await controller.load_images(_files("b.jpg"))
    await first
    assert len(controller.session.results) == 1


@pytest.mark.asyncio
async def test_cancel_in_flight_run(scripted_client, envelope, fast_policy):
    client = scripted_client(default=envelope([]), delays={"a.jpg": 5})
    controller = _controller(client, fast_policy)
    await controller.load_images(_files("a.jpg", "b.jpg"))

    run = asyncio.create_task(controller.recognize())
    await asyncio.sleep(0.02)
    assert controller.cancel() is True
    with pytest.raises(RunCancelled):
        await asyncio.wait_for(run, timeout=1.0)
    assert controller.session.results == []
    assert not controller.is_running
    assert controller.cancel() is False


@pytest.mark.asyncio
async def test_select_and_enrich(scripted_client, envelope, fast_policy):
    client = scripted_client(default=envelope(PRODUCTS), text=envelope("Great bread."))
    controller = _controller(client, fast_policy)
    await controller.load_images(_files("a.jpg"))
    await controller.recognize()

    image_id = controller.session.results[0].image_id
    product = controller.select_product(image_id, 1)
    assert product.product_name == "Bread"
    assert controller.selected_product == product

    outcome = await controller.enrich(EnrichmentKind.DESCRIBE)
    assert outcome.text == "Great bread."
    assert controller.enrichment_result.text == "Great bread."
    assert not controller.enrichment_pending

    with pytest.raises(IndexError):
        controller.select_product(image_id, 5)


@pytest.mark.asyncio
async def test_enrichment_error_does_not_touch_session(scripted_client, envelope, fast_policy):
    client = scripted_client(default=envelope(PRODUCTS), text='{"candidates": []}')
    controller = _controller(client, fast_policy)
    await controller.load_images(_files("a.jpg"))
    await controller.recognize()
    results_before = list(controller.session.results)

    controller.select_product(controller.session.results[0].image_id, 0)
    outcome = await controller.enrich(EnrichmentKind.SUGGEST_USAGE)

    assert outcome.error
    assert controller.enrichment_result.error == outcome.error
    assert controller.session.results == results_before
    assert controller.session.global_error == ""


@pytest.mark.asyncio
async def test_new_enrichment_clears_previous_result(scripted_client, envelope, fast_policy):
    client = scripted_client(default=envelope(PRODUCTS), text=envelope("first"))
    controller = _controller(client, fast_policy)
    await controller.load_images(_files("a.jpg"))
    await controller.recognize()
    controller.select_product(controller.session.results[0].image_id, 0)
    await controller.enrich(EnrichmentKind.DESCRIBE)

    seen = []
    controller.subscribe(
        lambda topic, c: seen.append((c.enrichment_result.text, c.enrichment_pending))
        if topic == "enrichment" else None
    )
    client.text = envelope("second")
    await controller.enrich(EnrichmentKind.DESCRIBE)
    assert seen == [("", True), ("second", False)]


@pytest.mark.asyncio
async def test_slow_enrichment_is_not_shown_after_newer_request(scripted_client, envelope, fast_policy):
    release = asyncio.Event()

    async def gated(prompt):
        if "description" in prompt:
            await release.wait()
            return envelope("stale description")
        return envelope("usage ideas")

    client = scripted_client(default=envelope(PRODUCTS), text=gated)
    controller = _controller(client, fast_policy)
    await controller.load_images(_files("a.jpg"))
    await controller.recognize()
    controller.select_product(controller.session.results[0].image_id, 0)

    slow = asyncio.create_task(controller.enrich(EnrichmentKind.DESCRIBE))
    await asyncio.sleep(0.01)
    await controller.enrich(EnrichmentKind.SUGGEST_USAGE)
    release.set()
    await slow

    assert controller.enrichment_result.text == "usage ideas"


@pytest.mark.asyncio
async def test_rerun_clears_selection_and_enrichment(scripted_client, envelope, fast_policy):
    release = asyncio.Event()

    async def gated(prompt):
        await release.wait()
        return envelope("too late")

    client = scripted_client(default=envelope(PRODUCTS), text=envelope("described"))
    controller = _controller(client, fast_policy)
    await controller.load_images(_files("a.jpg"))
    await controller.recognize()
    controller.select_product(controller.session.results[0].image_id, 0)
    await controller.enrich(EnrichmentKind.DESCRIBE)
    assert controller.enrichment_result.text == "described"

    # a pending enrichment must not resurface after the re-run
    client.text = gated
    pending = asyncio.create_task(controller.enrich(EnrichmentKind.DESCRIBE))
    await asyncio.sleep(0.01)
    assert controller.enrichment_pending

    await controller.recognize()
    assert controller.selection is None
    assert controller.selected_product is None
    assert controller.enrichment_result.text == ""
    assert not controller.enrichment_pending

    release.set()
    await pending
    assert controller.enrichment_result.text == ""
    with pytest.raises(LookupError):
        await controller.enrich(EnrichmentKind.DESCRIBE)


@pytest.mark.asyncio
async def test_selection_is_rejected_during_run_and_cleared_by_new_results(
    scripted_client, envelope, fast_policy
):
    client = scripted_client(script={"a.jpg": [envelope([{"productName": "Milk"}])]})
    controller = _controller(client, fast_policy)
    await controller.load_images(_files("a.jpg"))
    await controller.recognize()
    image_id = controller.session.results[0].image_id
    controller.select_product(image_id, 0)

    client.default = envelope([{"productName": "Soap"}])
    client.delays = {"a.jpg": 0.2}
    run = asyncio.create_task(controller.recognize())
    await asyncio.sleep(0.02)
    assert controller.selection is None
    with pytest.raises(RunInProgress):
        controller.select_product(image_id, 0)

    await run
    assert controller.session.results[0].products[0].product_name == "Soap"
    assert controller.selection is None
    assert controller.selected_product is None


@pytest.mark.asyncio
async def test_results_replacement_clears_selection(scripted_client, envelope, fast_policy):
    client = scripted_client(default=envelope(PRODUCTS))
    controller = _controller(client, fast_policy)
    await controller.load_images(_files("a.jpg"))

    topics = []

    def select_while_running(topic, c):
        topics.append(topic)
        # old results are still visible while the run is in flight
        if topic == "running" and c.is_running and c.session.results:
            c.selection = SelectedProductRef(c.session.results[0].image_id, 0)

    await controller.recognize()
    controller.subscribe(select_while_running)
    await controller.recognize()

    assert controller.selection is None
    assert topics[-3:] == ["selection", "running", "results"]
