"""CLI entry point: recognize products in images, export CSV, enrich one product."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

from .config import load_config, validate_config
from .enrich import EnrichmentKind, ProductEnrichmentService
from .errors import ShelfScanError
from .export import CsvExporter
from .ingest import ImageIngestor, files_from_paths
from .pipeline import PipelineOrchestrator
from .retry import ImageTask, RetryController, RetryPolicy
from .session import SessionController
from .vision import create_client


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="shelfscan",
        description="Recognize products (name, price, brand, barcode, weight) in photos",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="path to a TOML config file",
    )
    parser.add_argument(
        "--verbose", "-v", action="count", default=0,
        help="log progress (-v) or raw provider responses (-vv)",
    )

    sub = parser.add_subparsers(dest="command")

    rec_parser = sub.add_parser("recognize", help="recognize products in images")
    rec_parser.add_argument("images", nargs="+", help="image files")
    rec_parser.add_argument("--json", action="store_true", help="print results as JSON")
    rec_parser.add_argument(
        "--csv", type=str, default=None, metavar="FILE",
        help="write results to a CSV file (or into a directory)",
    )
    rec_parser.add_argument(
        "--concurrency", type=int, default=None,
        help="images recognized in parallel (default from config)",
    )
    rec_parser.add_argument(
        "--describe", type=str, default=None, metavar="IMG:PROD",
        help="describe product PROD of image IMG (0-based)",
    )
    rec_parser.add_argument(
        "--suggest-usage", type=str, default=None, metavar="IMG:PROD",
        help="suggest usage for product PROD of image IMG (0-based)",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    load_dotenv()

    try:
        config = load_config(args.config)
        if args.concurrency is not None:
            config.recognition.concurrency = args.concurrency
            validate_config(config)
        controller = build_controller(config)
    except ShelfScanError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    match args.command:
        case "recognize":
            ok = asyncio.run(_cmd_recognize(controller, args))
            if not ok:
                sys.exit(1)


def build_controller(config, on_progress=None) -> SessionController:
    """Wire the pipeline from configuration. Fails fast without an API key."""
    client = create_client(config)
    retry = RetryController(client, RetryPolicy.from_config(config))
    orchestrator = PipelineOrchestrator(
        retry,
        concurrency=config.recognition.concurrency,
        on_progress=on_progress or _print_progress,
    )
    return SessionController(
        ingestor=ImageIngestor(
            max_files=config.ingest.max_files,
            max_file_bytes=config.ingest.max_file_bytes,
        ),
        orchestrator=orchestrator,
        enrichment=ProductEnrichmentService(client, timeout=config.recognition.timeout),
        exporter=CsvExporter(filename=config.export.filename),
    )


def _print_progress(task: ImageTask) -> None:
    print(f"  [{task.index + 1}] {task.image.file_name}: {task.label()}", file=sys.stderr)


def _parse_ref(value: str) -> tuple[int, int]:
    try:
        img, prod = value.split(":", 1)
        return int(img), int(prod)
    except ValueError:
        raise ValueError(f"expected IMG:PROD, got {value!r}") from None


async def _cmd_recognize(controller: SessionController, args) -> bool:
    try:
        report = await controller.load_images(files_from_paths(args.images))
    except ShelfScanError as e:
        print(f"Error: {e}", file=sys.stderr)
        return False

    for err in report.errors:
        print(f"Skipped: {err}", file=sys.stderr)
    if not controller.can_recognize:
        print("Error: no readable images to recognize.", file=sys.stderr)
        return False

    print(f"🔍 Recognizing {len(report.images)} image(s)...", file=sys.stderr)
    await controller.recognize()
    session = controller.session
    if session.global_error and not session.results:
        print(f"Error: {session.global_error}", file=sys.stderr)
        return False

    if args.json:
        print(json.dumps([r.to_dict() for r in session.results], ensure_ascii=False, indent=2))
    else:
        _print_results(controller)

    if args.csv:
        try:
            document = controller.export_csv()
        except ShelfScanError as e:
            print(f"Error: {e}", file=sys.stderr)
            return False
        path = document.write(args.csv)
        print(f"📄 CSV saved: {path}", file=sys.stderr)

    for option, kind in (
        (args.describe, EnrichmentKind.DESCRIBE),
        (args.suggest_usage, EnrichmentKind.SUGGEST_USAGE),
    ):
        if option is None:
            continue
        if not await _enrich(controller, option, kind):
            return False

    return True


def _print_results(controller: SessionController) -> None:
    for i, result in enumerate(controller.session.results):
        print(f"\n[{i}] {result.file_name} (ID: {result.image_id})")
        if result.error:
            print(f"  ✗ {result.error}")
        elif not result.products:
            print("  No distinct products identified.")
        for j, p in enumerate(result.products):
            print(
                f"  {j}. {p.product_name}: {p.price} "
                f"(Brand: {p.brand}, Barcode: {p.barcode}, Weight: {p.weight})"
            )


async def _enrich(controller: SessionController, option: str, kind: EnrichmentKind) -> bool:
    try:
        img, prod = _parse_ref(option)
        image_id = controller.session.results[img].image_id
        product = controller.select_product(image_id, prod)
    except (ValueError, IndexError) as e:
        print(f"Error: cannot select product {option}: {e}", file=sys.stderr)
        return False

    print(f"\n✨ {kind.value.replace('_', ' ')}: {product.product_name}", file=sys.stderr)
    outcome = await controller.enrich(kind)
    if outcome.error:
        print(f"Error: {outcome.error}", file=sys.stderr)
        return False
    print(outcome.text)
    return True


if __name__ == "__main__":
    main()
