"""Turn raw uploaded files into immutable ``UploadedImage`` records."""

from __future__ import annotations

import asyncio
import base64
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Union

from .errors import IngestionError, QuotaExceeded
from .models import UploadedImage, new_image_id

logger = logging.getLogger(__name__)

FileSource = Union[bytes, str, Path, IO[bytes]]

# (offset, magic bytes, mime type)
_SIGNATURES: list[tuple[int, bytes, str]] = [
    (0, b"\xff\xd8\xff", "image/jpeg"),
    (0, b"\x89PNG\r\n\x1a\n", "image/png"),
    (0, b"GIF87a", "image/gif"),
    (0, b"GIF89a", "image/gif"),
    (0, b"BM", "image/bmp"),
    (0, b"II*\x00", "image/tiff"),
    (0, b"MM\x00*", "image/tiff"),
]

_FTYP_BRANDS: dict[bytes, str] = {
    b"heic": "image/heic",
    b"heix": "image/heic",
    b"mif1": "image/heif",
    b"msf1": "image/heif",
    b"avif": "image/avif",
}


@dataclass
class RawFile:
    """A file as handed over by the upload surface."""

    file_name: str
    source: FileSource
    declared_size: int | None = None


@dataclass
class IngestReport:
    images: list[UploadedImage] = field(default_factory=list)
    errors: list[IngestionError] = field(default_factory=list)


def sniff_mime_type(data: bytes, file_name: str = "") -> str | None:
    """Guess the MIME type from magic bytes, then from the file name."""
    for offset, magic, mime in _SIGNATURES:
        if data[offset:offset + len(magic)] == magic:
            return mime
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[4:8] == b"ftyp" and data[8:12] in _FTYP_BRANDS:
        return _FTYP_BRANDS[data[8:12]]
    guessed, _ = mimetypes.guess_type(file_name)
    return guessed


class ImageIngestor:
    """Decode a batch of uploads, preserving input order."""

    def __init__(
        self, max_files: int = 1000, max_file_bytes: int = 20 * 1024 * 1024
    ) -> None:
        self._max_files = max_files
        self._max_file_bytes = max_file_bytes

    @property
    def max_files(self) -> int:
        return self._max_files

    def check_quota(self, files: list[RawFile]) -> None:
        if len(files) > self._max_files:
            raise QuotaExceeded(len(files), self._max_files)

    async def ingest(self, files: list[RawFile]) -> IngestReport:
        """Decode all files concurrently into per-index slots.

        Raises:
            QuotaExceeded: If the batch is larger than ``max_files``. Nothing
                is read in that case.
        """
        self.check_quota(files)

        slots: list[UploadedImage | IngestionError | None] = [None] * len(files)

        async def fill(index: int, raw: RawFile) -> None:
            try:
                slots[index] = await asyncio.to_thread(self._decode, raw)
            except IngestionError as e:
                slots[index] = e

        await asyncio.gather(*(fill(i, f) for i, f in enumerate(files)))

        report = IngestReport()
        for slot in slots:
            if isinstance(slot, UploadedImage):
                report.images.append(slot)
            elif isinstance(slot, IngestionError):
                logger.warning("%s", slot)
                report.errors.append(slot)
        logger.info(
            "Ingested %d image(s), %d failed", len(report.images), len(report.errors)
        )
        return report

    def _decode(self, raw: RawFile) -> UploadedImage:
        data = _read_source(raw)
        if not data:
            raise IngestionError(raw.file_name, "file is empty")
        if len(data) > self._max_file_bytes:
            raise IngestionError(
                raw.file_name,
                f"file is {len(data)} bytes, limit is {self._max_file_bytes}",
            )
        if raw.declared_size is not None and raw.declared_size != len(data):
            logger.debug(
                "%s: declared size %d, read %d bytes",
                raw.file_name, raw.declared_size, len(data),
            )

        mime_type = sniff_mime_type(data, raw.file_name)
        if mime_type is None or not mime_type.startswith("image/"):
            raise IngestionError(
                raw.file_name, f"not an image (detected {mime_type or 'unknown'})"
            )

        return UploadedImage(
            id=new_image_id(),
            file_name=raw.file_name,
            mime_type=mime_type,
            encoded_payload=base64.b64encode(data).decode("ascii"),
        )


def _read_source(raw: RawFile) -> bytes:
    source = raw.source
    try:
        if isinstance(source, (bytes, bytearray)):
            return bytes(source)
        if isinstance(source, (str, Path)):
            return Path(source).read_bytes()
        return source.read()
    except (OSError, ValueError, AttributeError) as e:
        raise IngestionError(raw.file_name, str(e)) from e


def files_from_paths(paths: list[str]) -> list[RawFile]:
    """Wrap filesystem paths for ``ImageIngestor.ingest``."""
    files: list[RawFile] = []
    for path in paths:
        p = Path(path)
        try:
            size = p.stat().st_size
        except OSError:
            size = None
        files.append(RawFile(file_name=p.name, source=p, declared_size=size))
    return files
