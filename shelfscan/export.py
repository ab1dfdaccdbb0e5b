"""CSV serialization of recognition results."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from pathlib import Path

from .config import DEFAULT_EXPORT_FILENAME
from .errors import NoDataError
from .models import NOT_AVAILABLE, ImageRecognitionResult

CSV_HEADER = [
    "ImageId",
    "FileName",
    "ProductName",
    "Price",
    "Brand",
    "Barcode",
    "Weight",
    "Error",
]

NO_PRODUCTS = "No products identified"


@dataclass(frozen=True)
class CsvDocument:
    filename: str
    content: str
    media_type: str = "text/csv;charset=utf-8"

    def write(self, path: str | Path | None = None) -> Path:
        """Write the document; ``path`` may be a directory or a file path."""
        target = Path(path) if path is not None else Path(self.filename)
        if target.is_dir():
            target = target / self.filename
        with open(target, "w", encoding="utf-8", newline="") as f:
            f.write(self.content)
        return target


class CsvExporter:
    def __init__(self, filename: str = DEFAULT_EXPORT_FILENAME) -> None:
        self._filename = filename

    def export(self, results: list[ImageRecognitionResult]) -> CsvDocument:
        """Serialize ``results`` in order.

        Raises:
            NoDataError: If ``results`` is empty.
        """
        if not results:
            raise NoDataError()

        buf = io.StringIO()
        writer = csv.writer(buf, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for result in results:
            writer.writerows(self.rows_for(result))
        return CsvDocument(filename=self._filename, content=buf.getvalue())

    @staticmethod
    def rows_for(result: ImageRecognitionResult) -> list[list]:
        prefix = [result.image_id, result.file_name]
        if result.error:
            return [prefix + ["", "", "", "", "", result.error]]
        if result.products:
            return [
                prefix
                + [p.product_name, p.price, p.brand, p.barcode, p.weight, ""]
                for p in result.products
            ]
        return [prefix + [NO_PRODUCTS] + [NOT_AVAILABLE] * 4 + [""]]
