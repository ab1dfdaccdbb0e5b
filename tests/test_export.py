"""Tests for CSV export."""

import pytest

from shelfscan.errors import NoDataError
from shelfscan.export import CSV_HEADER, CsvExporter
from shelfscan.models import ImageRecognitionResult, ProductRecord

HEADER_LINE = "ImageId,FileName,ProductName,Price,Brand,Barcode,Weight,Error"


def test_no_results_raises():
    with pytest.raises(NoDataError, match="No recognition results"):
        CsvExporter().export([])


def test_header():
    doc = CsvExporter().export([ImageRecognitionResult(image_id="a", file_name="a.jpg")])
    assert ",".join(CSV_HEADER) == HEADER_LINE
    assert doc.content.startswith(HEADER_LINE + "\n")
    assert doc.filename == "product_recognition_results.csv"
    assert doc.media_type == "text/csv;charset=utf-8"


def test_row_rules():
    results = [
        ImageRecognitionResult(
            image_id="a", file_name="a.jpg",
            products=[
                ProductRecord(product_name="Milk", price="$3", brand="Dairy",
                              barcode="123", weight="1 L"),
                ProductRecord(product_name="Bread"),
            ],
        ),
        ImageRecognitionResult(image_id="b", file_name="b.jpg", error="Failed. Max retries reached."),
        ImageRecognitionResult(image_id="c", file_name="c.jpg"),
    ]
    lines = CsvExporter().export(results).content.split("\n")
    assert lines == [
        HEADER_LINE,
        "a,a.jpg,Milk,$3,Dairy,123,1 L,",
        "a,a.jpg,Bread,N/A,N/A,N/A,N/A,",
        "b,b.jpg,,,,,,Failed. Max retries reached.",
        "c,c.jpg,No products identified,N/A,N/A,N/A,N/A,",
        "",
    ]


def test_escaping():
    results = [
        ImageRecognitionResult(
            image_id="a", file_name="shelf, left.jpg",
            products=[ProductRecord(product_name='Widget, "Pro"', brand="line\nbreak")],
        )
    ]
    row = CsvExporter().export(results).content.split("\n", 1)[1]
    assert row.startswith('a,"shelf, left.jpg","Widget, ""Pro""",N/A,"line\nbreak",')


def test_custom_filename_and_write(tmp_path):
    doc = CsvExporter(filename="out.csv").export(
        [ImageRecognitionResult(image_id="a", file_name="a.jpg")]
    )
    path = doc.write(tmp_path)
    assert path == tmp_path / "out.csv"
    assert path.read_text(encoding="utf-8") == doc.content

    explicit = doc.write(tmp_path / "other.csv")
    assert explicit.read_text(encoding="utf-8") == doc.content
