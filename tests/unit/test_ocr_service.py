"""Unit tests for the Tesseract recognition adapter.

Tests cover:
- Line grouping and confidence averaging from image_to_data output
- PDF first-page rendering
- Error handling for unsupported input and engine failures
"""

import io
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import pytesseract
from PIL import Image

from invoice_ocr.ocr.service import RecognitionResult, TesseractRecognizer
from invoice_ocr.shared.config import Settings
from invoice_ocr.shared.errors import RecognitionError, UnsupportedFormatError


@pytest.fixture
def recognizer() -> TesseractRecognizer:
    return TesseractRecognizer(Settings())


@pytest.fixture
def png_bytes() -> bytes:
    """Create a simple test image as bytes."""
    img = Image.new("RGB", (200, 50), color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def _tesseract_data(words: list[tuple[str, float, int]]) -> dict[str, list[Any]]:
    """Build image_to_data DICT output from (word, conf, line_num) tuples."""
    return {
        "text": [w for w, _, _ in words],
        "conf": [c for _, c, _ in words],
        "block_num": [1 for _ in words],
        "par_num": [1 for _ in words],
        "line_num": [line for _, _, line in words],
    }


@patch("invoice_ocr.ocr.service.pytesseract.image_to_data")
def test_recognize_groups_lines_and_averages_confidence(
    mock_data: MagicMock, recognizer: TesseractRecognizer, png_bytes: bytes
) -> None:
    mock_data.return_value = _tesseract_data(
        [
            ("Faktura", 90.0, 1),
            ("VAT", 80.0, 1),
            ("", -1, 1),
            ("FV/2024/001", 70.0, 2),
        ]
    )

    result = recognizer.recognize(png_bytes)

    assert isinstance(result, RecognitionResult)
    assert result.text == "Faktura VAT\nFV/2024/001"
    assert result.confidence == 80.0
    assert result.word_count == 3


@patch("invoice_ocr.ocr.service.pytesseract.image_to_data")
def test_recognize_passes_language_and_config(
    mock_data: MagicMock, recognizer: TesseractRecognizer, png_bytes: bytes
) -> None:
    mock_data.return_value = _tesseract_data([("Razem", 95.0, 1)])

    recognizer.recognize(png_bytes)

    kwargs = mock_data.call_args.kwargs
    assert kwargs["lang"] == "pol+eng"
    assert kwargs["config"] == "--oem 1 --psm 3"


@patch("invoice_ocr.ocr.service.pytesseract.image_to_data")
def test_recognize_without_text_raises(
    mock_data: MagicMock, recognizer: TesseractRecognizer, png_bytes: bytes
) -> None:
    mock_data.return_value = _tesseract_data([("", -1, 1), ("  ", -1, 1)])

    with pytest.raises(RecognitionError, match="No text detected"):
        recognizer.recognize(png_bytes)


@patch("invoice_ocr.ocr.service.pytesseract.image_to_data")
def test_engine_failure_raises_recognition_error(
    mock_data: MagicMock, recognizer: TesseractRecognizer, png_bytes: bytes
) -> None:
    mock_data.side_effect = pytesseract.TesseractError(1, "engine crashed")

    with pytest.raises(RecognitionError, match="OCR processing failed"):
        recognizer.recognize(png_bytes)


def test_non_image_input_is_unsupported(recognizer: TesseractRecognizer) -> None:
    with pytest.raises(UnsupportedFormatError):
        recognizer.recognize(b"This is not an image")


def test_empty_input_is_unsupported(recognizer: TesseractRecognizer) -> None:
    with pytest.raises(UnsupportedFormatError):
        recognizer.recognize(b"")


@patch("invoice_ocr.ocr.service.pytesseract.image_to_data")
@patch("invoice_ocr.ocr.service.convert_from_bytes")
def test_pdf_first_page_is_rendered(
    mock_convert: MagicMock, mock_data: MagicMock, recognizer: TesseractRecognizer
) -> None:
    mock_convert.return_value = [Image.new("RGB", (100, 100), color="white")]
    mock_data.return_value = _tesseract_data([("Sprzedawca", 88.0, 1)])

    result = recognizer.recognize(b"%PDF-1.7 fake document")

    assert result.text == "Sprzedawca"
    kwargs = mock_convert.call_args.kwargs
    assert kwargs["first_page"] == 1
    assert kwargs["last_page"] == 1
    assert kwargs["dpi"] == 300


@patch("invoice_ocr.ocr.service.convert_from_bytes")
def test_pdf_without_pages_raises(mock_convert: MagicMock, recognizer: TesseractRecognizer) -> None:
    mock_convert.return_value = []

    with pytest.raises(RecognitionError, match="no pages"):
        recognizer.recognize(b"%PDF-1.7")
