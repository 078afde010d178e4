"""Text recognition adapter using Tesseract.

Turns an uploaded invoice (image, or the first page of a PDF) into raw text
and a 0-100 confidence score. Failures are raised, never returned, so the
orchestrator can log and classify them.

Based on pytesseract documentation:
https://github.com/madmaze/pytesseract
"""

import io
import logging
import os
from typing import Protocol

import pytesseract
from pdf2image import convert_from_bytes
from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, Field

from invoice_ocr.shared.config import Settings
from invoice_ocr.shared.errors import RecognitionError, UnsupportedFormatError

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


class RecognitionResult(BaseModel):
    """Result of text recognition.

    Attributes:
        text: Recognized text, one line per detected text line
        confidence: Mean word confidence (0-100)
        word_count: Number of words that contributed to the confidence
    """

    text: str
    confidence: float = Field(ge=0, le=100)
    word_count: int = 0


class TextRecognizer(Protocol):
    """Protocol for recognition adapters."""

    def recognize(self, document: bytes) -> RecognitionResult:
        """Recognize text in a binary document."""
        ...


class TesseractRecognizer:
    """Recognition adapter backed by the Tesseract engine."""

    def __init__(self, settings: Settings) -> None:
        """Initialize recognizer.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self._configure_tesseract()

    def _configure_tesseract(self) -> None:
        """Configure Tesseract command path from environment.

        Allows overriding default Tesseract path via TESSERACT_CMD environment variable.
        """
        tesseract_cmd = os.getenv("TESSERACT_CMD")
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def _build_config(self) -> str:
        return f"--oem {self.settings.tesseract_oem} --psm {self.settings.tesseract_psm}"

    def _load_image(self, document: bytes) -> Image.Image:
        """Decode an image, rendering the first page when given a PDF.

        Raises:
            UnsupportedFormatError: If the bytes are neither an image nor a PDF
            RecognitionError: If the PDF cannot be rendered
        """
        if not document:
            raise UnsupportedFormatError("Empty document")

        if document.startswith(PDF_MAGIC):
            try:
                pages = convert_from_bytes(
                    document,
                    dpi=self.settings.pdf_render_dpi,
                    first_page=1,
                    last_page=1,
                )
            except (PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError) as e:
                raise RecognitionError(f"Failed to render PDF page: {e}") from e
            if not pages:
                raise RecognitionError("PDF has no pages")
            return pages[0]

        try:
            image = Image.open(io.BytesIO(document))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise UnsupportedFormatError("Document is not a supported image or PDF") from e
        return image

    def recognize(self, document: bytes) -> RecognitionResult:
        """Run OCR on a document.

        Args:
            document: Raw bytes of an image or PDF

        Returns:
            RecognitionResult with text and mean word confidence

        Raises:
            UnsupportedFormatError: If the input format is not supported
            RecognitionError: If Tesseract fails or finds no text
        """
        image = self._load_image(document)
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")

        try:
            data = pytesseract.image_to_data(
                image,
                lang=self.settings.tesseract_languages,
                config=self._build_config(),
                output_type=pytesseract.Output.DICT,
            )
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
            raise RecognitionError(f"OCR processing failed: {e}") from e

        lines: dict[tuple[int, int, int], list[str]] = {}
        confidences: list[float] = []
        for i, word in enumerate(data.get("text", [])):
            word = (word or "").strip()
            if not word:
                continue
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            lines.setdefault(key, []).append(word)
            conf = float(data["conf"][i])
            if conf >= 0:  # Tesseract reports -1 for non-word boxes
                confidences.append(conf)

        text = "\n".join(" ".join(words) for words in lines.values())
        if not text:
            raise RecognitionError("No text detected in image")

        confidence = sum(confidences) / len(confidences) if confidences else 0.0
        logger.info(f"Recognized {len(text)} characters (confidence {confidence:.1f}%)")

        return RecognitionResult(
            text=text,
            confidence=round(confidence, 2),
            word_count=len(confidences),
        )
