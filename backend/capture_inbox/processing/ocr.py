"""
OCR Strategy Pattern  —  Text Extraction from Screenshots
═════════════════════════════════════════════════════════

Design: Strategy + Factory
──────────────────────────
One adapter is chosen at worker startup from OCR_ADAPTER:

  placeholder
    - No OCR at all; returns a marker string naming the file
    - Default for local development and tests

  tesseract
    - Pillow decodes the image, pytesseract runs the tesseract binary
    - Runs in-process (thread executor), zero API calls
    - Requires the tesseract system package in the worker image

  textract
    - AWS Textract DetectDocumentText on the raw image bytes
    - Higher accuracy on dense receipts/forms; pay-per-page

Contract shared by every adapter
────────────────────────────────
  extract(data, filename) never raises. Timeouts and backend errors are
  turned into a clearly marked fallback string that embeds the filename and
  reason, so a capture is never FAILED because OCR failed; the degraded text
  flows into ocr_text/summary where the user can see it.
"""

from __future__ import annotations

import asyncio
import io
import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor

from capture_inbox.core.config import OcrBackend, Settings

logger = logging.getLogger(__name__)

# Dedicated pool: asyncio.run() joins only the loop's default executor, so an
# abandoned OCR thread here never holds the calling task past its timeout.
_OCR_EXECUTOR = ThreadPoolExecutor(max_workers=4, thread_name_prefix="ocr")


# ---------------------------------------------------------------------------
# Abstract strategy
# ---------------------------------------------------------------------------

class OcrAdapter(ABC):

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique name for logging."""

    @abstractmethod
    async def extract(self, data: bytes, filename: str) -> str:
        """Return text found in the image. Must NOT raise."""


class PlaceholderOcr(OcrAdapter):

    @property
    def name(self) -> str:
        return "placeholder"

    async def extract(self, data: bytes, filename: str) -> str:
        return f"OCR placeholder output for {filename}."


# ---------------------------------------------------------------------------
# Shared timeout/fallback wrapper for blocking backends
# ---------------------------------------------------------------------------

class _BlockingOcrAdapter(OcrAdapter):
    """
    Runs `_extract_sync` in the OCR thread pool under an overall timeout.
    On timeout the thread is abandoned and its result discarded; backends
    also pass the timeout to their client so the thread itself ends.
    """

    fallback_label = "OCR"

    def __init__(self, timeout_seconds: float) -> None:
        self._timeout = timeout_seconds

    @abstractmethod
    def _extract_sync(self, data: bytes) -> str: ...

    def fallback(self, filename: str, reason: str) -> str:
        return f"OCR fallback output for {filename}. {self.fallback_label} failed: {reason}"

    async def extract(self, data: bytes, filename: str) -> str:
        loop = asyncio.get_running_loop()
        t0   = time.monotonic()

        try:
            text = await asyncio.wait_for(
                loop.run_in_executor(_OCR_EXECUTOR, self._extract_sync, data),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            reason = f"OCR timed out after {self._timeout:g}s"
            logger.error("%s | file=%s timeout_s=%s", self.name, filename, self._timeout)
            return self.fallback(filename, reason)
        except Exception as exc:
            logger.error("%s extraction failed | file=%s error=%s", self.name, filename, exc, exc_info=True)
            return self.fallback(filename, str(exc) or exc.__class__.__name__)

        logger.info(
            "%s | file=%s chars=%d elapsed_ms=%.0f",
            self.name, filename, len(text), (time.monotonic() - t0) * 1000,
        )
        return text


# ---------------------------------------------------------------------------
# Strategy: Tesseract
# ---------------------------------------------------------------------------

class TesseractOcr(_BlockingOcrAdapter):

    fallback_label = "Tesseract"

    def __init__(self, lang: str = "eng", timeout_seconds: float = 20.0) -> None:
        super().__init__(timeout_seconds)
        self._lang = lang

    @property
    def name(self) -> str:
        return "tesseract"

    def _extract_sync(self, data: bytes) -> str:
        import pytesseract
        from PIL import Image

        with Image.open(io.BytesIO(data)) as image:
            # Tesseract kills the subprocess and raises RuntimeError on timeout
            return pytesseract.image_to_string(image, lang=self._lang, timeout=self._timeout) or ""


# ---------------------------------------------------------------------------
# Strategy: AWS Textract
# ---------------------------------------------------------------------------

class TextractOcr(_BlockingOcrAdapter):
    """
    IAM permissions required on the worker role:
      textract:DetectDocumentText
    """

    fallback_label = "Textract"

    def __init__(self, region: str = "us-east-1", timeout_seconds: float = 20.0) -> None:
        super().__init__(timeout_seconds)
        self._region = region

    @property
    def name(self) -> str:
        return "textract"

    def _extract_sync(self, data: bytes) -> str:
        import boto3
        from botocore.config import Config

        config = Config(
            connect_timeout=self._timeout,
            read_timeout=self._timeout,
            retries={"max_attempts": 1},
        )
        client   = boto3.client("textract", region_name=self._region, config=config)
        response = client.detect_document_text(Document={"Bytes": data})
        return self.lines_from_blocks(response.get("Blocks", []))

    @staticmethod
    def lines_from_blocks(blocks: list[dict]) -> str:
        return "\n".join(
            block.get("Text", "")
            for block in blocks
            if block.get("BlockType") == "LINE"
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def get_ocr_adapter(settings: Settings) -> OcrAdapter:
    if settings.ocr_adapter is OcrBackend.TESSERACT:
        adapter: OcrAdapter = TesseractOcr(settings.ocr_lang, settings.ocr_timeout_seconds)
    elif settings.ocr_adapter is OcrBackend.TEXTRACT:
        adapter = TextractOcr(settings.s3_region, settings.ocr_timeout_seconds)
    else:
        adapter = PlaceholderOcr()

    logger.info("OCR adapter: %s", adapter.name)
    return adapter
