"""
Unit Tests — OCR adapters

Backends are never invoked for real: _extract_sync is patched, so neither
the tesseract binary nor AWS credentials are needed.
"""

from __future__ import annotations

import threading
import time
from unittest.mock import ANY, MagicMock, patch

import pytest

from capture_inbox.core.config import OcrBackend
from capture_inbox.processing.ocr import (
    PlaceholderOcr,
    TesseractOcr,
    TextractOcr,
    get_ocr_adapter,
)
from capture_inbox.workers.tasks import run_async


@pytest.mark.unit
class TestPlaceholderOcr:

    async def test_marker_names_file(self):
        text = await PlaceholderOcr().extract(b"...", "shot.png")
        assert text == "OCR placeholder output for shot.png."


@pytest.mark.unit
class TestBlockingAdapters:

    async def test_success_returns_backend_text(self):
        adapter = TesseractOcr(timeout_seconds=5)
        with patch.object(TesseractOcr, "_extract_sync", return_value="Hello world"):
            assert await adapter.extract(b"img", "a.png") == "Hello world"

    async def test_backend_error_becomes_fallback_text(self):
        adapter = TesseractOcr(timeout_seconds=5)
        with patch.object(TesseractOcr, "_extract_sync", side_effect=OSError("cannot identify image")):
            text = await adapter.extract(b"img", "a.png")
        assert text == "OCR fallback output for a.png. Tesseract failed: cannot identify image"

    async def test_timeout_becomes_fallback_text(self):
        adapter = TextractOcr(timeout_seconds=0.05)

        def _slow(data):
            time.sleep(0.5)
            return "too late"

        with patch.object(TextractOcr, "_extract_sync", side_effect=_slow):
            text = await adapter.extract(b"img", "b.png")
        assert text == "OCR fallback output for b.png. Textract failed: OCR timed out after 0.05s"

    async def test_error_without_message_uses_class_name(self):
        adapter = TesseractOcr(timeout_seconds=5)
        with patch.object(TesseractOcr, "_extract_sync", side_effect=RuntimeError()):
            text = await adapter.extract(b"img", "a.png")
        assert text.endswith("Tesseract failed: RuntimeError")

    def test_hung_backend_does_not_hold_the_task(self):
        adapter = TextractOcr(timeout_seconds=0.1)
        release = threading.Event()

        def _hang(data):
            release.wait(3)
            return "too late"

        try:
            with patch.object(TextractOcr, "_extract_sync", side_effect=_hang):
                t0   = time.monotonic()
                text = run_async(adapter.extract(b"img", "c.png"))
                elapsed = time.monotonic() - t0
        finally:
            release.set()

        assert text.endswith("Textract failed: OCR timed out after 0.1s")
        assert elapsed < 1.5


@pytest.mark.unit
class TestTextract:

    def test_lines_from_blocks_keeps_only_lines(self):
        blocks = [
            {"BlockType": "PAGE"},
            {"BlockType": "LINE", "Text": "Total $9.99"},
            {"BlockType": "WORD", "Text": "Total"},
            {"BlockType": "LINE", "Text": "Thank you"},
        ]
        assert TextractOcr.lines_from_blocks(blocks) == "Total $9.99\nThank you"

    def test_detect_document_text_called_with_bytes(self):
        client = MagicMock()
        client.detect_document_text.return_value = {
            "Blocks": [{"BlockType": "LINE", "Text": "hello"}],
        }
        with patch("boto3.client", return_value=client) as factory:
            text = TextractOcr(region="eu-west-1")._extract_sync(b"raw")

        factory.assert_called_once_with("textract", region_name="eu-west-1", config=ANY)
        client.detect_document_text.assert_called_once_with(Document={"Bytes": b"raw"})
        assert text == "hello"

    def test_client_carries_ocr_timeout(self):
        client = MagicMock()
        client.detect_document_text.return_value = {"Blocks": []}
        with patch("boto3.client", return_value=client) as factory:
            TextractOcr(timeout_seconds=7)._extract_sync(b"raw")

        config = factory.call_args.kwargs["config"]
        assert config.connect_timeout == 7
        assert config.read_timeout == 7


@pytest.mark.unit
class TestTesseract:

    def test_timeout_passed_to_tesseract(self):
        image = MagicMock()
        image.__enter__.return_value = image
        with patch("PIL.Image.open", return_value=image), \
             patch("pytesseract.image_to_string", return_value="text") as ocr:
            assert TesseractOcr(lang="kor", timeout_seconds=3)._extract_sync(b"img") == "text"

        ocr.assert_called_once_with(image, lang="kor", timeout=3)


@pytest.mark.unit
class TestFactory:

    @pytest.mark.parametrize("backend,expected", [
        (OcrBackend.PLACEHOLDER, PlaceholderOcr),
        (OcrBackend.TESSERACT,   TesseractOcr),
        (OcrBackend.TEXTRACT,    TextractOcr),
    ])
    def test_selects_adapter(self, backend, expected):
        settings = MagicMock(
            ocr_adapter=backend, ocr_lang="eng", ocr_timeout_seconds=20.0, s3_region="us-east-1",
        )
        assert isinstance(get_ocr_adapter(settings), expected)
