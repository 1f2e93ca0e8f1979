"""
Capture Processing Package
══════════════════════════

Post-upload analysis used by the worker pipeline:

  OCR → Category → Summary → Tags → Action suggestions → Purpose digest

Modules
───────
  ocr.py   Strategy pattern for text extraction (placeholder / Tesseract / Textract)
  text.py  Rule-based text analysis engine (pure functions, no I/O)
"""

from capture_inbox.processing.ocr import OcrAdapter, get_ocr_adapter
from capture_inbox.processing.text import (
    ActionSuggestion,
    PurposeDigest,
    PurposeProfile,
    classify_category,
    extract_tags,
    generate_action_suggestions,
    generate_summary,
    organize_by_purpose,
)

__all__ = [
    "OcrAdapter",
    "get_ocr_adapter",
    "ActionSuggestion",
    "PurposeDigest",
    "PurposeProfile",
    "classify_category",
    "extract_tags",
    "generate_action_suggestions",
    "generate_summary",
    "organize_by_purpose",
]
