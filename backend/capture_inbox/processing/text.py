"""
Text Analysis Engine  —  Rule-Based Capture Understanding
═════════════════════════════════════════════════════════

Turns OCR text into the derived fields of a capture:

  classify_category()           ordered regex rules, first match wins
  generate_summary()            first two sentences, 400-char ceiling
  extract_tags()                top-K frequent non-stopword tokens
  generate_action_suggestions() static table, three per category
  organize_by_purpose()         purpose-lens summary + checklist

Everything here is pure and deterministic: no I/O, no globals mutated,
no learned models. The worker pipeline calls these on OCR text that has
already been truncated to OCR_TEXT_LIMIT characters.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field

from capture_inbox.models.captures import CAPTURE_CATEGORIES, CaptureCategory

# ---------------------------------------------------------------------------
# Configuration constants
# ---------------------------------------------------------------------------

DEFAULT_TAG_LIMIT          = 6
SUMMARY_SENTENCES          = 2
SUMMARY_MAX_CHARS          = 400
INSTRUCTION_KEYWORD_LIMIT  = 12
PURPOSE_SUMMARY_SENTENCES  = 3
CHECKLIST_MATCHES_PER_KIND = 2
CHECKLIST_SENTENCE_LIMIT   = 3
CHECKLIST_SENTENCE_CHARS   = 120
CHECKLIST_MAX_ENTRIES      = 6

STOPWORDS: frozenset[str] = frozenset({
    "the", "and", "for", "with", "this", "that", "from", "your", "have",
    "will", "are", "you", "our", "but", "not", "was", "were", "has", "had",
    "into", "about", "over", "under", "when", "where", "who", "what", "why",
    "how", "can", "could", "would", "should", "email", "phone", "www",
    "http", "https", "com",
})

_WHITESPACE_RE     = re.compile(r"\s+")
_NON_ALNUM_RE      = re.compile(r"[^\w\s]|_")   # keeps letters/digits of any script
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")

_DATE_RE   = re.compile(r"\b\d{4}[./-]\d{1,2}[./-]\d{1,2}\b")
_TIME_RE   = re.compile(r"\b\d{1,2}:\d{2}\b")
_AMOUNT_RE = re.compile(r"[$₩€£]\s?\d[\d,]*(?:\.\d+)?")

# Order matters: receipts mention "payment"/"tax" too, so they are tested
# before finance; first match wins.
_CATEGORY_RULES: tuple[tuple[CaptureCategory, re.Pattern[str]], ...] = (
    (CaptureCategory.RECEIPT,     re.compile(r"(total|subtotal|tax|receipt|thank you|amount due)", re.I)),
    (CaptureCategory.RESERVATION, re.compile(r"(reservation|booking|check-in|check out|seat|confirmation)", re.I)),
    (CaptureCategory.FINANCE,     re.compile(r"(invoice|statement|balance|payment|due date|bank|account)", re.I)),
    (CaptureCategory.SHOPPING,    re.compile(r"(order|cart|shipping|delivery|tracking|item)", re.I)),
    (CaptureCategory.STUDY,       re.compile(r"(chapter|lesson|course|homework|assignment|quiz)", re.I)),
    (CaptureCategory.CHAT,        re.compile(r"(chat|message|conversation|dm|reply)", re.I)),
    (CaptureCategory.DOCUMENT,    re.compile(r"(report|document|memo|proposal|agenda|minutes)", re.I)),
)

CHECK_DATE_LABEL     = "Check date:"
CHECK_TIME_LABEL     = "Check time:"
CHECK_AMOUNT_LABEL   = "Check amount:"
KEY_SENTENCE_LABEL   = "Review key sentence:"


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ActionSuggestion:
    title:  str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class PurposeProfile:
    """The parts of a CapturePurpose that drive analysis."""
    name:            str
    instruction:     str
    sample_keywords: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PurposeDigest:
    purpose_summary:   str
    purpose_checklist: list[str]


_SUGGESTIONS: dict[CaptureCategory, tuple[ActionSuggestion, ...]] = {
    CaptureCategory.RECEIPT: (
        ActionSuggestion("Log the expense", "Record the spending right away."),
        ActionSuggestion("Check the refund/exchange window", "Avoid missing the deadline."),
        ActionSuggestion("Add to the monthly spending summary", "Track totals per category."),
    ),
    CaptureCategory.RESERVATION: (
        ActionSuggestion("Add to calendar", "Keep the time from slipping your mind."),
        ActionSuggestion("Save the place/address", "Get ready to travel faster."),
        ActionSuggestion("Share with companions", "Pass along the details they need."),
    ),
    CaptureCategory.DOCUMENT: (
        ActionSuggestion("Review the key summary", "Grasp the important points quickly."),
        ActionSuggestion("Register the next action", "Make the document follow-up explicit."),
        ActionSuggestion("Save related links", "Lead on to further material."),
    ),
    CaptureCategory.CHAT: (
        ActionSuggestion("Draft a reply", "Keep the conversation going."),
        ActionSuggestion("Turn into a todo", "Don't forget what was asked."),
        ActionSuggestion("Save the important lines", "Keep the key exchange on file."),
    ),
    CaptureCategory.STUDY: (
        ActionSuggestion("Save as study notes", "Make review easier."),
        ActionSuggestion("Plan the next session", "Keep up the pace."),
        ActionSuggestion("Memorize the keywords", "Remember the core terms."),
    ),
    CaptureCategory.SHOPPING: (
        ActionSuggestion("Check the delivery date", "Don't miss the arrival."),
        ActionSuggestion("Add to a list", "Make repeat purchases easy."),
        ActionSuggestion("Compare with the budget", "Keep spending under control."),
    ),
    CaptureCategory.FINANCE: (
        ActionSuggestion("Register the payment date", "Avoid late fees."),
        ActionSuggestion("Categorize the expense", "Understand where money goes."),
        ActionSuggestion("Set a reminder", "Remember important deadlines."),
    ),
    CaptureCategory.MISC: (
        ActionSuggestion("Save as a note", "Needs further sorting."),
        ActionSuggestion("Add related tags", "Easier to find later."),
        ActionSuggestion("Convert to a todo", "Make the next action explicit."),
    ),
}


# ---------------------------------------------------------------------------
# Normalization helpers
# ---------------------------------------------------------------------------

def normalize_text(text: str) -> str:
    """Collapse whitespace, replace punctuation/symbols with spaces, trim."""
    collapsed = _WHITESPACE_RE.sub(" ", text)
    return _NON_ALNUM_RE.sub(" ", collapsed).strip()


def _split_sentences(text: str) -> list[str]:
    collapsed = _WHITESPACE_RE.sub(" ", text)
    return [s for s in _SENTENCE_SPLIT_RE.split(collapsed) if s]


def _tokens(text: str) -> list[str]:
    return [t for t in normalize_text(text).lower().split(" ") if t]


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


def ensure_category(value: str | None) -> str:
    """Map any string onto one of the fixed category values; unknown → misc."""
    lowered = (value or "").lower()
    return lowered if lowered in CAPTURE_CATEGORIES else CaptureCategory.MISC.value


# ---------------------------------------------------------------------------
# Analysis functions
# ---------------------------------------------------------------------------

def classify_category(text: str) -> str:
    lowered = text.lower()
    for category, pattern in _CATEGORY_RULES:
        if pattern.search(lowered):
            return category.value
    return CaptureCategory.MISC.value


def generate_summary(text: str, fallback_label: str) -> str:
    """
    First two sentences of `text`, cut at 400 characters with "...".

    Empty text yields a fallback naming `fallback_label` (the filename).
    """
    cleaned = text.strip()
    if not cleaned:
        return f"No OCR text found. Source: {fallback_label}."

    summary = " ".join(_split_sentences(cleaned)[:SUMMARY_SENTENCES])
    if len(summary) > SUMMARY_MAX_CHARS:
        return f"{summary[:SUMMARY_MAX_CHARS]}..."
    return summary


def extract_tags(text: str, max_tags: int = DEFAULT_TAG_LIMIT) -> list[str]:
    """
    Most frequent tokens, ties kept in first-seen order.

    Tokens shorter than 3 characters and stopwords are skipped.
    """
    counts: dict[str, int] = {}
    for token in _tokens(text):
        if len(token) < 3 or token in STOPWORDS:
            continue
        counts[token] = counts.get(token, 0) + 1

    ranked = sorted(counts.items(), key=lambda item: -item[1])
    return [word for word, _ in ranked[:max(max_tags, 0)]]


def generate_action_suggestions(category: str) -> list[ActionSuggestion]:
    try:
        key = CaptureCategory(category)
    except ValueError:
        key = CaptureCategory.MISC
    return list(_SUGGESTIONS[key])


def instruction_keywords(instruction: str) -> list[str]:
    tokens = [t for t in _tokens(instruction) if len(t) >= 2 and t not in STOPWORDS]
    return tokens[:INSTRUCTION_KEYWORD_LIMIT]


def organize_by_purpose(
    text: str,
    profile: PurposeProfile,
    fallback_label: str,
) -> PurposeDigest:
    """
    Read `text` through a purpose lens.

    Sentences containing any purpose keyword (sample keywords ∪ instruction
    tokens, case-insensitive substring) drive the summary. The checklist
    gathers dates, times, amounts and matched sentences; it is deduplicated,
    capped at 6, and never empty.
    """
    cleaned   = text.strip()
    sentences = _split_sentences(cleaned)
    keywords  = _unique(
        [k.lower() for k in profile.sample_keywords if k]
        + instruction_keywords(profile.instruction)
    )

    matched: list[str] = []
    if keywords:
        matched = [s for s in sentences if any(k in s.lower() for k in keywords)]

    purpose_summary = (
        " ".join(matched[:PURPOSE_SUMMARY_SENTENCES])
        or generate_summary(cleaned, fallback_label)
    )

    checklist: list[str] = []
    for value in _DATE_RE.findall(cleaned)[:CHECKLIST_MATCHES_PER_KIND]:
        checklist.append(f"{CHECK_DATE_LABEL} {value}")
    for value in _TIME_RE.findall(cleaned)[:CHECKLIST_MATCHES_PER_KIND]:
        checklist.append(f"{CHECK_TIME_LABEL} {value}")
    for value in _AMOUNT_RE.findall(cleaned)[:CHECKLIST_MATCHES_PER_KIND]:
        checklist.append(f"{CHECK_AMOUNT_LABEL} {value}")
    for sentence in matched[:CHECKLIST_SENTENCE_LIMIT]:
        clipped = (
            f"{sentence[:CHECKLIST_SENTENCE_CHARS]}..."
            if len(sentence) > CHECKLIST_SENTENCE_CHARS else sentence
        )
        checklist.append(f"{KEY_SENTENCE_LABEL} {clipped}")

    if not checklist:
        checklist.append(
            f"Review the key points for the '{profile.name}' purpose "
            f"and register follow-up tasks."
        )

    return PurposeDigest(
        purpose_summary=purpose_summary,
        purpose_checklist=_unique(checklist)[:CHECKLIST_MAX_ENTRIES],
    )
