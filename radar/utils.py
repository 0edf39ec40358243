"""Shared text helpers used across Radar modules."""
from __future__ import annotations

import re

_WS_RE = re.compile(r"\s+")
_PUNCT_RE = re.compile(r"[.,;:!?]")
_QUOTE_RE = re.compile(r"['\"]")

_EMOJI_RE = re.compile(
    "[\U0001F300-\U0001F9FF"  # emoji
    "\u2600-\u26FF"  # misc symbols
    "\u2700-\u27BF"  # dingbats
    "\uFE00-\uFE0F"  # variation selectors
    "\u200D]"  # zero-width joiner
)
_NAME_JUNK_RE = re.compile(r"[^\w\s&.\-@]", re.ASCII)


def normalize_text(text: str) -> str:
    """Equality key for statement matching.

    Lowercases, trims, collapses whitespace and drops ``.,;:!?`` and quotes.
    No stemming: a miss shows up downstream as "question not found".
    """
    text = _WS_RE.sub(" ", text.strip().lower())
    text = _PUNCT_RE.sub("", text)
    return _QUOTE_RE.sub("", text)


def clean_company_name(name: str | None) -> str | None:
    """Strip emoji and stray symbols from a spreadsheet company name."""
    if not name:
        return None
    name = _EMOJI_RE.sub("", name)
    name = _NAME_JUNK_RE.sub("", name)
    return _WS_RE.sub(" ", name).strip()
