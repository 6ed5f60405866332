"""Deterministic text helpers used by display and outcome code."""

from __future__ import annotations

import re

LABEL_MAX_LEN = 50
_WORD_SEPARATORS = re.compile(r"[\s_\-]+")


def sanitize_text(value: str | None, max_len: int = 20000) -> str:
    """Sanitize free-form content before persistence/display."""
    if value is None:
        return ""
    cleaned = str(value).replace("\x00", "").strip()
    cleaned = cleaned[:max_len]
    return cleaned


def truncate_label(value: str, max_len: int = LABEL_MAX_LEN) -> str:
    """Shorten free text used as a label, marking the cut with an ellipsis."""
    if len(value) <= max_len:
        return value
    return value[: max_len - 3] + "..."


def title_case_identifier(identifier: str | None) -> str:
    """``client_followup`` -> ``Client Followup``; empty input reads as ``Unknown``."""
    if not identifier:
        return "Unknown"
    words = [word for word in _WORD_SEPARATORS.split(identifier) if word]
    if not words:
        return "Unknown"
    return " ".join(word[:1].upper() + word[1:].lower() for word in words)
