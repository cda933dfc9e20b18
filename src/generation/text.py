"""Parsing helpers for raw model output."""

from __future__ import annotations

import re

CONCLUSION_MARKER = "[CONCLUSION]"

_LINE_SPLIT_RE = re.compile(r"\r\n|\n|\r")
# "1.", "1)", "(1)", "-", "*", "•", "#"
_LIST_MARKER_RE = re.compile(r"^\s*(?:\(?\d+[.)]|[-*•]|#+)\s*")
_QUOTE_CHARS = "\"“”'‘’`"


def clean_list_line(line: str) -> str:
    """Strip list numbering, markdown emphasis and surrounding quotes."""
    line = _LIST_MARKER_RE.sub("", line.strip())
    line = line.replace("**", "").replace("__", "")
    line = line.replace('"', "")
    return line.strip().strip(_QUOTE_CHARS).strip()


def parse_list(text: str) -> list[str]:
    """Split a newline-delimited (usually numbered) list into clean entries."""
    entries: list[str] = []
    for raw in _LINE_SPLIT_RE.split(text):
        cleaned = clean_list_line(raw)
        if cleaned:
            entries.append(cleaned)
    return entries


def parse_headings(text: str, count: int) -> list[str]:
    """Return at most *count* headings, in response order."""
    return parse_list(text)[:count]


def split_conclusion(text: str, marker: str = CONCLUSION_MARKER) -> tuple[str, str]:
    """Split a section response into ``(content, conclusion)`` at the first marker.

    Without a marker the whole text is content and the conclusion is empty.
    """
    content, found, conclusion = text.partition(marker)
    if not found:
        return text.strip(), ""
    return content.strip(), conclusion.strip()
