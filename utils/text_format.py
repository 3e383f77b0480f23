"""Plain-text normalizer for chatbot answers.

Whatever markup the model returns (markdown, HTML, bullets), the client gets
plain text: short answers as prose, three or more sentences as a numbered
list.
"""
import re
from typing import List

HTML_TAG_RE = re.compile(r"</?[A-Za-z!][^>]*>")
LIST_MARKER_RE = re.compile(r"^\s*(?:[-*+•]|\d+[.)])\s+")
BARE_MARKER_RE = re.compile(r"^(?:\d+[.)]?|[-*+•])$")
HEADING_RE = re.compile(r"^\s*#{1,6}\s*")
MARKDOWN_CHARS_RE = re.compile(r"[*#_`~]")
ALNUM_RE = re.compile(r"[A-Za-z0-9]")
LETTER_RE = re.compile(r"[A-Za-z]")
SEGMENT_SPLIT_RE = re.compile(r"(?<=[.?!])\s+(?=[A-Z0-9])|\n\s*\n")
LEADING_ENUM_RE = re.compile(r"^\s*(?:[-*+•]|\d+[.)])\s*")

MIN_NUMBERED_SEGMENTS = 3


def _clean_line(line: str):
    """Return (text, is_list_item) for one raw line."""
    is_item = bool(LIST_MARKER_RE.match(line))
    if is_item:
        line = LIST_MARKER_RE.sub("", line, count=1)
    line = HEADING_RE.sub("", line)
    line = MARKDOWN_CHARS_RE.sub("", line)
    line = re.sub(r"\s+", " ", line).strip()
    return line, is_item


def _is_meaningful(line: str) -> bool:
    if not line or not ALNUM_RE.search(line):
        return False
    return not BARE_MARKER_RE.match(line)


def _paragraphs(text: str) -> List[str]:
    paragraphs, current = [], []
    for raw in text.split("\n"):
        if not raw.strip():
            if current:
                paragraphs.append(" ".join(current))
                current = []
            continue
        line, is_item = _clean_line(raw)
        if not _is_meaningful(line):
            continue
        if is_item:
            if current:
                paragraphs.append(" ".join(current))
                current = []
            paragraphs.append(line)
        else:
            current.append(line)
    if current:
        paragraphs.append(" ".join(current))
    return paragraphs


def split_segments(text: str) -> List[str]:
    segments = []
    for part in SEGMENT_SPLIT_RE.split(text):
        part = re.sub(r"\s+", " ", part or "").strip()
        if len(part) > 1 and LETTER_RE.search(part):
            segments.append(part)
    return segments


def format_plain_text(raw: str) -> str:
    """Strip markup from ``raw`` and re-segment it.

    Returns "" when nothing meaningful is left.
    """
    if not raw:
        return ""
    cleaned = HTML_TAG_RE.sub("", raw).replace("\u00a0", " ").replace("\r\n", "\n")
    paragraphs = _paragraphs(cleaned)
    if not paragraphs:
        return ""
    segments = split_segments("\n\n".join(paragraphs))
    if len(segments) < MIN_NUMBERED_SEGMENTS:
        return " ".join(segments).strip()
    numbered = []
    for i, segment in enumerate(segments, start=1):
        numbered.append(f"{i}. {LEADING_ENUM_RE.sub('', segment, count=1).strip()}")
    return "\n".join(numbered)
