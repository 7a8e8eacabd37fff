"""Split normalized text into speech and pause units."""

import re

from queue_reader.constants import (
    DEFAULT_PAUSE_MS,
    HEADING_MAX_CHARS,
    HEADING_PAUSE_MS,
    MAX_SEGMENT_CHARS,
    PAUSE_MAX_MS,
    PAUSE_MIN_MS,
)
from queue_reader.models import Unit

_MARKDOWN_HEADING_RE = re.compile(r"^#{1,6}\s+\S+")
_MARKDOWN_MARKER_RE = re.compile(r"^#{1,6}\s+")
# Shout-case label. Also matches short all-caps sentences ("STOP THAT.");
# that false positive is a known limitation of the heuristic.
_SHOUT_CASE_RE = re.compile(r"^[A-Z0-9][A-Z0-9\s:;,.&()'\"-]+$")
_HAS_UPPER_RE = re.compile(r"[A-Z]")

# Lookbehind/lookahead only, so the boundary characters stay in place
_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?…])\s+(?=[A-Z0-9\"“‘(\[])")


def is_heading_line(line: str) -> bool:
    """Return True for "#"-style headings and short shout-case labels."""
    stripped = line.strip()
    if not stripped:
        return False
    if _MARKDOWN_HEADING_RE.match(stripped):
        return True
    return (
        len(stripped) <= HEADING_MAX_CHARS
        and bool(_SHOUT_CASE_RE.match(stripped))
        and bool(_HAS_UPPER_RE.search(stripped))
    )


def split_sentences(text: str) -> list[str]:
    """Split at sentence-ending punctuation followed by a sentence opener."""
    return [part.strip() for part in _SENTENCE_BOUNDARY_RE.split(text) if part.strip()]


def pack_sentences(sentences: list[str], budget: int = MAX_SEGMENT_CHARS) -> list[str]:
    """Greedily pack sentences into chunks of at most `budget` characters.

    A sentence longer than the budget becomes a chunk of its own.
    """
    chunks = []
    current = ""

    for sentence in sentences:
        if current and len(current) + 1 + len(sentence) > budget:
            chunks.append(current)
            current = sentence
        else:
            current = f"{current} {sentence}" if current else sentence

    if current:
        chunks.append(current)

    return chunks


def _finalize(units: list[Unit]) -> list[Unit]:
    """Drop empty speech, clamp pauses, and guarantee at least one unit."""
    result = []
    for unit in units:
        if unit.is_pause:
            ms = unit.pause_ms if isinstance(unit.pause_ms, int) else DEFAULT_PAUSE_MS
            result.append(Unit(kind="pause", pause_ms=min(PAUSE_MAX_MS, max(PAUSE_MIN_MS, ms))))
            continue
        text = (unit.text or "").strip()
        if text:
            result.append(Unit(kind="speech", text=text))
    return result or [Unit(kind="speech", text="")]


def segment(text: str, heading_mode: str = "cue") -> list[Unit]:
    """Split text into an ordered list of units.

    Blank lines separate paragraphs. Heading lines are handled per
    `heading_mode`: "off" reads them as body text, "cue" announces them
    ("Heading. <title>."), and "pause" reads the title then pauses.
    Paragraph text is sentence-split and greedily packed.
    """
    if not isinstance(text, str):
        return _finalize([])

    units = []
    paragraph = []

    def flush():
        if not paragraph:
            return
        body = " ".join(paragraph)
        paragraph.clear()
        for chunk in pack_sentences(split_sentences(body)):
            units.append(Unit(kind="speech", text=chunk))

    for raw_line in text.split("\n"):
        line = " ".join(raw_line.split())
        if not line:
            flush()
            continue

        if heading_mode != "off" and is_heading_line(line):
            flush()
            clean = _MARKDOWN_MARKER_RE.sub("", line).strip()
            if heading_mode == "pause":
                units.append(Unit(kind="speech", text=clean))
                units.append(Unit(kind="pause", pause_ms=HEADING_PAUSE_MS))
            else:
                units.append(Unit(kind="speech", text=f"Heading. {clean}."))
            continue

        paragraph.append(line)

    flush()
    return _finalize(units)
