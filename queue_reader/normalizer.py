"""Text cleanup, abbreviation expansion, and pronunciation dictionary."""

import re

from queue_reader.constants import TITLE_MAX_CHARS, UNTITLED

ABBREVIATIONS = {
    "e.g.": "for example",
    "i.e.": "that is",
    "vs.": "versus",
    "etc.": "et cetera",
    "w/o": "without",
    "w/": "with",
}

_HSPACE_RE = re.compile(r"[^\S\n]+")
_LINE_EDGE_RE = re.compile(r" *\n *")
_EXCESS_BLANKS_RE = re.compile(r"\n{4,}")


def normalize(text: str) -> str:
    """Normalize line endings and whitespace.

    CR/LF variants become "\\n", tabs and runs of horizontal whitespace become
    one space, whitespace-only lines become empty, and no more than two blank
    lines are kept in a row. Idempotent. Non-string input yields "".
    """
    if not isinstance(text, str):
        return ""
    out = text.replace("\r\n", "\n").replace("\r", "\n")
    out = out.replace("\t", " ")
    out = _HSPACE_RE.sub(" ", out)
    out = _LINE_EDGE_RE.sub("\n", out)
    out = _EXCESS_BLANKS_RE.sub("\n\n\n", out)
    return out.strip()


def quick_cleanup(text: str) -> str:
    """Light cleanup for pasted text before it is stored in the queue."""
    out = str(text or "")
    out = out.replace("\r", "")
    out = re.sub(r"[ \t]+\n", "\n", out)
    out = re.sub(r"\n{4,}", "\n\n\n", out)
    out = re.sub(r"[ \t]{2,}", " ", out)
    return out.strip()


def _by_length(pairs) -> list[tuple[str, str]]:
    # Stable sort: equal-length patterns keep their given order
    return sorted(pairs, key=lambda pair: len(pair[0]), reverse=True)


def apply_dictionary(text: str, pairs) -> str:
    """Apply (from, to) literal substring replacements, longest `from` first."""
    out = text if isinstance(text, str) else ""
    for source, target in _by_length(pairs or []):
        if not source:
            continue
        out = out.replace(source, target)
    return out


def parse_dictionary(raw: str) -> list[tuple[str, str]]:
    """Parse "from => to" lines into replacement pairs, longest first."""
    pairs = []
    for line in str(raw or "").splitlines():
        stripped = line.strip()
        if not stripped or "=>" not in stripped:
            continue
        source, target = stripped.split("=>", 1)
        source = source.strip()
        if not source:
            continue
        pairs.append((source, target.strip()))
    return _by_length(pairs)


def expand_abbreviations(text: str, extra: dict | None = None) -> str:
    """Spell out common abbreviations (case-insensitive)."""
    mapping = dict(ABBREVIATIONS)
    if extra:
        mapping.update(extra)
    out = text
    for short, long in _by_length(mapping.items()):
        out = re.sub(rf"(?<!\w){re.escape(short)}", lambda _m, t=long: t, out, flags=re.IGNORECASE)
    return out


def guess_title(text: str) -> str:
    """First non-blank line, truncated for display."""
    for line in str(text or "").splitlines():
        first = " ".join(line.split())
        if first:
            if len(first) > TITLE_MAX_CHARS:
                return first[: TITLE_MAX_CHARS - 3] + "…"
            return first
    return UNTITLED
