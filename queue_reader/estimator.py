"""Duration estimates from a words-per-minute model."""

import re

from queue_reader.constants import (
    BASE_WPM,
    MIN_WPM,
    PAUSE_MAX_MS,
    PAUSE_MIN_MS,
    RATE_MAX,
    RATE_MIN,
    SPEECH_MAX_SECONDS,
    SPEECH_MIN_SECONDS,
)
from queue_reader.models import Unit

_WORD_RE = re.compile(r"\w+")


def clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def clamp_rate(rate) -> float:
    """Coerce a playback rate into the supported range (bad input → 1.0)."""
    try:
        value = float(rate)
    except (TypeError, ValueError):
        return 1.0
    if value != value:  # NaN
        return 1.0
    return clamp(value, RATE_MIN, RATE_MAX)


def count_words(text: str) -> int:
    return len(_WORD_RE.findall(text or ""))


def estimate_speech_seconds(text: str, rate: float) -> float:
    """Estimated narration time for a piece of text.

    Effective WPM is BASE_WPM scaled by the clamped rate, floored at MIN_WPM.
    The result is bounded so one broken segment cannot dominate a timeline.
    """
    wpm = BASE_WPM * clamp_rate(rate)
    seconds = count_words(text) / max(MIN_WPM, wpm) * 60
    return clamp(seconds, SPEECH_MIN_SECONDS, SPEECH_MAX_SECONDS)


def estimate_seconds(unit: Unit, rate: float) -> float:
    """Estimated duration of one unit in seconds."""
    if unit.is_pause:
        return clamp((unit.pause_ms or 0) / 1000, PAUSE_MIN_MS / 1000, PAUSE_MAX_MS / 1000)
    return estimate_speech_seconds(unit.text, rate)


def estimate_timeline(units: list[Unit], rate: float) -> tuple[list[float], float]:
    """Per-unit estimates and their sum."""
    timeline = [estimate_seconds(unit, rate) for unit in units]
    return timeline, sum(timeline)


def text_stats(text: str, rate: float) -> tuple[int, float]:
    """Word count and whole-text estimate, used for queue listings."""
    return count_words(text), estimate_speech_seconds(text, rate)


def format_time(seconds: float) -> str:
    """Format seconds as M:SS."""
    whole = max(0, int(seconds or 0))
    minutes, rest = divmod(whole, 60)
    return f"{minutes}:{rest:02d}"
