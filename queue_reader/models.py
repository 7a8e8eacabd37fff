"""Data models for queue playback."""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum

from queue_reader.constants import DEFAULT_HEADING_MODE, HEADING_MODES


@dataclass
class Unit:
    kind: str          # "speech" or "pause"
    text: str = ""     # speech units only
    pause_ms: int = 0  # pause units only

    @property
    def is_pause(self) -> bool:
        return self.kind == "pause"

    def to_dict(self) -> dict:
        if self.is_pause:
            return {"kind": "pause", "pause_ms": self.pause_ms}
        return {"kind": "speech", "text": self.text}


@dataclass
class Prepared:
    units: list[Unit]
    timeline: list[float]
    total: float


@dataclass
class Progress:
    elapsed: float = 0.0
    remaining: float = 0.0
    total: float = 0.0
    unit_index: int = 0
    unit_count: int = 0


@dataclass
class EngineEvent:
    type: str                  # playing, paused, resumed, stopped, unit, tick, seeked, itemEnd, error
    text: str = ""             # unit events
    message: str = ""          # error events
    progress: Progress | None = None


@dataclass
class DeviceSignal:
    kind: str                  # start, boundary, end, error
    char_index: int = 0
    message: str = ""


@dataclass
class Voice:
    id: str
    name: str
    lang: str
    gender: str = ""


class PlaybackState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    SPEAKING = "speaking"
    PAUSED = "paused"
    ERROR = "error"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class QueueItem:
    title: str
    text: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: int = field(default_factory=_now_ms)
    source: dict = field(default_factory=lambda: {"type": "paste"})
    language_hint: str = ""
    heading_mode: str = DEFAULT_HEADING_MODE

    def __post_init__(self):
        if self.heading_mode not in HEADING_MODES:
            self.heading_mode = DEFAULT_HEADING_MODE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "text": self.text,
            "created_at": self.created_at,
            "source": dict(self.source),
            "language_hint": self.language_hint,
            "heading_mode": self.heading_mode,
        }


@dataclass
class SleepTimer:
    mode: str = "off"          # "off", "end_of_item", or "minutes"
    end_at: float = 0.0        # epoch seconds, "minutes" mode only

    @property
    def end_of_item(self) -> bool:
        return self.mode == "end_of_item"
