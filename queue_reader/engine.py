"""Playback engine: drives a narration device one unit at a time."""

import logging

from queue_reader.constants import (
    DEFAULT_HEADING_MODE,
    DEFAULT_RATE,
    PAUSE_UNIT_LABEL,
    TICK_INTERVAL,
)
from queue_reader.estimator import clamp, clamp_rate, estimate_timeline
from queue_reader.models import EngineEvent, PlaybackState, Prepared, Progress
from queue_reader.normalizer import apply_dictionary, expand_abbreviations, normalize
from queue_reader.segmenter import segment

logger = logging.getLogger(__name__)

UNSUPPORTED_MESSAGE = "Speech synthesis is not available on this system."
SPEECH_FAILED_MESSAGE = "Speech failed. Try a different voice."


def prepare(item, rate: float, dictionary_pairs=None) -> Prepared:
    """Run text → normalize → dictionary → segment → estimate.

    Pure: never starts narration and never raises on odd input.
    """
    text = normalize(getattr(item, "text", ""))
    text = apply_dictionary(text, dictionary_pairs or [])
    text = expand_abbreviations(text)
    units = segment(text, getattr(item, "heading_mode", DEFAULT_HEADING_MODE))
    timeline, total = estimate_timeline(units, rate)
    return Prepared(units=units, timeline=timeline, total=total)


class PlaybackEngine:
    """State machine for one "now playing" item.

    States: idle → preparing → speaking ⇄ paused, back to idle on stop or
    when the item finishes, and error on a device failure. Every dispatch
    bumps a generation counter; device callbacks and timers carry the
    generation they were issued for and are dropped when it is stale. That
    covers both late signals from a cancelled utterance and the engine's own
    cancellations, so neither surfaces as an error.

    Events go to `on_event` as EngineEvent objects. What plays after
    "itemEnd" is the caller's decision.
    """

    def __init__(self, device, scheduler, on_event=None):
        self.device = device
        self.scheduler = scheduler
        self.on_event = on_event or (lambda event: None)
        self.supported = device.supported()
        if not self.supported:
            logger.warning("Narration device unavailable: %s", type(device).__name__)

        self.state = PlaybackState.IDLE
        self.voice: str | None = None
        self.rate = DEFAULT_RATE
        self.dictionary_pairs: list[tuple[str, str]] = []

        self._generation = 0
        self._pause_timer = None
        self._pause_deadline: float | None = None
        self._tick_timer = None
        self._reset_session()

    # --- session bookkeeping ---

    def _reset_session(self) -> None:
        self.item = None
        self.units = []
        self.timeline = []
        self.total = 0.0
        self.unit_index = 0
        self.unit_started_at: float | None = None
        self.boundary_char = 0
        self.boundary_text_len = 0
        self._within_floor = 0.0
        self._paused_at: float | None = None
        self._pause_remaining: float | None = None
        self._finished = False
        # Utterance ended while paused; advance on resume
        self._end_pending = False
        # Elapsed time already accrued before `_anchor_index` (rate changes)
        self._anchor_index = 0
        self._anchor_elapsed = 0.0
        self._starts: list[float] = []

    def _load(self, prepared: Prepared) -> None:
        self.units = prepared.units
        self.timeline = prepared.timeline
        self._rebuild_offsets()

    def _rebuild_offsets(self) -> None:
        """Cumulative start time of every unit, honoring the elapsed anchor."""
        starts = [0.0] * len(self.timeline)
        anchor = min(self._anchor_index, len(self.timeline))
        acc = self._anchor_elapsed
        for i in range(anchor, len(self.timeline)):
            starts[i] = acc
            acc += self.timeline[i]
        self.total = acc
        back = self._anchor_elapsed
        for i in range(anchor - 1, -1, -1):
            back -= self.timeline[i]
            starts[i] = max(0.0, back)
        self._starts = starts

    @property
    def active(self) -> bool:
        return self.state in (PlaybackState.SPEAKING, PlaybackState.PAUSED)

    @property
    def paused(self) -> bool:
        return self.state == PlaybackState.PAUSED

    def _emit(self, event: EngineEvent) -> None:
        self.on_event(event)

    # --- commands ---

    def prepare(self, item, rate: float, dictionary_pairs=None) -> Prepared:
        return prepare(item, rate, dictionary_pairs)

    def play(self, item, start_index: int = 0, voice: str | None = None, rate: float | None = None,
             dictionary_pairs=None) -> None:
        """Replace the session with `item` and start speaking at `start_index`."""
        if not self.supported:
            self._emit(EngineEvent(type="error", message=UNSUPPORTED_MESSAGE))
            return

        self._cancel_in_flight()
        self.state = PlaybackState.PREPARING
        self.voice = voice
        if rate is not None:
            self.rate = clamp_rate(rate)
        if dictionary_pairs is not None:
            self.dictionary_pairs = list(dictionary_pairs)

        self._reset_session()
        self.item = item
        self._load(prepare(item, self.rate, self.dictionary_pairs))
        try:
            index = int(start_index or 0)
        except (TypeError, ValueError):
            index = 0
        self.unit_index = int(clamp(index, 0, len(self.units) - 1))
        logger.debug("Playing %r from unit %d/%d", getattr(item, "title", ""), self.unit_index, len(self.units))

        self.state = PlaybackState.SPEAKING
        self._emit(EngineEvent(type="playing"))
        self._speak_current()
        self._start_ticks()

    def pause(self) -> None:
        if self.state != PlaybackState.SPEAKING:
            return
        self.device.pause()
        now = self.scheduler.now()
        self._paused_at = now
        if self._pause_timer is not None:
            self._pause_remaining = max(0.0, self._pause_deadline - now)
            self._cancel_pause_timer()
        self.state = PlaybackState.PAUSED
        self._emit(EngineEvent(type="paused"))

    def resume(self) -> None:
        if self.state != PlaybackState.PAUSED:
            return
        self.device.resume()
        now = self.scheduler.now()
        if self.unit_started_at is not None and self._paused_at is not None:
            self.unit_started_at += now - self._paused_at
        self._paused_at = None
        if self._pause_remaining is not None:
            self._schedule_pause_end(self._pause_remaining, self._generation)
            self._pause_remaining = None
        self.state = PlaybackState.SPEAKING
        self._emit(EngineEvent(type="resumed"))
        if self._end_pending:
            self._end_pending = False
            self._advance()

    def stop(self) -> None:
        """Cancel everything, discard the session, and return to idle."""
        self._cancel_in_flight()
        self._reset_session()
        self.state = PlaybackState.IDLE
        self._emit(EngineEvent(type="stopped"))

    def next_unit(self) -> None:
        if not self.active:
            return
        self._move_to(self.unit_index + 1)

    def prev_unit(self) -> None:
        if not self.active:
            return
        self._move_to(self.unit_index - 1)

    def seek_by_seconds(self, delta: float) -> None:
        """Jump by `delta` seconds of estimated time.

        The landed unit restarts from its beginning: the device cannot seek
        inside an utterance, so the intra-unit part of the target is dropped
        and progress() right after a seek reports the start of that unit.
        """
        if not self.active:
            return
        current = self.progress()
        target = clamp(current.elapsed + delta, 0.0, current.total)
        self._move_to(self._index_at(target))
        self._emit(EngineEvent(type="seeked", progress=self.progress()))

    def set_rate(self, rate: float) -> None:
        """Change the rate; an active session is re-prepared going forward."""
        self.rate = clamp_rate(rate)
        self._reprepare()

    def set_dictionary(self, dictionary_pairs) -> None:
        self.dictionary_pairs = list(dictionary_pairs or [])
        self._reprepare()

    def _reprepare(self) -> None:
        if not self.active or self.item is None:
            return
        accrued = self._starts[self.unit_index]
        prepared = prepare(self.item, self.rate, self.dictionary_pairs)
        index = min(self.unit_index, len(prepared.units) - 1)
        self._anchor_index = index
        self._anchor_elapsed = accrued
        self._load(prepared)
        logger.debug("Re-prepared at rate %.2f: %d units, total %.1fs", self.rate, len(self.units), self.total)
        self._move_to(index)

    # --- queries ---

    def _clock_within(self) -> float:
        if self.unit_started_at is None:
            return 0.0
        now = self.scheduler.now()
        paused = now - self._paused_at if self._paused_at is not None else 0.0
        return now - self.unit_started_at - paused

    def _within(self) -> float:
        estimate = self.timeline[self.unit_index]
        unit = self.units[self.unit_index]
        if not unit.is_pause and self.boundary_char > 0 and self.boundary_text_len > 0:
            within = self.boundary_char / self.boundary_text_len * estimate
            return clamp(max(within, self._within_floor), 0.0, estimate)
        return clamp(self._clock_within(), 0.0, estimate)

    def progress(self) -> Progress:
        """Estimated position. Read-only; safe to call at any time."""
        count = len(self.units)
        if not count:
            return Progress()
        if self._finished:
            elapsed = self.total
        else:
            elapsed = clamp(self._starts[self.unit_index] + self._within(), 0.0, self.total)
        return Progress(
            elapsed=elapsed,
            remaining=max(0.0, self.total - elapsed),
            total=self.total,
            unit_index=self.unit_index,
            unit_count=count,
        )

    def snapshot(self) -> dict:
        """Plain data describing the session, for the caller to persist."""
        return {
            "item_id": getattr(self.item, "id", ""),
            "units": [unit.to_dict() for unit in self.units],
            "timeline": list(self.timeline),
            "unit_index": self.unit_index,
            "elapsed": self.progress().elapsed,
        }

    def _index_at(self, target: float) -> int:
        """First unit whose cumulative end is at or after `target`."""
        for i, start in enumerate(self._starts):
            if target <= start + self.timeline[i]:
                return i
        return len(self.units) - 1

    # --- dispatch ---

    def _move_to(self, index: int) -> None:
        self._cancel_utterance()
        self.unit_index = int(clamp(index, 0, len(self.units) - 1))
        if self.state == PlaybackState.PAUSED:
            self._paused_at = None
            self._pause_remaining = None
            self.state = PlaybackState.SPEAKING
            self._emit(EngineEvent(type="resumed"))
        self._speak_current()

    def _speak_current(self) -> None:
        self._generation += 1
        generation = self._generation
        self._end_pending = False

        if self.unit_index >= len(self.units):
            self._finish()
            return

        unit = self.units[self.unit_index]
        self.unit_started_at = self.scheduler.now()
        self.boundary_char = 0
        self.boundary_text_len = 0
        self._within_floor = 0.0

        if unit.is_pause:
            self._emit(EngineEvent(type="unit", text=PAUSE_UNIT_LABEL))
            self._schedule_pause_end(self.timeline[self.unit_index], generation)
            return

        self.boundary_text_len = len(unit.text)
        language_hint = getattr(self.item, "language_hint", "")
        self.device.speak(
            unit.text,
            self.voice,
            self.rate,
            language_hint,
            lambda signal: self._on_signal(generation, signal),
        )

    def _schedule_pause_end(self, seconds: float, generation: int) -> None:
        self._pause_deadline = self.scheduler.now() + seconds
        self._pause_timer = self.scheduler.call_later(seconds, lambda: self._on_pause_end(generation))

    def _on_pause_end(self, generation: int) -> None:
        if generation != self._generation or self.state != PlaybackState.SPEAKING:
            return
        self._pause_timer = None
        self._advance()

    def _on_signal(self, generation: int, signal) -> None:
        if generation != self._generation or not self.active:
            logger.debug("Ignoring stale %s signal (generation %d)", signal.kind, generation)
            return

        if signal.kind == "start":
            self._emit(EngineEvent(type="unit", text=self.units[self.unit_index].text))
        elif signal.kind == "boundary":
            self._within_floor = self._within()
            index = int(clamp(signal.char_index, 0, self.boundary_text_len))
            self.boundary_char = max(self.boundary_char, index)
        elif signal.kind == "end":
            if self.state == PlaybackState.PAUSED:
                self._end_pending = True
                return
            self._advance()
        elif signal.kind == "error":
            self._fail(signal.message or SPEECH_FAILED_MESSAGE)

    def _advance(self) -> None:
        self.unit_index += 1
        if self.unit_index >= len(self.units):
            self._finish()
        else:
            self._speak_current()

    def _finish(self) -> None:
        self.unit_index = len(self.units) - 1
        self._finished = True
        self._cancel_timers()
        self.state = PlaybackState.IDLE
        logger.debug("Finished %r", getattr(self.item, "title", ""))
        self._emit(EngineEvent(type="itemEnd"))

    def _fail(self, message: str) -> None:
        logger.error("Narration failed at unit %d: %s", self.unit_index, message)
        self._cancel_in_flight()
        self.state = PlaybackState.ERROR
        self._emit(EngineEvent(type="error", message=message))

    # --- timers and cancellation ---

    def _start_ticks(self) -> None:
        self._cancel_tick_timer()
        if self.active:
            self._tick_timer = self.scheduler.call_later(TICK_INTERVAL, self._on_tick)

    def _on_tick(self) -> None:
        self._tick_timer = None
        if not self.active:
            return
        self._emit(EngineEvent(type="tick", progress=self.progress()))
        self._start_ticks()

    def _cancel_pause_timer(self) -> None:
        if self._pause_timer is not None:
            self._pause_timer.cancel()
        self._pause_timer = None
        self._pause_deadline = None

    def _cancel_tick_timer(self) -> None:
        if self._tick_timer is not None:
            self._tick_timer.cancel()
        self._tick_timer = None

    def _cancel_timers(self) -> None:
        self._cancel_pause_timer()
        self._cancel_tick_timer()

    def _cancel_utterance(self) -> None:
        # Bump first so anything the device delivers while cancelling is stale
        self._generation += 1
        self._cancel_pause_timer()
        self.device.cancel_all()

    def _cancel_in_flight(self) -> None:
        self._cancel_utterance()
        self._cancel_tick_timer()
