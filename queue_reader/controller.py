"""Queue and session controller: everything around the playback engine."""

import logging
import time

from queue_reader.constants import (
    DEFAULT_HEADING_MODE,
    DEFAULT_SKIP,
    HEADING_MODES,
    SKIP_CHOICES,
    SLEEP_CHECK_INTERVAL,
)
from queue_reader.engine import PlaybackEngine, prepare
from queue_reader.errors import QueueReaderError, UnsupportedDeviceError
from queue_reader.estimator import clamp_rate
from queue_reader.models import EngineEvent, QueueItem, SleepTimer
from queue_reader.normalizer import guess_title, parse_dictionary, quick_cleanup
from queue_reader.storage import (
    add_listened,
    default_state,
    export_queue,
    import_queue,
    listened_on,
    load_state,
    normalize_item,
    save_state,
)

logger = logging.getLogger(__name__)


class QueueController:
    """Owns the queue, settings, sleep timer, and the engine instance.

    Reacts to engine events: records position, applies the sleep timer at
    item end, and advances to the next queued item. Never touches the
    engine's session directly, only its commands and events.
    """

    def __init__(self, device, scheduler, state_path: str, clock=time.time, notify=None):
        self.state_path = state_path
        self.scheduler = scheduler
        self.clock = clock
        self.notify = notify or (lambda kind, message: None)
        self.listeners = []

        state = load_state(state_path)
        self.settings = state["settings"]
        self.queue = [normalize_item(x) for x in state["queue"]]
        self.playback = state["playback"]
        self.sleep = SleepTimer(
            mode=state["sleep"].get("mode", "off"),
            end_at=float(state["sleep"].get("end_at", 0.0) or 0.0),
        )
        if self.sleep.mode == "minutes" and self.sleep.end_at <= self.clock():
            self.sleep = SleepTimer()
        self.dictionary_pairs = parse_dictionary(self.settings.get("dict_raw", ""))

        self.status = "Ready."
        self.spoken = ""
        self.error = ""
        self.session_listened = 0.0
        self._sleep_handle = None

        self.engine = PlaybackEngine(device, scheduler, on_event=self.handle_event)
        self.engine.rate = self.rate
        self.engine.dictionary_pairs = list(self.dictionary_pairs)

    def start(self) -> None:
        """Begin a live session: re-arm a persisted sleep timer."""
        if self.sleep.mode == "minutes" and self._sleep_handle is None:
            self._schedule_sleep_check()

    def shutdown(self) -> None:
        """Remember the position, stop narration, and disarm timers."""
        if self.engine.active:
            self._record_position()
        self._cancel_sleep_check()
        self.engine.stop()

    # --- persistence ---

    def to_state(self) -> dict:
        state = default_state()
        state["settings"] = dict(self.settings)
        state["queue"] = [item.to_dict() for item in self.queue]
        state["playback"] = dict(self.playback)
        state["sleep"] = {"mode": self.sleep.mode, "end_at": self.sleep.end_at}
        return state

    def save(self) -> None:
        save_state(self.state_path, self.to_state())

    # --- settings ---

    @property
    def rate(self) -> float:
        return clamp_rate(self.settings.get("rate", 1.0))

    @property
    def skip(self) -> int:
        skip = self.settings.get("skip", DEFAULT_SKIP)
        return skip if skip in SKIP_CHOICES else DEFAULT_SKIP

    @property
    def voice(self) -> str | None:
        return self.settings.get("voice") or None

    def set_rate(self, value) -> float:
        rate = clamp_rate(value)
        self.settings["rate"] = rate
        self.engine.set_rate(rate)
        self.save()
        return rate

    def set_skip(self, value) -> int:
        try:
            skip = int(value)
        except (TypeError, ValueError):
            skip = DEFAULT_SKIP
        self.settings["skip"] = skip if skip in SKIP_CHOICES else DEFAULT_SKIP
        self.save()
        return self.settings["skip"]

    def set_voice(self, voice_id: str | None) -> None:
        self.settings["voice"] = voice_id or ""
        self.save()

    def set_heading_mode(self, mode: str) -> str:
        self.settings["heading_mode"] = mode if mode in HEADING_MODES else DEFAULT_HEADING_MODE
        self.save()
        return self.settings["heading_mode"]

    def set_dictionary(self, raw: str) -> list[tuple[str, str]]:
        self.settings["dict_raw"] = raw or ""
        self.dictionary_pairs = parse_dictionary(raw)
        self.engine.set_dictionary(self.dictionary_pairs)
        self.save()
        return self.dictionary_pairs

    # --- queue editing ---

    def add_text(self, text: str, title: str | None = None, language_hint: str = "",
                 heading_mode: str | None = None, cleanup: bool = True, source: dict | None = None) -> QueueItem:
        """Add an item to the front of the queue."""
        body = quick_cleanup(text) if cleanup else str(text or "").strip()
        if not body:
            raise QueueReaderError("Nothing to add: text is empty.")
        item = QueueItem(
            title=(title or "").strip() or guess_title(body),
            text=body,
            source=source or {"type": "paste"},
            language_hint=(language_hint or "").strip(),
            heading_mode=heading_mode or self.settings.get("heading_mode", DEFAULT_HEADING_MODE),
        )
        self.queue.insert(0, item)
        self.save()
        return item

    def find(self, ref: str) -> QueueItem:
        """Look up an item by id or unique id prefix."""
        matches = [item for item in self.queue if item.id == ref]
        if not matches:
            matches = [item for item in self.queue if ref and item.id.startswith(ref)]
        if len(matches) != 1:
            raise QueueReaderError(f"No unique queue item matches '{ref}'.")
        return matches[0]

    def _index_of(self, item_id: str) -> int:
        for i, item in enumerate(self.queue):
            if item.id == item_id:
                return i
        return -1

    def remove(self, ref: str) -> QueueItem:
        item = self.find(ref)
        was_current = self.playback.get("item_id") == item.id
        self.queue = [x for x in self.queue if x.id != item.id]
        if was_current:
            if self.engine.active:
                self.stop_playback("Current item removed.")
            self._clear_position()
        self.save()
        return item

    def move(self, ref: str, delta: int) -> int:
        """Move an item up (negative) or down (positive). Returns its new index."""
        item = self.find(ref)
        index = self._index_of(item.id)
        target = min(len(self.queue) - 1, max(0, index + delta))
        if target != index:
            self.queue.insert(target, self.queue.pop(index))
            self.save()
        return target

    def edit(self, ref: str, title: str | None = None, text: str | None = None) -> QueueItem:
        item = self.find(ref)
        if text is not None:
            text = text.strip()
            if not text:
                raise QueueReaderError("Text cannot be empty.")
            item.text = text
        if title is not None:
            item.title = title.strip() or "Untitled"

        if self.playback.get("item_id") == item.id:
            if self.engine.active:
                self.play_item(item, 0)
            elif text is not None:
                self.playback["unit_index"] = 0
                self.playback["elapsed"] = 0.0
        self.save()
        return item

    def clear(self) -> None:
        if self.engine.active:
            self.stop_playback("Queue cleared.")
        self.queue = []
        self._clear_position()
        self.save()

    def import_items(self, data) -> int:
        """Replace the queue with imported items. Returns the item count."""
        items = import_queue(data)
        if self.engine.active:
            self.engine.stop()
        self.queue = items
        self._clear_position()
        self.save()
        return len(items)

    def export_items(self) -> dict:
        return export_queue(self.queue)

    # --- playback commands ---

    def require_device(self) -> None:
        if not self.engine.supported:
            raise UnsupportedDeviceError("No narration device available (ffplay and ffmpeg are required).")

    def current_item(self) -> QueueItem | None:
        item_id = self.playback.get("item_id")
        for item in self.queue:
            if item.id == item_id:
                return item
        return None

    def ensure_playable_item(self) -> QueueItem | None:
        if not self.queue:
            return None
        return self.current_item() or self.queue[0]

    def play_item(self, item: QueueItem, start_index: int = 0) -> None:
        self.playback["item_id"] = item.id
        self.playback["unit_index"] = start_index
        self.playback["elapsed"] = 0.0
        self.error = ""
        self.engine.play(
            item,
            start_index=start_index,
            voice=self.voice,
            rate=self.rate,
            dictionary_pairs=self.dictionary_pairs,
        )

    def toggle_play(self) -> None:
        """Pause/resume the active item, or start (or resume) the queue."""
        if not self.queue:
            self.notify("warning", "Queue is empty. Add text first.")
            return
        if self.engine.active:
            if self.engine.paused:
                self.engine.resume()
            else:
                self.engine.pause()
            return
        item = self.ensure_playable_item()
        start = self.playback.get("unit_index", 0) if item is self.current_item() else 0
        self.play_item(item, start)

    def _step_item(self, delta: int) -> None:
        if not self.queue:
            return
        index = self._index_of(self.playback.get("item_id", ""))
        target = min(len(self.queue) - 1, max(0, index + delta))
        self.play_item(self.queue[target], 0)

    def next_item(self) -> None:
        self._step_item(1)

    def prev_item(self) -> None:
        self._step_item(-1)

    def next_sentence(self) -> None:
        if not self.engine.active:
            self.toggle_play()
            return
        self.engine.next_unit()

    def prev_sentence(self) -> None:
        if not self.engine.active:
            self.toggle_play()
            return
        self.engine.prev_unit()

    def seek(self, direction: int) -> None:
        """Seek forward (positive) or back (negative) by the skip setting."""
        if not self.engine.active:
            return
        self.engine.seek_by_seconds(self.skip if direction >= 0 else -self.skip)

    def stop_playback(self, reason: str | None = None) -> None:
        self.engine.stop()
        if reason:
            self.status = reason
            self.notify("warning", reason)

    def _clear_position(self) -> None:
        self.playback.update({"item_id": "", "unit_index": 0, "elapsed": 0.0})

    # --- sleep timer ---

    def set_sleep(self, mode: str, minutes: float | None = None) -> SleepTimer:
        """Set the sleep timer: "off", "end" (end of item), or "minutes"."""
        self._cancel_sleep_check()
        if mode == "end":
            self.sleep = SleepTimer(mode="end_of_item")
        elif mode == "minutes":
            self.sleep = SleepTimer(mode="minutes", end_at=self.clock() + max(1.0, float(minutes or 0)) * 60)
            self._schedule_sleep_check()
        else:
            self.sleep = SleepTimer()
        self.save()
        return self.sleep

    def sleep_remaining(self) -> float:
        if self.sleep.mode != "minutes":
            return 0.0
        return max(0.0, self.sleep.end_at - self.clock())

    def _schedule_sleep_check(self) -> None:
        self._sleep_handle = self.scheduler.call_later(SLEEP_CHECK_INTERVAL, self._check_sleep)

    def _cancel_sleep_check(self) -> None:
        if self._sleep_handle is not None:
            self._sleep_handle.cancel()
        self._sleep_handle = None

    def _check_sleep(self) -> None:
        self._sleep_handle = None
        if self.sleep.mode != "minutes":
            return
        if self.clock() >= self.sleep.end_at:
            self.sleep = SleepTimer()
            self.stop_playback("Sleep timer ended.")
            self.save()
            return
        self._schedule_sleep_check()

    # --- engine events ---

    def handle_event(self, event: EngineEvent) -> None:
        if event.type == "playing":
            self.status = "Speaking."
        elif event.type == "paused":
            self.status = "Paused."
            self._record_position()
            self.save()
        elif event.type == "resumed":
            self.status = "Speaking."
        elif event.type == "stopped":
            self.status = "Stopped."
            self.save()
        elif event.type == "unit":
            self.spoken = event.text
            self.playback["unit_index"] = self.engine.unit_index
        elif event.type in ("tick", "seeked"):
            self._record_position(event.progress)
            if event.type == "seeked":
                self.save()
        elif event.type == "error":
            self.status = "Error."
            self.error = event.message
            self.notify("error", event.message)
            self.save()

        for listener in self.listeners:
            listener(event)

        if event.type == "itemEnd":
            self._on_item_end()

    def _record_position(self, progress=None) -> None:
        progress = progress or self.engine.progress()
        self.playback["unit_index"] = progress.unit_index
        self.playback["elapsed"] = progress.elapsed

    def _on_item_end(self) -> None:
        listened = self.engine.progress().total
        add_listened(self.state_path, listened)
        self.session_listened += listened

        index = self._index_of(self.playback.get("item_id", ""))
        has_next = 0 <= index < len(self.queue) - 1

        if self.sleep.end_of_item:
            self.sleep = SleepTimer()
            self.stop_playback("Sleep timer ended at item end.")
            # Next session picks up with the following item
            self._clear_position()
            if has_next:
                self.playback["item_id"] = self.queue[index + 1].id
            self.save()
            return

        if has_next:
            self.play_item(self.queue[index + 1], 0)
            return
        self.stop_playback("Queue finished.")
        self._clear_position()
        self.save()

    # --- stats ---

    def queue_remaining(self) -> float:
        """Estimated seconds left from the current item to the queue's end."""
        current = self.current_item()
        start = self._index_of(current.id) if current else 0
        total = sum(prepare(item, self.rate, self.dictionary_pairs).total for item in self.queue[start:])
        if current is not None:
            total -= self.engine.progress().elapsed if self.engine.active else self.playback.get("elapsed", 0.0)
        return max(0.0, total)

    def stats(self) -> dict:
        return {
            "items": len(self.queue),
            "remaining": self.queue_remaining(),
            "today": listened_on(self.state_path),
            "session": self.session_listened,
        }
