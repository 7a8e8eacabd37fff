"""Shared fixtures for queue reader tests."""

import pytest

from queue_reader.models import DeviceSignal, QueueItem


class FakeHandle:
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Manual clock: callbacks only fire when the test advances time."""

    def __init__(self):
        self.time = 0.0
        self.handles = []

    def now(self):
        return self.time

    def call_later(self, delay, callback):
        handle = FakeHandle(self.time + max(0.0, delay), callback)
        self.handles.append(handle)
        return handle

    def pending(self):
        return [h for h in self.handles if not h.cancelled]

    def advance(self, seconds):
        """Move the clock forward, firing due callbacks in time order."""
        target = self.time + seconds
        while True:
            due = sorted((h for h in self.pending() if h.when <= target), key=lambda h: h.when)
            if not due:
                break
            handle = due[0]
            self.handles.remove(handle)
            self.time = max(self.time, handle.when)
            handle.callback()
        self.time = target


class FakeDevice:
    """Records speak() calls; tests drive signals by hand."""

    def __init__(self, supported=True):
        self._supported = supported
        self.spoken = []
        self.listeners = []
        self.pauses = 0
        self.resumes = 0
        self.cancels = 0

    def supported(self):
        return self._supported

    async def list_voices(self):
        return []

    def speak(self, text, voice, rate, language_hint, listener):
        self.spoken.append({"text": text, "voice": voice, "rate": rate, "language_hint": language_hint})
        self.listeners.append(listener)

    def pause(self):
        self.pauses += 1

    def resume(self):
        self.resumes += 1

    def cancel_all(self):
        self.cancels += 1

    # --- test helpers ---

    def send(self, kind, char_index=0, message="", listener=-1):
        self.listeners[listener](DeviceSignal(kind=kind, char_index=char_index, message=message))

    def start(self):
        self.send("start")

    def finish(self):
        """Start and end the most recent utterance."""
        self.send("start")
        self.send("end")


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def device():
    return FakeDevice()


@pytest.fixture
def sample_item():
    """Three paragraphs of four words each: three speech units."""
    return QueueItem(
        title="Sample",
        text="Alpha one two three.\n\nBravo four five six.\n\nCharlie seven eight nine.",
    )


@pytest.fixture
def short_item():
    return QueueItem(title="Short", text="# Intro\n\nOne two three four. Five six seven eight.")


@pytest.fixture
def state_path(tmp_path):
    return str(tmp_path / "state" / "state.json")
