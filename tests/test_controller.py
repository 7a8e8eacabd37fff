"""Tests for the queue controller."""

import json
import os

import pytest

from queue_reader.constants import SLEEP_CHECK_INTERVAL, STATE_VERSION
from queue_reader.controller import QueueController
from queue_reader.errors import QueueReaderError, StateImportError, UnsupportedDeviceError
from queue_reader.models import PlaybackState
from queue_reader.storage import listened_on

from conftest import FakeDevice, FakeScheduler

SAMPLE_TEXT = "Alpha one two three.\n\nBravo four five six.\n\nCharlie seven eight nine."


@pytest.fixture
def clock():
    now = [1000.0]
    return now


@pytest.fixture
def notices():
    return []


@pytest.fixture
def controller(device, scheduler, state_path, clock, notices):
    return QueueController(
        device,
        scheduler,
        state_path,
        clock=lambda: clock[0],
        notify=lambda kind, message: notices.append((kind, message)),
    )


def _reopen(state_path, device=None):
    return QueueController(device or FakeDevice(), FakeScheduler(), state_path)


# --- queue editing ---

def test_add_text_inserts_at_front_and_persists(controller, state_path):
    first = controller.add_text("Older text.")
    second = controller.add_text("  Newer text.  ", title="  Newest  ", language_hint=" fr ")
    assert [i.id for i in controller.queue] == [second.id, first.id]
    assert second.title == "Newest"
    assert second.text == "Newer text."
    assert second.language_hint == "fr"
    assert first.title == "Older text."

    reopened = _reopen(state_path)
    assert [i.id for i in reopened.queue] == [second.id, first.id]


def test_add_text_empty_raises(controller):
    with pytest.raises(QueueReaderError):
        controller.add_text("   \n\n ")
    assert controller.queue == []


def test_add_text_uses_heading_mode_setting(controller):
    controller.set_heading_mode("pause")
    assert controller.add_text("Body.").heading_mode == "pause"
    assert controller.add_text("Body.", heading_mode="off").heading_mode == "off"
    assert controller.set_heading_mode("loud") == "cue"


def test_find_by_prefix(controller):
    item = controller.add_text("Findable.")
    assert controller.find(item.id) is item
    assert controller.find(item.id[:6]) is item
    with pytest.raises(QueueReaderError):
        controller.find("not-an-id")
    with pytest.raises(QueueReaderError):
        controller.find("")


def test_move(controller):
    a = controller.add_text("A.")
    b = controller.add_text("B.")
    c = controller.add_text("C.")
    assert [i.id for i in controller.queue] == [c.id, b.id, a.id]
    assert controller.move(a.id, -1) == 1
    assert [i.id for i in controller.queue] == [c.id, a.id, b.id]
    assert controller.move(c.id, -1) == 0
    assert controller.move(b.id, 5) == 2


def test_edit_inactive_item(controller):
    item = controller.add_text("Original.")
    controller.edit(item.id, title="Renamed")
    assert item.title == "Renamed"
    controller.edit(item.id, title="   ")
    assert item.title == "Untitled"
    with pytest.raises(QueueReaderError):
        controller.edit(item.id, text="  ")


def test_edit_active_item_restarts(controller, device):
    item = controller.add_text(SAMPLE_TEXT)
    controller.toggle_play()
    controller.next_sentence()
    controller.edit(item.id, text="Replacement words here.")
    assert device.spoken[-1]["text"] == "Replacement words here."
    assert controller.playback["unit_index"] == 0
    assert controller.engine.unit_index == 0


def test_remove_current_stops_playback(controller, notices):
    item = controller.add_text(SAMPLE_TEXT)
    controller.toggle_play()
    controller.remove(item.id)
    assert controller.queue == []
    assert controller.engine.state == PlaybackState.IDLE
    assert controller.playback["item_id"] == ""
    assert controller.status == "Current item removed."
    assert ("warning", "Current item removed.") in notices


def test_clear(controller, state_path):
    controller.add_text("One.")
    controller.add_text("Two.")
    controller.toggle_play()
    controller.clear()
    assert controller.queue == []
    assert not controller.engine.active
    assert _reopen(state_path).queue == []


def test_export_and_import(controller, tmp_path):
    controller.add_text("Keep me.")
    exported = controller.export_items()
    assert exported["v"] == 1
    assert len(exported["queue"]) == 1

    controller.clear()
    assert controller.import_items(json.loads(json.dumps(exported))) == 1
    assert controller.queue[0].text == "Keep me."

    with pytest.raises(StateImportError):
        controller.import_items({"nothing": "here"})
    assert len(controller.queue) == 1


# --- settings ---

def test_settings_persist_and_clamp(controller, state_path):
    assert controller.set_rate(5) == 2.0
    assert controller.set_skip("30") == 30
    assert controller.set_skip(7) == 15
    controller.set_voice("en-GB-SoniaNeural")
    pairs = controller.set_dictionary("SQL => sequel\nbad line")
    assert pairs == [("SQL", "sequel")]

    reopened = _reopen(state_path)
    assert reopened.rate == 2.0
    assert reopened.skip == 15
    assert reopened.voice == "en-GB-SoniaNeural"
    assert reopened.dictionary_pairs == [("SQL", "sequel")]


def test_voice_and_rate_reach_device(controller, device):
    controller.set_voice("en-GB-RyanNeural")
    controller.set_rate(1.5)
    controller.add_text("Hello there.", language_hint="en-GB")
    controller.toggle_play()
    assert device.spoken[-1]["voice"] == "en-GB-RyanNeural"
    assert device.spoken[-1]["rate"] == 1.5
    assert device.spoken[-1]["language_hint"] == "en-GB"


def test_set_rate_while_playing_restarts_unit(controller, device):
    controller.add_text(SAMPLE_TEXT)
    controller.toggle_play()
    controller.set_rate(2.0)
    assert len(device.spoken) == 2
    assert device.spoken[-1]["rate"] == 2.0


# --- playback ---

def test_toggle_play_empty_queue(controller, device, notices):
    controller.toggle_play()
    assert device.spoken == []
    assert notices == [("warning", "Queue is empty. Add text first.")]


def test_toggle_play_pause_resume(controller, device):
    controller.add_text(SAMPLE_TEXT)
    controller.toggle_play()
    assert controller.status == "Speaking."
    controller.toggle_play()
    assert controller.status == "Paused."
    assert device.pauses == 1
    controller.toggle_play()
    assert controller.status == "Speaking."
    assert device.resumes == 1


def test_unit_event_updates_spoken_text(controller, device):
    controller.add_text(SAMPLE_TEXT)
    controller.toggle_play()
    device.start()
    assert controller.spoken == "Alpha one two three."


def test_seek_uses_skip_setting(controller, device):
    controller.add_text(SAMPLE_TEXT)
    controller.set_skip(10)
    controller.toggle_play()
    controller.seek(1)
    assert controller.engine.unit_index == 2
    controller.seek(-1)
    assert controller.engine.unit_index == 0


def test_auto_advance_and_queue_finished(controller, device, state_path):
    second = controller.add_text("Second item text.")
    first = controller.add_text("First item text.")
    controller.toggle_play()
    assert device.spoken[-1]["text"] == "First item text."

    device.finish()
    assert device.spoken[-1]["text"] == "Second item text."
    assert controller.playback["item_id"] == second.id

    device.finish()
    assert controller.status == "Queue finished."
    assert controller.playback["item_id"] == ""
    assert not controller.engine.active
    assert first.id != second.id


def test_next_and_prev_item(controller, device):
    controller.add_text("Second item text.")
    controller.add_text("First item text.")
    controller.toggle_play()
    controller.next_item()
    assert device.spoken[-1]["text"] == "Second item text."
    controller.next_item()
    assert device.spoken[-1]["text"] == "Second item text."
    controller.prev_item()
    assert device.spoken[-1]["text"] == "First item text."


def test_listening_time_recorded(controller, device, state_path):
    controller.add_text("First item text.")
    controller.toggle_play()
    device.finish()
    expected = 3 / 185 * 60
    assert listened_on(state_path) == pytest.approx(expected)
    assert controller.session_listened == pytest.approx(expected)
    assert controller.stats()["today"] == pytest.approx(expected)


def test_resume_position_across_sessions(controller, device, state_path):
    item = controller.add_text(SAMPLE_TEXT)
    controller.toggle_play()
    controller.next_sentence()
    controller.toggle_play()
    assert controller.playback == {"item_id": item.id, "unit_index": 1, "elapsed": pytest.approx(4 / 185 * 60)}

    device2 = FakeDevice()
    reopened = _reopen(state_path, device2)
    assert reopened.current_item().id == item.id
    reopened.toggle_play()
    assert device2.spoken[0]["text"] == "Bravo four five six."


def test_shutdown_records_position(controller, state_path):
    controller.add_text(SAMPLE_TEXT)
    controller.toggle_play()
    controller.next_sentence()
    controller.next_sentence()
    controller.shutdown()
    assert not controller.engine.active
    assert _reopen(state_path).playback["unit_index"] == 2


def test_device_error_surfaces(controller, device, notices):
    controller.add_text(SAMPLE_TEXT)
    controller.toggle_play()
    device.send("error", message="network down")
    assert controller.status == "Error."
    assert controller.error == "network down"
    assert ("error", "network down") in notices

    # Play again retries from the stored unit
    controller.toggle_play()
    assert controller.engine.active
    assert controller.error == ""


def test_require_device(scheduler, state_path):
    controller = QueueController(FakeDevice(supported=False), scheduler, state_path)
    with pytest.raises(UnsupportedDeviceError):
        controller.require_device()


def test_listeners_receive_events(controller, device):
    seen = []
    controller.listeners.append(lambda event: seen.append(event.type))
    controller.add_text("Hello.")
    controller.toggle_play()
    device.finish()
    assert seen[:3] == ["playing", "unit", "itemEnd"]
    assert seen[-1] == "stopped"


# --- sleep timer ---

def test_sleep_end_of_item(controller, device):
    second = controller.add_text("Second item text.")
    controller.add_text("First item text.")
    controller.set_sleep("end")
    assert controller.sleep.end_of_item
    controller.toggle_play()
    device.finish()

    assert len(device.spoken) == 1
    assert controller.status == "Sleep timer ended at item end."
    assert controller.sleep.mode == "off"
    assert controller.playback["item_id"] == second.id

    controller.toggle_play()
    assert device.spoken[-1]["text"] == "Second item text."


def test_sleep_minutes(controller, device, scheduler, clock):
    controller.add_text(SAMPLE_TEXT)
    controller.toggle_play()
    controller.set_sleep("minutes", 1)
    assert controller.sleep_remaining() == pytest.approx(60)

    scheduler.advance(SLEEP_CHECK_INTERVAL)
    assert controller.engine.active

    clock[0] += 61
    scheduler.advance(SLEEP_CHECK_INTERVAL)
    assert not controller.engine.active
    assert controller.status == "Sleep timer ended."
    assert controller.sleep.mode == "off"
    assert controller.sleep_remaining() == 0


def test_sleep_off_cancels_check(controller, scheduler):
    controller.set_sleep("minutes", 5)
    controller.set_sleep("off")
    assert controller.sleep.mode == "off"
    assert all(h.cancelled for h in scheduler.handles)


def test_persisted_sleep_timer(controller, state_path, clock):
    controller.set_sleep("minutes", 10)
    scheduler = FakeScheduler()
    live = QueueController(FakeDevice(), scheduler, state_path, clock=lambda: clock[0])
    assert live.sleep.mode == "minutes"
    assert scheduler.handles == []
    live.start()
    assert len(scheduler.pending()) == 1

    expired = QueueController(FakeDevice(), FakeScheduler(), state_path, clock=lambda: clock[0] + 3600)
    assert expired.sleep.mode == "off"


def test_unparseable_sleep_timer_loads_as_off(state_path):
    os.makedirs(os.path.dirname(state_path))
    with open(state_path, "w") as f:
        json.dump({"v": STATE_VERSION, "sleep": {"mode": "minutes", "end_at": "soon"}}, f)
    controller = _reopen(state_path)
    assert controller.sleep.mode == "off"
    assert controller.sleep_remaining() == 0.0


# --- stats ---

def test_stats(controller):
    controller.add_text(SAMPLE_TEXT)
    controller.add_text("Hello.")
    stats = controller.stats()
    assert stats["items"] == 2
    assert stats["remaining"] == pytest.approx((3 * 4 + 1) / 185 * 60)
    assert stats["today"] == 0
    assert stats["session"] == 0
