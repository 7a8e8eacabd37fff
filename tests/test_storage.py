"""Tests for the state file, queue import/export, and daily totals."""

import json
import os
from datetime import date

import pytest

from queue_reader.constants import STATE_VERSION
from queue_reader.errors import StateImportError
from queue_reader.models import QueueItem
from queue_reader.storage import (
    add_listened,
    default_state,
    export_queue,
    import_queue,
    is_valid_item,
    listened_on,
    load_daily,
    load_state,
    normalize_item,
    read_json,
    resolve_state_path,
    save_state,
)


def test_resolve_state_path(monkeypatch):
    monkeypatch.delenv("QUEUE_READER_STATE", raising=False)
    assert resolve_state_path("/tmp/x.json") == "/tmp/x.json"
    assert resolve_state_path().endswith(os.path.join(".queue_reader", "state.json"))
    monkeypatch.setenv("QUEUE_READER_STATE", "/tmp/env.json")
    assert resolve_state_path() == "/tmp/env.json"


def test_load_missing_file_gives_defaults(state_path):
    assert load_state(state_path) == default_state()


def test_save_and_load(state_path):
    state = default_state()
    state["settings"]["rate"] = 1.5
    state["queue"] = [QueueItem(title="T", text="Body.", id="abc").to_dict()]
    state["playback"]["item_id"] = "abc"
    save_state(state_path, state)

    loaded = load_state(state_path)
    assert loaded["settings"]["rate"] == 1.5
    assert loaded["queue"][0]["id"] == "abc"
    assert loaded["playback"]["item_id"] == "abc"
    assert not os.path.exists(state_path + ".tmp")


def test_load_merges_over_defaults(state_path):
    os.makedirs(os.path.dirname(state_path))
    with open(state_path, "w") as f:
        json.dump({"v": STATE_VERSION, "settings": {"rate": 1.25}}, f)
    loaded = load_state(state_path)
    assert loaded["settings"]["rate"] == 1.25
    assert loaded["settings"]["skip"] == 15
    assert loaded["queue"] == []


def test_load_corrupt_file(state_path, caplog):
    os.makedirs(os.path.dirname(state_path))
    with open(state_path, "w") as f:
        f.write("{not json")
    assert load_state(state_path) == default_state()
    assert "Unreadable state file" in caplog.text


def test_load_invalid_sleep_end_at(state_path, caplog):
    os.makedirs(os.path.dirname(state_path))
    with open(state_path, "w") as f:
        json.dump({"v": STATE_VERSION, "sleep": {"mode": "minutes", "end_at": "soon"}}, f)
    assert load_state(state_path)["sleep"] == {"mode": "off", "end_at": 0.0}
    assert "Invalid sleep timer" in caplog.text


def test_load_wrong_version(state_path):
    os.makedirs(os.path.dirname(state_path))
    with open(state_path, "w") as f:
        json.dump({"v": 1, "queue": [{"id": "a", "title": "b", "text": "c"}]}, f)
    assert load_state(state_path)["queue"] == []


def test_invalid_queue_entries_dropped(state_path):
    state = default_state()
    state["queue"] = [
        {"id": "ok", "title": "Fine", "text": "Body."},
        {"id": 5, "title": "Bad id", "text": "Body."},
        {"title": "No id", "text": "Body."},
        "junk",
    ]
    save_state(state_path, state)
    queue = load_state(state_path)["queue"]
    assert [x["id"] for x in queue] == ["ok"]
    assert queue[0]["heading_mode"] == "cue"
    assert queue[0]["source"] == {"type": "paste"}


def test_is_valid_item():
    assert is_valid_item({"id": "a", "title": "b", "text": "c"})
    assert not is_valid_item({"id": "a", "title": "b"})
    assert not is_valid_item(None)


def test_normalize_item_fills_defaults():
    item = normalize_item({"id": "a", "title": "b", "text": "c", "heading_mode": "weird", "created_at": "x"})
    assert item.heading_mode == "cue"
    assert isinstance(item.created_at, int)
    assert item.language_hint == ""


def test_export_envelope():
    items = [QueueItem(title="One", text="First."), QueueItem(title="Two", text="Second.")]
    data = export_queue(items)
    assert data["v"] == 1
    assert "exported_at" in data
    assert [x["title"] for x in data["queue"]] == ["One", "Two"]


def test_import_envelope_and_bare_list():
    entry = {"id": "a", "title": "b", "text": "c"}
    assert [i.id for i in import_queue({"v": 1, "queue": [entry, {"bad": True}]})] == ["a"]
    assert [i.id for i in import_queue([entry])] == ["a"]


def test_import_rejects_unusable_data():
    with pytest.raises(StateImportError):
        import_queue({"queue": "nope"})
    with pytest.raises(StateImportError):
        import_queue("text")
    with pytest.raises(StateImportError, match="version"):
        import_queue({"v": 99, "queue": []})


def test_read_json(tmp_path):
    good = tmp_path / "good.json"
    good.write_text('{"a": 1}')
    assert read_json(str(good)) == {"a": 1}
    bad = tmp_path / "bad.json"
    bad.write_text("nope")
    with pytest.raises(StateImportError):
        read_json(str(bad))


def test_daily_totals(state_path):
    day = date(2024, 3, 1)
    assert listened_on(state_path, day) == 0
    add_listened(state_path, 30.0, day)
    assert add_listened(state_path, 12.5, day) == pytest.approx(42.5)
    add_listened(state_path, -10, day)
    assert listened_on(state_path, day) == pytest.approx(42.5)
    assert listened_on(state_path, date(2024, 3, 2)) == 0
    assert load_daily(state_path) == {"2024-03-01": 42.5}
