"""State file, queue export/import, and daily listening totals."""

import json
import logging
import os
import time
from datetime import date, datetime, timezone

from queue_reader.constants import (
    DAILY_FILENAME,
    DEFAULT_HEADING_MODE,
    DEFAULT_RATE,
    DEFAULT_SKIP,
    EXPORT_VERSION,
    STATE_ENV_VAR,
    STATE_PATH,
    STATE_VERSION,
)
from queue_reader.errors import StateImportError
from queue_reader.models import QueueItem

logger = logging.getLogger(__name__)


def resolve_state_path(path: str | None = None) -> str:
    """Explicit path, else $QUEUE_READER_STATE, else the default location."""
    return path or os.environ.get(STATE_ENV_VAR) or STATE_PATH


def default_state() -> dict:
    return {
        "v": STATE_VERSION,
        "settings": {
            "voice": "",
            "rate": DEFAULT_RATE,
            "skip": DEFAULT_SKIP,
            "dict_raw": "",
            "heading_mode": DEFAULT_HEADING_MODE,
        },
        "queue": [],
        "playback": {
            "item_id": "",
            "unit_index": 0,
            "elapsed": 0.0,
        },
        "sleep": {"mode": "off", "end_at": 0.0},
    }


def is_valid_item(data) -> bool:
    """A queue entry needs string id, title and text."""
    if not isinstance(data, dict):
        return False
    return all(isinstance(data.get(key), str) for key in ("id", "title", "text"))


def normalize_item(data: dict) -> QueueItem:
    """Build a QueueItem from stored data, filling in missing fields."""
    created_at = data.get("created_at")
    source = data.get("source")
    language_hint = data.get("language_hint")
    return QueueItem(
        id=data["id"],
        title=data["title"],
        text=data["text"],
        created_at=created_at if isinstance(created_at, int) else int(time.time() * 1000),
        source=source if isinstance(source, dict) else {"type": "paste"},
        language_hint=language_hint if isinstance(language_hint, str) else "",
        heading_mode=data.get("heading_mode", DEFAULT_HEADING_MODE),
    )


def load_state(path: str) -> dict:
    """Read the state file, merging it over defaults.

    A missing file yields defaults. A malformed file or an unknown version
    is logged and replaced with defaults; invalid queue entries are dropped.
    """
    state = default_state()
    if not os.path.exists(path):
        return state
    try:
        with open(path) as f:
            stored = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Unreadable state file %s (%s); starting fresh", path, e)
        return state

    if not isinstance(stored, dict) or stored.get("v") != STATE_VERSION:
        logger.warning("Unsupported state file %s; starting fresh", path)
        return state

    if isinstance(stored.get("settings"), dict):
        state["settings"].update(stored["settings"])
    if isinstance(stored.get("playback"), dict):
        state["playback"].update(stored["playback"])
    if isinstance(stored.get("sleep"), dict):
        state["sleep"].update(stored["sleep"])
        try:
            state["sleep"]["end_at"] = float(state["sleep"].get("end_at") or 0.0)
        except (TypeError, ValueError):
            logger.warning("Invalid sleep timer in %s; turning it off", path)
            state["sleep"] = default_state()["sleep"]
    if isinstance(stored.get("queue"), list):
        state["queue"] = [normalize_item(x).to_dict() for x in stored["queue"] if is_valid_item(x)]
    return state


def save_state(path: str, state: dict) -> str:
    """Write the state file (creating its directory). Returns the path."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp_path = path + ".tmp"
    with open(tmp_path, "w") as f:
        json.dump({**state, "v": STATE_VERSION}, f, indent=2)
    os.replace(tmp_path, path)
    return path


def export_queue(items: list[QueueItem]) -> dict:
    """Queue export envelope."""
    return {
        "v": EXPORT_VERSION,
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "queue": [item.to_dict() for item in items],
    }


def import_queue(data) -> list[QueueItem]:
    """Parse an export envelope (or a bare list) into queue items.

    Raises StateImportError when no queue can be found.
    """
    if isinstance(data, dict) and isinstance(data.get("queue"), list):
        version = data.get("v", EXPORT_VERSION)
        if version != EXPORT_VERSION:
            raise StateImportError(f"Unsupported export version {version}")
        entries = data["queue"]
    elif isinstance(data, list):
        entries = data
    else:
        raise StateImportError("No queue found.")
    return [normalize_item(x) for x in entries if is_valid_item(x)]


def read_json(path: str):
    """Load a JSON document, raising StateImportError if it is not JSON."""
    try:
        with open(path) as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise StateImportError(f"Invalid JSON: {e}") from e


def _daily_path(state_path: str) -> str:
    return os.path.join(os.path.dirname(state_path) or ".", DAILY_FILENAME)


def load_daily(state_path: str) -> dict:
    path = _daily_path(state_path)
    if not os.path.exists(path):
        return {}
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Unreadable listening log %s (%s)", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def add_listened(state_path: str, seconds: float, day: date | None = None) -> float:
    """Add listening time to today's total. Returns the new total."""
    key = (day or date.today()).isoformat()
    daily = load_daily(state_path)
    daily[key] = float(daily.get(key, 0) or 0) + max(0.0, seconds or 0.0)
    path = _daily_path(state_path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        json.dump(daily, f, indent=2)
    return daily[key]


def listened_on(state_path: str, day: date | None = None) -> float:
    key = (day or date.today()).isoformat()
    return float(load_daily(state_path).get(key, 0) or 0)
