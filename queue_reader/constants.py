"""All magic numbers and configuration constants."""

import os

MAX_SEGMENT_CHARS = 260             # greedy sentence packing budget (chars)
HEADING_MAX_CHARS = 72              # longest line treated as a shout-case heading
HEADING_PAUSE_MS = 650              # pause emitted after a heading in "pause" mode
PAUSE_MIN_MS = 120                  # pause unit clamp (lower)
PAUSE_MAX_MS = 2500                 # pause unit clamp (upper)
DEFAULT_PAUSE_MS = 500              # pause length when none is given
HEADING_MODES = ("cue", "pause", "off")
DEFAULT_HEADING_MODE = "cue"

BASE_WPM = 185                      # narration pace at rate 1.0
MIN_WPM = 60                        # floor for very low rates
RATE_MIN = 0.75                     # playback rate clamp (lower)
RATE_MAX = 2.0                      # playback rate clamp (upper)
DEFAULT_RATE = 1.0
SPEECH_MIN_SECONDS = 0.25           # clamp for a single speech unit estimate
SPEECH_MAX_SECONDS = 120.0

TICK_INTERVAL = 0.25                # seconds between progress ticks
SLEEP_CHECK_INTERVAL = 0.5          # seconds between sleep timer checks
SKIP_CHOICES = (10, 15, 30)         # allowed seek step sizes (seconds)
DEFAULT_SKIP = 15
PAUSE_UNIT_LABEL = "…"              # text reported for a pause unit

TITLE_MAX_CHARS = 80
UNTITLED = "Untitled"

DEFAULT_VOICE = "en-US-AriaNeural"
VOICE_LIST_TIMEOUT = 5.0            # seconds to wait for the voice list
PLAYER_COMMAND = "ffplay"           # audio sink for the edge-tts backend

STATE_VERSION = 3                   # persisted state envelope version
EXPORT_VERSION = 1                  # queue export envelope version
STATE_ENV_VAR = "QUEUE_READER_STATE"
STATE_PATH = os.path.join(os.path.expanduser("~"), ".queue_reader", "state.json")
DAILY_FILENAME = "daily.json"
VERSION = "0.1.0"
