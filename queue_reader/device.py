"""Narration devices: the abstract contract and the edge-tts backend."""

import asyncio
import io
import logging
import os
import shutil
import signal
import tempfile

import edge_tts
from pydub import AudioSegment

from queue_reader.constants import DEFAULT_VOICE, PLAYER_COMMAND, VOICE_LIST_TIMEOUT
from queue_reader.errors import UtteranceFailure
from queue_reader.estimator import clamp_rate
from queue_reader.models import DeviceSignal, Voice
from queue_reader.voices import voice_for_language

logger = logging.getLogger(__name__)

BOUNDARY_POLL_SECONDS = 0.05
TICKS_PER_SECOND = 10_000_000       # edge-tts offsets are in 100 ns units


class NarrationDevice:
    """Speak one utterance at a time and report on it asynchronously.

    `speak()` returns immediately. The listener then receives DeviceSignals
    in start → boundary* → end|error order. `cancel_all()` silences the
    current utterance; a cancelled utterance may still deliver late signals,
    which callers must be prepared to ignore.
    """

    def supported(self) -> bool:
        return True

    async def list_voices(self) -> list[Voice]:
        return []

    def speak(self, text: str, voice: str | None, rate: float, language_hint: str, listener) -> None:
        raise NotImplementedError

    def pause(self) -> None:
        raise NotImplementedError

    def resume(self) -> None:
        raise NotImplementedError

    def cancel_all(self) -> None:
        raise NotImplementedError


def rate_to_percent(rate: float) -> str:
    """Playback rate (1.0 = normal) → edge-tts relative rate string."""
    return f"{round((clamp_rate(rate) - 1.0) * 100):+d}%"


def _locate_word(text: str, word: str, cursor: int) -> int:
    """Character index of `word` in `text` at or after `cursor`."""
    if not word:
        return cursor
    index = text.find(word, cursor)
    return cursor if index == -1 else index


async def synthesize(text: str, voice: str, rate: float) -> tuple[bytes, list[tuple[float, int]]]:
    """Synthesize text with edge-tts.

    Returns the MP3 bytes and a list of (seconds, char_index) word
    boundaries. Raises UtteranceFailure if no audio comes back.
    """
    communicate = edge_tts.Communicate(text, voice, rate=rate_to_percent(rate), boundary="WordBoundary")
    audio = bytearray()
    boundaries = []
    cursor = 0

    async for chunk in communicate.stream():
        if chunk["type"] == "audio":
            audio.extend(chunk["data"])
        elif chunk["type"] == "WordBoundary":
            index = _locate_word(text, chunk.get("text", ""), cursor)
            cursor = index + len(chunk.get("text", ""))
            boundaries.append((chunk["offset"] / TICKS_PER_SECOND, index))

    if not audio:
        raise UtteranceFailure(f"No audio received for: {text[:50]}...")
    return bytes(audio), boundaries


class EdgeTTSDevice(NarrationDevice):
    """Narration through edge-tts, decoded with pydub and played by ffplay.

    Pause and resume suspend the player process, so synthesis position is
    never lost. Word boundaries are replayed against the playback clock.
    """

    def __init__(self, player: str = PLAYER_COMMAND, default_voice: str = DEFAULT_VOICE):
        self.player = player
        self.default_voice = default_voice
        self._task: asyncio.Task | None = None
        self._process = None
        self._paused_at: float | None = None
        self._paused_total = 0.0

    def supported(self) -> bool:
        return shutil.which(self.player) is not None and shutil.which("ffmpeg") is not None

    async def list_voices(self) -> list[Voice]:
        raw = await asyncio.wait_for(edge_tts.list_voices(), VOICE_LIST_TIMEOUT)
        voices = [
            Voice(
                id=v["ShortName"],
                name=v.get("FriendlyName", v["ShortName"]),
                lang=v.get("Locale", ""),
                gender=v.get("Gender", ""),
            )
            for v in raw
        ]
        return sorted(voices, key=lambda v: (v.lang, v.name))

    def speak(self, text, voice, rate, language_hint, listener) -> None:
        self.cancel_all()
        self._paused_at = None
        self._paused_total = 0.0
        chosen = voice or voice_for_language(language_hint) or self.default_voice
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(text, chosen, rate, listener))

    def pause(self) -> None:
        if self._task is None or self._task.done() or self._paused_at is not None:
            return
        # Without a player yet, _run stops it as soon as it is spawned
        if self._process is not None:
            self._process.send_signal(signal.SIGSTOP)
        self._paused_at = asyncio.get_running_loop().time()

    def resume(self) -> None:
        if self._paused_at is None:
            return
        if self._process is not None:
            self._process.send_signal(signal.SIGCONT)
            self._paused_total += asyncio.get_running_loop().time() - self._paused_at
        self._paused_at = None

    def cancel_all(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        if self._process is not None:
            self._kill_player(self._process)
        self._paused_at = None

    def _kill_player(self, process) -> None:
        if process is self._process:
            self._process = None
            if self._paused_at is not None:
                if process.returncode is None:
                    process.send_signal(signal.SIGCONT)
                self._paused_at = None
        if process.returncode is None:
            process.kill()

    def _played_seconds(self, started_at: float, now: float) -> float:
        paused = self._paused_total
        if self._paused_at is not None:
            paused += now - self._paused_at
        return now - started_at - paused

    async def _run(self, text: str, voice: str, rate: float, listener) -> None:
        path = None
        process = None
        try:
            if not text.strip():
                listener(DeviceSignal(kind="start"))
                listener(DeviceSignal(kind="end"))
                return

            data, boundaries = await synthesize(text, voice, rate)
            audio = AudioSegment.from_file(io.BytesIO(data), format="mp3")
            fd, path = tempfile.mkstemp(prefix="queue_reader_", suffix=".wav")
            os.close(fd)
            audio.export(path, format="wav")

            process = await asyncio.create_subprocess_exec(
                self.player, "-nodisp", "-autoexit", "-loglevel", "quiet", path,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            self._process = process
            loop = asyncio.get_running_loop()
            started_at = loop.time()
            if self._paused_at is not None:
                process.send_signal(signal.SIGSTOP)
                self._paused_at = started_at
            listener(DeviceSignal(kind="start"))

            pending = list(boundaries)
            while process.returncode is None:
                played = self._played_seconds(started_at, loop.time())
                while pending and pending[0][0] <= played:
                    listener(DeviceSignal(kind="boundary", char_index=pending.pop(0)[1]))
                try:
                    await asyncio.wait_for(process.wait(), BOUNDARY_POLL_SECONDS)
                except asyncio.TimeoutError:
                    pass

            if process.returncode != 0:
                raise UtteranceFailure(f"{self.player} exited with status {process.returncode}")
            if self._process is process:
                self._process = None
            listener(DeviceSignal(kind="end"))
        except asyncio.CancelledError:
            if process is not None:
                self._kill_player(process)
            raise
        except Exception as e:
            logger.error("Utterance failed (voice %s): %s", voice, e)
            if process is not None:
                self._kill_player(process)
            listener(DeviceSignal(kind="error", message=str(e) or "Speech failed."))
        finally:
            if path and os.path.exists(path):
                os.remove(path)
