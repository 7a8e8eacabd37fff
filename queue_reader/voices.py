"""Voice enumeration, filtering, and lookup."""

import logging

from queue_reader.models import Voice

logger = logging.getLogger(__name__)

# Hardcoded voice pool (used when the online voice list is unreachable)
VOICE_POOL = [
    Voice(id="en-US-AriaNeural", name="Aria", lang="en-US", gender="Female"),
    Voice(id="en-US-DavisNeural", name="Davis", lang="en-US", gender="Male"),
    Voice(id="en-US-JennyNeural", name="Jenny", lang="en-US", gender="Female"),
    Voice(id="en-US-GuyNeural", name="Guy", lang="en-US", gender="Male"),
    Voice(id="en-GB-SoniaNeural", name="Sonia", lang="en-GB", gender="Female"),
    Voice(id="en-GB-RyanNeural", name="Ryan", lang="en-GB", gender="Male"),
    Voice(id="en-AU-NatashaNeural", name="Natasha", lang="en-AU", gender="Female"),
    Voice(id="en-CA-ClaraNeural", name="Clara", lang="en-CA", gender="Female"),
    Voice(id="en-IN-NeerjaNeural", name="Neerja", lang="en-IN", gender="Female"),
    Voice(id="de-DE-KatjaNeural", name="Katja", lang="de-DE", gender="Female"),
    Voice(id="es-ES-ElviraNeural", name="Elvira", lang="es-ES", gender="Female"),
    Voice(id="fr-FR-DeniseNeural", name="Denise", lang="fr-FR", gender="Female"),
    Voice(id="it-IT-ElsaNeural", name="Elsa", lang="it-IT", gender="Female"),
    Voice(id="ja-JP-NanamiNeural", name="Nanami", lang="ja-JP", gender="Female"),
    Voice(id="pt-BR-FranciscaNeural", name="Francisca", lang="pt-BR", gender="Female"),
]


async def load_voices(device) -> list[Voice]:
    """Ask the device for its voices, falling back to VOICE_POOL."""
    try:
        voices = await device.list_voices()
    except Exception as e:
        logger.warning("Voice list unavailable (%s); using built-in pool", e)
        return list(VOICE_POOL)
    return voices or list(VOICE_POOL)


def filter_voices(voices: list[Voice], query: str | None) -> list[Voice]:
    """Case-insensitive substring match on id, name and language."""
    if not query:
        return list(voices)
    lowered = query.lower()
    return [v for v in voices if lowered in f"{v.id} {v.name} {v.lang}".lower()]


def find_voice(voices: list[Voice], voice_id: str | None) -> Voice | None:
    if not voice_id:
        return None
    for voice in voices:
        if voice.id == voice_id:
            return voice
    return None


def voice_for_language(language_hint: str | None, voices: list[Voice] | None = None) -> str | None:
    """Pick a voice id for a language hint ("fr", "en-GB", ...).

    Exact locale match wins over a language-only match. Returns None when
    there is no hint or nothing matches.
    """
    if not language_hint:
        return None
    pool = voices if voices is not None else VOICE_POOL
    hint = language_hint.strip().lower()
    for voice in pool:
        if voice.lang.lower() == hint:
            return voice.id
    prefix = hint.split("-")[0]
    for voice in pool:
        if voice.lang.lower().split("-")[0] == prefix:
            return voice.id
    return None
