"""Exception types."""


class QueueReaderError(Exception):
    """Base class for all queue reader errors."""


class UnsupportedDeviceError(QueueReaderError):
    """No narration device is available. Permanent; never retried."""


class UtteranceFailure(QueueReaderError):
    """A single utterance could not be synthesized or played."""


class StateImportError(QueueReaderError, ValueError):
    """An imported or persisted state document is not usable."""
