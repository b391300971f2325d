from __future__ import annotations

from typing import Optional


class ReadingSessionError(Exception):
    """Base class for every failure raised by the reading-session engine."""


class ConfigurationError(ReadingSessionError):
    pass


class MalformedPosition(ReadingSessionError, ValueError):
    def __init__(self, position: object, reason: str = "cannot be decoded"):
        self.position = position
        super().__init__(f"Malformed position {position!r}: {reason}")


class QuotaExceeded(ReadingSessionError):
    def __init__(self, requested: int, copied: int, allowance: float):
        self.requested = requested
        self.copied = copied
        self.allowance = allowance
        super().__init__(
            f"Copy limit exceeded: {copied} + {requested} characters is over the allowance of {allowance:g}"
        )


class ChapterLoadFailure(ReadingSessionError):
    def __init__(self, chapter_index: int, reason: Optional[str] = None):
        self.chapter_index = chapter_index
        message = f"Failed to load chapter {chapter_index}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class PersistenceFailure(ReadingSessionError):
    pass


class DocumentLoadError(ReadingSessionError):
    pass


class ClipboardFailure(ReadingSessionError):
    pass
