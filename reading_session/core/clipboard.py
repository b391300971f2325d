from __future__ import annotations

from typing import List, Optional, Protocol

from .errors import ClipboardFailure


class Clipboard(Protocol):
    def write(self, text: str) -> None:
        """Raise ClipboardFailure when the write is rejected."""
        ...


class InMemoryClipboard:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.history: List[str] = []

    @property
    def text(self) -> Optional[str]:
        return self.history[-1] if self.history else None

    def write(self, text: str) -> None:
        if self.fail:
            raise ClipboardFailure("Clipboard is not available")
        self.history.append(text)
