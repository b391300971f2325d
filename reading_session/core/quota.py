from __future__ import annotations

import logging
import threading
from typing import Callable

from .errors import ConfigurationError, QuotaExceeded
from .models import CopyQuotaState
from .storage import DocumentStorage

logger = logging.getLogger(__name__)


class CopyQuotaManager:
    """
    Character-based copy allowance for one document.

    When disabled every copy is authorized and nothing is counted. When
    enabled a copy is authorized only while the cumulative copied count stays
    within `total_chars * allowance_percent / 100`; the new count is persisted
    before `authorize` returns. The check and the charge happen under one
    lock, so concurrent callers cannot overdraw the allowance.
    """

    def __init__(self, storage: DocumentStorage, allowance_percent: float = 10, enabled: bool = False):
        if not 0 <= allowance_percent <= 100:
            raise ConfigurationError(f"Copy allowance must be within [0, 100], got {allowance_percent}")
        self.storage = storage
        self.allowance_percent = allowance_percent
        self.enabled = enabled
        self.total_chars = 0
        self._lock = threading.Lock()
        self.copied_chars = self._load_copied()

    def _load_copied(self) -> int:
        stored = self.storage.read_json(self.storage.keys.copied_chars, default=0)
        if not isinstance(stored, int) or stored < 0:
            logger.warning("Ignoring stored copied-character count %r", stored)
            return 0
        return stored

    def ensure_total_chars(self, compute: Callable[[], int]) -> int:
        """Use the cached document length, computing and caching it on first use."""
        cached = self.storage.read_json(self.storage.keys.total_chars)
        if isinstance(cached, int) and cached >= 0:
            self.total_chars = cached
            return cached
        self.total_chars = compute()
        self.storage.write_json(self.storage.keys.total_chars, self.total_chars)
        logger.info("Cached total character count %s for %s", self.total_chars, self.storage.keys.document_id)
        return self.total_chars

    @property
    def allowance(self) -> float:
        return self.total_chars * self.allowance_percent / 100

    @property
    def state(self) -> CopyQuotaState:
        return CopyQuotaState(
            total_chars=self.total_chars,
            copied_chars=self.copied_chars,
            allowance_percent=self.allowance_percent,
            enabled=self.enabled,
        )

    def can_copy(self, length: int) -> bool:
        return not self.enabled or self.copied_chars + length <= self.allowance

    def authorize(self, length: int) -> None:
        if length < 0:
            raise ValueError("Copy length cannot be negative")
        if not self.enabled:
            return
        with self._lock:
            if not self.can_copy(length):
                raise QuotaExceeded(length, self.copied_chars, self.allowance)
            copied = self.copied_chars + length
            self.storage.write_json(self.storage.keys.copied_chars, copied)
            self.copied_chars = copied

    def reset(self) -> None:
        with self._lock:
            self.storage.write_json(self.storage.keys.copied_chars, 0)
            self.copied_chars = 0
