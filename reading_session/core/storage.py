from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, List

from .errors import PersistenceFailure
from .repository import KeyValueRepository

logger = logging.getLogger(__name__)


@dataclass
class StorageKeys:
    document_id: str

    @property
    def prefix(self) -> str:
        return f"{self.document_id}/"

    @property
    def highlights(self) -> str:
        return f"{self.prefix}highlights"

    @property
    def bookmarks(self) -> str:
        return f"{self.prefix}bookmarks"

    @property
    def notes(self) -> str:
        return f"{self.prefix}notes"

    @property
    def toc(self) -> str:
        return f"{self.prefix}toc"

    @property
    def total_chars(self) -> str:
        return f"{self.prefix}total-chars"

    @property
    def copied_chars(self) -> str:
        return f"{self.prefix}copied-chars"

    @property
    def location(self) -> str:
        return f"{self.prefix}location"


class DocumentStorage:
    """
    JSON view over a key/value repository, namespaced by document identity.
    Reads never fail: a missing, unreadable or undecodable entry yields the
    default. Writes propagate PersistenceFailure.
    """

    def __init__(self, repository: KeyValueRepository, document_id: str):
        self.repository = repository
        self.keys = StorageKeys(document_id)

    def read_json(self, key: str, default: Any = None) -> Any:
        try:
            raw = self.repository.get(key)
        except PersistenceFailure as exc:
            logger.warning("Could not read %s, using default: %s", key, exc)
            return default
        if raw is None:
            return default
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            logger.warning("Stored value under %s is not valid JSON, using default: %s", key, exc)
            return default

    def write_json(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False).encode("utf-8")
        self.repository.set(key, payload)

    def delete(self, key: str) -> None:
        self.repository.delete(key)

    def stored_keys(self) -> List[str]:
        return self.repository.keys(self.keys.prefix)

    def clear(self) -> None:
        for key in self.stored_keys():
            self.repository.delete(key)
