from __future__ import annotations

import threading
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from fastapi import Depends, HTTPException

from reading_session.core import (
    KeyValueRepository,
    ReadingSession,
    RecordingOverlayService,
    SessionConfig,
    SqlAlchemyKeyValueRepository,
)


@lru_cache(maxsize=1)
def get_config() -> SessionConfig:
    return SessionConfig.from_env()


@lru_cache(maxsize=1)
def get_repo() -> KeyValueRepository:
    return SqlAlchemyKeyValueRepository(get_config().database_url)


class SessionRegistry:
    """
    Open sessions keyed by document id, each with the overlay service the
    HTTP layer reports back to clients.
    """

    def __init__(self):
        self._sessions: Dict[str, Tuple[ReadingSession, RecordingOverlayService]] = {}
        self._lock = threading.Lock()

    def add(self, session: ReadingSession, overlays: RecordingOverlayService) -> None:
        with self._lock:
            self._sessions[session.host.document_id] = (session, overlays)

    def get(self, document_id: str) -> Optional[ReadingSession]:
        entry = self._sessions.get(document_id)
        return entry[0] if entry else None

    def overlays(self, document_id: str) -> Optional[RecordingOverlayService]:
        entry = self._sessions.get(document_id)
        return entry[1] if entry else None

    def remove(self, document_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(document_id, None) is not None

    def ids(self) -> List[str]:
        return sorted(self._sessions)


@lru_cache(maxsize=1)
def get_registry() -> SessionRegistry:
    return SessionRegistry()


def get_session(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> ReadingSession:
    session = registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return session
