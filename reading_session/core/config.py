from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from .clipboard import Clipboard
from .controller import ReadingSession
from .errors import ConfigurationError
from .host import DocumentHost
from .overlays import OverlayService
from .repository import KeyValueRepository, SqlAlchemyKeyValueRepository

_TRUE = {"1", "true", "yes", "on"}


@dataclass
class SessionConfig:
    location_resolution: int = 5000
    copy_protected: bool = False
    copy_allowance_percent: float = 10
    search_workers: int = 8
    search_min_length: int = 3
    search_context_length: int = 30
    preview_chars: int = 250
    database_url: str = "sqlite+pysqlite:///./data/reading_session.db"

    def validate(self) -> "SessionConfig":
        if not 0 <= self.copy_allowance_percent <= 100:
            raise ConfigurationError(
                f"Copy allowance must be within [0, 100], got {self.copy_allowance_percent}"
            )
        if self.location_resolution <= 0:
            raise ConfigurationError(f"Location resolution must be positive, got {self.location_resolution}")
        if self.search_workers <= 0:
            raise ConfigurationError(f"Search workers must be positive, got {self.search_workers}")
        if self.search_min_length < 1:
            raise ConfigurationError(f"Minimum search length must be at least 1, got {self.search_min_length}")
        if self.search_context_length < 0 or self.preview_chars < 0:
            raise ConfigurationError("Excerpt and preview lengths cannot be negative")
        return self

    @classmethod
    def from_env(cls) -> "SessionConfig":
        """Build a validated config from READER_* environment variables."""
        defaults = cls()
        try:
            config = cls(
                location_resolution=int(os.getenv("READER_LOCATIONS", defaults.location_resolution)),
                copy_protected=os.getenv("READER_COPY_PROTECTED", "false").strip().lower() in _TRUE,
                copy_allowance_percent=float(os.getenv("READER_COPY_ALLOWANCE", defaults.copy_allowance_percent)),
                search_workers=int(os.getenv("READER_SEARCH_WORKERS", defaults.search_workers)),
                search_min_length=int(os.getenv("READER_SEARCH_MIN_LENGTH", defaults.search_min_length)),
                search_context_length=int(os.getenv("READER_SEARCH_CONTEXT", defaults.search_context_length)),
                preview_chars=int(os.getenv("READER_PREVIEW_CHARS", defaults.preview_chars)),
                database_url=os.getenv("DATABASE_URL", defaults.database_url),
            )
        except ValueError as exc:
            raise ConfigurationError(f"Invalid reader configuration: {exc}") from exc
        return config.validate()


def open_session(
    host: DocumentHost,
    config: SessionConfig,
    repository: Optional[KeyValueRepository] = None,
    overlay_service: Optional[OverlayService] = None,
    clipboard: Optional[Clipboard] = None,
) -> ReadingSession:
    """
    Entry point. Creates all required components and starts the session.
    """
    config.validate()
    repo = repository or SqlAlchemyKeyValueRepository(config.database_url)
    session = ReadingSession(
        host=host,
        repository=repo,
        config=config,
        overlay_service=overlay_service,
        clipboard=clipboard,
    )
    session.start()
    return session
