"""
Reading session engine exports.
"""

from .annotations import AnnotationStore, HitResult
from .chapters import ChapterTextIndex, TextHandle
from .clipboard import Clipboard, InMemoryClipboard
from .config import SessionConfig, open_session
from .controller import ReadingSession
from .errors import (
    ChapterLoadFailure,
    ClipboardFailure,
    ConfigurationError,
    DocumentLoadError,
    MalformedPosition,
    PersistenceFailure,
    QuotaExceeded,
    ReadingSessionError,
)
from .host import DocumentHost, HtmlChapter, HtmlDocumentHost, LoadedChapter
from .models import (
    BookImage,
    Bookmark,
    ChapterImage,
    CopyQuotaState,
    DocumentMetadata,
    Highlight,
    HighlightKind,
    HostEvent,
    HostEventKind,
    ImagePreview,
    Note,
    Ordering,
    OverlayKind,
    Point,
    Rect,
    SearchResult,
    Selection,
    SessionState,
    SpineItem,
    TextNode,
    TocNode,
)
from .overlays import NoopOverlayService, OverlayDispatcher, OverlayService, RecordingOverlayService, style_for
from .positions import Position, chapter_of, compare, is_valid, parse_position, percentage
from .progress import LocationMap, chapter_title_for, estimate_toc_pages
from .quota import CopyQuotaManager
from .repository import InMemoryKeyValueRepository, KeyValueRepository, SqlAlchemyKeyValueRepository
from .search import SearchEngine
from .storage import DocumentStorage, StorageKeys

__all__ = [
    "AnnotationStore",
    "BookImage",
    "Bookmark",
    "ChapterImage",
    "ChapterLoadFailure",
    "ChapterTextIndex",
    "Clipboard",
    "ClipboardFailure",
    "ConfigurationError",
    "CopyQuotaManager",
    "CopyQuotaState",
    "DocumentHost",
    "DocumentLoadError",
    "DocumentMetadata",
    "DocumentStorage",
    "Highlight",
    "HighlightKind",
    "HitResult",
    "HostEvent",
    "HostEventKind",
    "HtmlChapter",
    "HtmlDocumentHost",
    "ImagePreview",
    "InMemoryClipboard",
    "InMemoryKeyValueRepository",
    "KeyValueRepository",
    "LoadedChapter",
    "LocationMap",
    "MalformedPosition",
    "Note",
    "NoopOverlayService",
    "Ordering",
    "OverlayDispatcher",
    "OverlayKind",
    "OverlayService",
    "PersistenceFailure",
    "Point",
    "Position",
    "QuotaExceeded",
    "ReadingSession",
    "ReadingSessionError",
    "Rect",
    "RecordingOverlayService",
    "SearchEngine",
    "SearchResult",
    "Selection",
    "SessionConfig",
    "SessionState",
    "SpineItem",
    "SqlAlchemyKeyValueRepository",
    "StorageKeys",
    "TextHandle",
    "TextNode",
    "TocNode",
    "chapter_of",
    "chapter_title_for",
    "compare",
    "estimate_toc_pages",
    "is_valid",
    "open_session",
    "parse_position",
    "percentage",
    "style_for",
]
