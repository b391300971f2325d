from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class HighlightKind(str, Enum):
    HIGHLIGHT = "highlight"
    UNDERLINE = "underline"


class OverlayKind(str, Enum):
    HIGHLIGHT = "highlight"
    UNDERLINE = "underline"
    NOTE = "note"
    SEARCH_RESULT = "searchResult"
    SELECTED_RESULT = "selectedResult"


class HostEventKind(str, Enum):
    POSITION_CHANGED = "positionChanged"
    TEXT_SELECTED = "textSelected"
    CONTENT_CLICKED = "contentClicked"


class Ordering(str, Enum):
    BEFORE = "before"
    EQUAL = "equal"
    AFTER = "after"


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Rect:
    left: float
    top: float
    right: float
    bottom: float

    def contains(self, point: Point) -> bool:
        return self.left <= point.x <= self.right and self.top <= point.y <= self.bottom


@dataclass
class SpineItem:
    index: int
    href: str
    title: str
    idref: Optional[str] = None


@dataclass
class DocumentMetadata:
    title: str
    author: Optional[str] = None
    cover: Optional[str] = None
    language: str = "en"


@dataclass
class TextNode:
    """A run of text inside a loaded chapter, in document order."""

    node_index: int
    text: str


@dataclass
class ChapterImage:
    src: str
    position: str
    description: str = ""


@dataclass
class Highlight:
    id: str
    position: str
    text: str
    kind: HighlightKind = HighlightKind.HIGHLIGHT
    color: str = "yellow"
    created_at: str = field(default_factory=utc_now_iso)


@dataclass
class Note:
    position: str
    text: str
    note: str
    created_at: str = field(default_factory=utc_now_iso)


@dataclass
class Bookmark:
    position: str
    created_at: str = field(default_factory=utc_now_iso)
    chapter_title: Optional[str] = None
    page_number: Optional[int] = None
    label: Optional[str] = None


@dataclass
class SearchResult:
    position: str
    excerpt: str
    chapter_href: str
    chapter_title: str
    chapter_index: int


@dataclass
class BookImage:
    src: str
    position: str
    description: str
    chapter_title: Optional[str]
    page_number: Optional[int]


@dataclass
class TocNode:
    title: str
    href: str
    estimated_page: Optional[int] = None
    children: List["TocNode"] = field(default_factory=list)


@dataclass
class CopyQuotaState:
    total_chars: int
    copied_chars: int
    allowance_percent: float
    enabled: bool = True

    @property
    def allowance(self) -> float:
        return self.total_chars * self.allowance_percent / 100

    @property
    def remaining(self) -> float:
        return max(0.0, self.allowance - self.copied_chars)


@dataclass
class Selection:
    position: str
    text: str
    rect: Optional[Rect] = None


@dataclass
class ImagePreview:
    src: str
    description: str = ""


@dataclass
class HostEvent:
    kind: HostEventKind
    position: Optional[str] = None
    text: Optional[str] = None
    point: Optional[Point] = None
    rect: Optional[Rect] = None
    image: Optional[ImagePreview] = None


@dataclass
class SessionState:
    document_id: str
    title: Optional[str] = None
    author: Optional[str] = None
    cover: Optional[str] = None
    location: Optional[str] = None
    current_page: int = 0
    total_pages: int = 0
    progress: int = 0
    chapter_title: Optional[str] = None
    is_loading: bool = True
    error: Optional[str] = None
    is_searching: bool = False
    search_query: str = ""
    current_search_index: int = -1
    copied_chars: int = 0
    total_chars: int = 0
    selection: Optional[Selection] = None
    editing_note: Optional[Note] = None
    clicked_highlight: Optional[Highlight] = None
    image_preview: Optional[ImagePreview] = None
