from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable, List, Optional, Tuple, TypeVar

from .models import (
    Bookmark,
    Highlight,
    HighlightKind,
    Note,
    OverlayKind,
    Point,
    utc_now_iso,
)
from .overlays import OverlayDispatcher
from .storage import DocumentStorage

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class HitResult:
    note: Optional[Note] = None
    highlight: Optional[Highlight] = None

    @property
    def empty(self) -> bool:
        return self.note is None and self.highlight is None


def _overlay_kind(kind: HighlightKind) -> OverlayKind:
    return OverlayKind.UNDERLINE if kind == HighlightKind.UNDERLINE else OverlayKind.HIGHLIGHT


def _decode_highlight(data: dict) -> Highlight:
    return Highlight(
        id=data.get("id") or uuid.uuid4().hex,
        position=data["position"],
        text=data.get("text", ""),
        kind=HighlightKind(data.get("kind") or HighlightKind.HIGHLIGHT.value),
        color=data.get("color") or "yellow",
        created_at=data.get("created_at") or utc_now_iso(),
    )


def _decode_note(data: dict) -> Note:
    return Note(
        position=data["position"],
        text=data.get("text", ""),
        note=data.get("note", ""),
        created_at=data.get("created_at") or utc_now_iso(),
    )


def _decode_bookmark(data: dict) -> Bookmark:
    return Bookmark(
        position=data["position"],
        created_at=data.get("created_at") or utc_now_iso(),
        chapter_title=data.get("chapter_title"),
        page_number=data.get("page_number"),
        label=data.get("label"),
    )


class AnnotationStore:
    """
    Owns highlights (and underlines), notes and bookmarks for one document.

    Every mutation updates the in-memory collection, issues the matching
    overlay command and writes the whole collection back to storage.
    Collections are immutable tuples replaced on each mutation, so readers
    always see a consistent snapshot.
    """

    def __init__(self, storage: DocumentStorage, overlays: OverlayDispatcher):
        self.storage = storage
        self.overlays = overlays
        self._highlights: Tuple[Highlight, ...] = ()
        self._notes: Tuple[Note, ...] = ()
        self._bookmarks: Tuple[Bookmark, ...] = ()

    # region loading
    def _read_collection(self, key: str, decode: Callable[[dict], T]) -> Tuple[T, ...]:
        raw = self.storage.read_json(key, default=[])
        if not isinstance(raw, list):
            logger.warning("Stored collection %s is not a list, starting empty", key)
            return ()
        items: List[T] = []
        for entry in raw:
            try:
                items.append(decode(entry))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable entry in %s: %s", key, exc)
        return tuple(items)

    def load(self) -> None:
        """Restore persisted collections and re-apply their overlays."""
        keys = self.storage.keys
        self._highlights = self._read_collection(keys.highlights, _decode_highlight)
        self._notes = self._read_collection(keys.notes, _decode_note)
        self._bookmarks = self._read_collection(keys.bookmarks, _decode_bookmark)
        for highlight in self._highlights:
            self.overlays.apply(_overlay_kind(highlight.kind), highlight.position, highlight.color)
        for note in self._notes:
            self.overlays.apply(OverlayKind.NOTE, note.position, label=note.note)
        logger.info(
            "Restored %s highlights, %s notes, %s bookmarks",
            len(self._highlights),
            len(self._notes),
            len(self._bookmarks),
        )

    def _persist(self, key: str, items: Tuple[Any, ...]) -> None:
        self.storage.write_json(key, [asdict(item) for item in items])

    def _persist_or_clear(self, key: str, items: Tuple[Any, ...]) -> None:
        if items:
            self._persist(key, items)
        else:
            self.storage.delete(key)

    # endregion

    # region highlights
    def list_highlights(self, kind: Optional[HighlightKind] = None) -> List[Highlight]:
        return [h for h in self._highlights if kind is None or h.kind == kind]

    def find_highlight(self, position: str, kind: HighlightKind) -> Optional[Highlight]:
        return next((h for h in self._highlights if h.position == position and h.kind == kind), None)

    def add_highlight(
        self,
        position: str,
        text: str,
        kind: HighlightKind = HighlightKind.HIGHLIGHT,
        color: Optional[str] = None,
    ) -> str:
        kind = HighlightKind(kind)
        existing = self.find_highlight(position, kind)
        highlight = Highlight(
            id=existing.id if existing else uuid.uuid4().hex,
            position=position,
            text=text,
            kind=kind,
            color=color or "yellow",
        )
        if existing:
            self._highlights = tuple(highlight if h is existing else h for h in self._highlights)
            self.overlays.remove(position, _overlay_kind(kind))
        else:
            self._highlights = self._highlights + (highlight,)
        self.overlays.apply(_overlay_kind(kind), position, highlight.color)
        self._persist(self.storage.keys.highlights, self._highlights)
        return highlight.id

    def remove_highlight(self, position: str, kind: HighlightKind = HighlightKind.HIGHLIGHT) -> bool:
        kind = HighlightKind(kind)
        remaining = tuple(h for h in self._highlights if not (h.position == position and h.kind == kind))
        if len(remaining) == len(self._highlights):
            return False
        self._highlights = remaining
        self.overlays.remove(position, _overlay_kind(kind))
        self._persist(self.storage.keys.highlights, self._highlights)
        return True

    def remove_all_highlights(self, kind: Optional[HighlightKind] = None) -> int:
        removed = [h for h in self._highlights if kind is None or h.kind == kind]
        self._highlights = tuple(h for h in self._highlights if h not in removed)
        for highlight in removed:
            self.overlays.remove(highlight.position, _overlay_kind(highlight.kind))
        self._persist_or_clear(self.storage.keys.highlights, self._highlights)
        return len(removed)

    def update_highlight_color(self, position: str, color: str) -> int:
        updated = 0
        items = []
        for highlight in self._highlights:
            if highlight.position == position:
                highlight = replace(highlight, color=color)
                self.overlays.restyle(_overlay_kind(highlight.kind), position, color)
                updated += 1
            items.append(highlight)
        if updated:
            self._highlights = tuple(items)
            self._persist(self.storage.keys.highlights, self._highlights)
        return updated

    # endregion

    # region notes
    def list_notes(self) -> List[Note]:
        return list(self._notes)

    def find_note(self, position: str) -> Optional[Note]:
        return next((n for n in self._notes if n.position == position), None)

    def add_note(self, position: str, text: str, note: str) -> Note:
        new_note = Note(position=position, text=text, note=note)
        existing = self.find_note(position)
        if existing:
            self._notes = tuple(new_note if n is existing else n for n in self._notes)
            self.overlays.remove(position, OverlayKind.NOTE)
        else:
            self._notes = self._notes + (new_note,)
        self.overlays.apply(OverlayKind.NOTE, position, label=note)
        self._persist(self.storage.keys.notes, self._notes)
        return new_note

    def edit_note(self, position: str, note: str) -> Optional[Note]:
        existing = self.find_note(position)
        if existing is None:
            return None
        edited = replace(existing, note=note)
        self._notes = tuple(edited if n is existing else n for n in self._notes)
        self._persist(self.storage.keys.notes, self._notes)
        return edited

    def remove_note(self, position: str) -> bool:
        remaining = tuple(n for n in self._notes if n.position != position)
        if len(remaining) == len(self._notes):
            return False
        self._notes = remaining
        self.overlays.remove(position, OverlayKind.NOTE)
        self._persist(self.storage.keys.notes, self._notes)
        return True

    def remove_all_notes(self) -> int:
        removed = self._notes
        self._notes = ()
        for note in removed:
            self.overlays.remove(note.position, OverlayKind.NOTE)
        self.storage.delete(self.storage.keys.notes)
        return len(removed)

    # endregion

    # region bookmarks
    def list_bookmarks(self) -> List[Bookmark]:
        return list(self._bookmarks)

    def add_bookmark(
        self,
        position: str,
        chapter_title: Optional[str] = None,
        page_number: Optional[int] = None,
        label: Optional[str] = None,
    ) -> Bookmark:
        bookmark = Bookmark(position=position, chapter_title=chapter_title, page_number=page_number, label=label)
        if any(b.position == position for b in self._bookmarks):
            self._bookmarks = tuple(bookmark if b.position == position else b for b in self._bookmarks)
        else:
            self._bookmarks = self._bookmarks + (bookmark,)
        self._persist(self.storage.keys.bookmarks, self._bookmarks)
        return bookmark

    def remove_bookmark(self, position: str) -> bool:
        remaining = tuple(b for b in self._bookmarks if b.position != position)
        if len(remaining) == len(self._bookmarks):
            return False
        self._bookmarks = remaining
        self._persist(self.storage.keys.bookmarks, self._bookmarks)
        return True

    def remove_all_bookmarks(self) -> int:
        removed = len(self._bookmarks)
        self._bookmarks = ()
        self.storage.delete(self.storage.keys.bookmarks)
        return removed

    # endregion

    # region hit-testing
    def _contains(self, position: str, point: Point) -> bool:
        try:
            rects = self.overlays.rects(position)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not resolve screen rectangles for %s: %s", position, exc)
            return False
        return any(rect.contains(point) for rect in rects)

    def hit_test(self, point: Point) -> HitResult:
        """Notes are checked first; the first match in collection order wins."""
        notes, highlights = self._notes, self._highlights
        for note in notes:
            if self._contains(note.position, point):
                return HitResult(note=note)
        for highlight in highlights:
            if self._contains(highlight.position, point):
                return HitResult(highlight=highlight)
        return HitResult()

    # endregion
