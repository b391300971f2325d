from __future__ import annotations

import functools
import logging
import threading
from dataclasses import replace
from typing import TYPE_CHECKING, List, Optional

from .annotations import AnnotationStore
from .chapters import ChapterTextIndex
from .clipboard import Clipboard, InMemoryClipboard
from .errors import ChapterLoadFailure, ClipboardFailure, DocumentLoadError, MalformedPosition, PersistenceFailure
from .host import DocumentHost
from .models import (
    BookImage,
    Bookmark,
    Highlight,
    HighlightKind,
    HostEvent,
    HostEventKind,
    Note,
    OverlayKind,
    SearchResult,
    Selection,
    SessionState,
    SpineItem,
    TocNode,
)
from .overlays import NoopOverlayService, OverlayDispatcher, OverlayService
from .positions import chapter_of, parse_position
from .progress import LocationMap, chapter_title_for, estimate_toc_pages, toc_from_json, toc_to_json
from .quota import CopyQuotaManager
from .repository import KeyValueRepository
from .search import SearchEngine
from .storage import DocumentStorage

if TYPE_CHECKING:
    from .config import SessionConfig

logger = logging.getLogger(__name__)


def _exclusive(method):
    """Run `method` holding the session lock; one writer at a time per session."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


class ReadingSession:
    """
    Drives one reading session: loads the document, owns the current position
    and delegates to the annotation store, the search engine, the location
    map and the copy quota. Host events are consumed through `dispatch`, one
    at a time. Mutating calls hold a per-session lock, so callers on several
    threads (the HTTP layer) see a single writer.
    """

    def __init__(
        self,
        host: DocumentHost,
        repository: KeyValueRepository,
        config: "SessionConfig",
        overlay_service: Optional[OverlayService] = None,
        clipboard: Optional[Clipboard] = None,
    ):
        config.validate()
        self.host = host
        self.config = config
        self.storage = DocumentStorage(repository, host.document_id)
        self.overlays = OverlayDispatcher(overlay_service or NoopOverlayService())
        self.clipboard = clipboard or InMemoryClipboard()
        self.index = ChapterTextIndex(host)
        self.annotations = AnnotationStore(self.storage, self.overlays)
        self.search_engine = SearchEngine(
            self.index, max_workers=config.search_workers, context_length=config.search_context_length
        )
        self.quota = CopyQuotaManager(
            self.storage, allowance_percent=config.copy_allowance_percent, enabled=config.copy_protected
        )
        self.locations = LocationMap.empty()
        self._spine: List[SpineItem] = []
        self._toc: List[TocNode] = []
        self._images: List[BookImage] = []
        self._search_results: List[SearchResult] = []
        self._search_overlays: List[str] = []
        self._selected_position: Optional[str] = None
        self._state = SessionState(document_id=host.document_id)
        self._lock = threading.RLock()

    # region lifecycle
    @_exclusive
    def start(self) -> SessionState:
        self._state.is_loading = True
        self._state.error = None
        try:
            metadata = self.host.metadata()
            self._spine = list(self.host.spine())
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to load document %s", self.host.document_id)
            self._state.error = str(exc)
            self._state.is_loading = False
            raise DocumentLoadError(f"Failed to load document {self.host.document_id}: {exc}") from exc

        self._state.title = metadata.title
        self._state.author = metadata.author
        self._state.cover = metadata.cover

        self.locations = LocationMap.generate(self.index, self._spine, self.config.location_resolution)
        self._state.total_pages = self.locations.total
        if self.quota.enabled:
            self._state.total_chars = self.quota.ensure_total_chars(lambda: self.locations.total_chars)
        else:
            self._state.total_chars = self.quota.total_chars = self.locations.total_chars
        self._state.copied_chars = self.quota.copied_chars

        self._toc = self._load_toc()
        self._restore_location()
        self.annotations.load()
        self._images = self._extract_images()

        self._state.is_loading = False
        logger.info(
            "Session started for %s: %s chapters, %s locations",
            self.host.document_id,
            len(self._spine),
            self.locations.total,
        )
        return self.state

    def _load_toc(self) -> List[TocNode]:
        try:
            toc = list(self.host.toc() or [])
        except Exception as exc:  # noqa: BLE001
            logger.warning("Host could not provide a table of contents: %s", exc)
            toc = []
        if not toc:
            cached = toc_from_json(self.storage.read_json(self.storage.keys.toc, default=[]))
            if cached:
                logger.info("Using cached table of contents for %s", self.host.document_id)
                return cached
        estimated = estimate_toc_pages(toc, self.locations.total)
        try:
            self.storage.write_json(self.storage.keys.toc, toc_to_json(estimated))
        except PersistenceFailure as exc:
            logger.warning("Could not cache the table of contents: %s", exc)
        return estimated

    def _restore_location(self) -> None:
        saved = self.storage.read_json(self.storage.keys.location)
        targets = [saved, None] if isinstance(saved, str) else [None]
        for target in targets:
            try:
                self.host.display(target)
                break
            except (LookupError, MalformedPosition) as exc:
                logger.warning("Could not display %r: %s", target or "the start of the document", exc)
        self.process_events()

    def _extract_images(self) -> List[BookImage]:
        images: List[BookImage] = []
        for item in self._spine:
            try:
                with self.index.acquire(item.index) as handle:
                    for image in self.index.images_of(handle):
                        images.append(
                            BookImage(
                                src=image.src,
                                position=image.position,
                                description=image.description,
                                chapter_title=chapter_title_for(image.position, self._spine, self._toc) or item.title,
                                page_number=self._page_for(image.position),
                            )
                        )
            except ChapterLoadFailure as exc:
                logger.warning("Skipping images of chapter %s: %s", item.index, exc)
        return images

    # endregion

    # region host events
    @_exclusive
    def process_events(self) -> int:
        events = self.host.poll_events()
        for event in events:
            self.dispatch(event)
        return len(events)

    @_exclusive
    def dispatch(self, event: HostEvent) -> None:
        try:
            if event.kind == HostEventKind.POSITION_CHANGED:
                self._on_position_changed(event)
            elif event.kind == HostEventKind.TEXT_SELECTED:
                self._on_text_selected(event)
            elif event.kind == HostEventKind.CONTENT_CLICKED:
                self._on_content_clicked(event)
        except MalformedPosition as exc:
            logger.warning("Ignoring %s event: %s", event.kind.value, exc)

    def _on_position_changed(self, event: HostEvent) -> None:
        position = event.position
        if not position:
            return
        parse_position(position)
        self._state.location = position
        self._state.current_page = self._page_for(position) or 0
        self._state.progress = self.locations.percentage_of(position) if self.locations.total else 0
        self._state.chapter_title = chapter_title_for(position, self._spine, self._toc)
        try:
            self.storage.write_json(self.storage.keys.location, position)
        except PersistenceFailure as exc:
            logger.warning("Could not persist the current position: %s", exc)

    def _on_text_selected(self, event: HostEvent) -> None:
        if not event.text or not event.position:
            return
        self._state.selection = Selection(position=event.position, text=event.text, rect=event.rect)

    def _on_content_clicked(self, event: HostEvent) -> None:
        if not event.text:
            self._state.selection = None
        self._state.clicked_highlight = None
        if event.point is not None:
            hit = self.annotations.hit_test(event.point)
            if hit.note is not None:
                self._state.editing_note = hit.note
                return
            if hit.highlight is not None:
                self._state.clicked_highlight = hit.highlight
                return
        if event.image is not None:
            self._state.image_preview = event.image

    @_exclusive
    def clear_selection(self) -> None:
        self._state.selection = None

    @_exclusive
    def close_note_editor(self) -> None:
        self._state.editing_note = None

    @_exclusive
    def close_image_preview(self) -> None:
        self._state.image_preview = None

    # endregion

    # region navigation
    @_exclusive
    def go_next(self) -> None:
        self.host.next()
        self.process_events()

    @_exclusive
    def go_prev(self) -> None:
        self.host.previous()
        self.process_events()

    @_exclusive
    def go_to_href(self, href: str) -> None:
        self.host.display(href)
        self.process_events()

    @_exclusive
    def go_to_position(self, position: str) -> None:
        parse_position(position)
        self._select(position)
        self.host.display(position)
        self.process_events()

    @_exclusive
    def go_to_bookmark(self, position: str) -> None:
        parse_position(position)
        self.host.display(position)
        self.process_events()

    def _select(self, position: str) -> None:
        if self._selected_position is not None:
            self.overlays.remove(self._selected_position, OverlayKind.SELECTED_RESULT)
        self.overlays.apply(OverlayKind.SELECTED_RESULT, position)
        self._selected_position = position

    def _page_for(self, position: str) -> Optional[int]:
        if not self.locations.total:
            return None
        try:
            return self.locations.page_of(position)
        except MalformedPosition as exc:
            logger.warning("Cannot compute a page for %r: %s", position, exc)
            return None

    # endregion

    # region search
    @_exclusive
    def search(self, query: str) -> List[SearchResult]:
        self._state.is_searching = True
        self._state.search_query = query
        try:
            results = self.search_engine.search(query, self._spine)
        finally:
            self._state.is_searching = False
        self._publish_results(results)
        return list(results)

    @_exclusive
    def update_search_query(self, query: str) -> List[SearchResult]:
        self._state.search_query = query
        if not query.strip():
            self._publish_results([])
        elif len(query) >= self.config.search_min_length:
            self.search(query)
        return list(self._search_results)

    def _publish_results(self, results: List[SearchResult]) -> None:
        for position in self._search_overlays:
            self.overlays.remove(position, OverlayKind.SEARCH_RESULT)
        self._search_results = list(results)
        self._search_overlays = [result.position for result in results]
        for result in results:
            self.overlays.apply(OverlayKind.SEARCH_RESULT, result.position, label=result.excerpt)
        self._state.current_search_index = 0 if results else -1

    @_exclusive
    def go_to_search_result(self, index: int) -> Optional[SearchResult]:
        if index < 0 or index >= len(self._search_results):
            return None
        result = self._search_results[index]
        self.host.display(result.position)
        self._select(result.position)
        self._state.current_search_index = index
        self.process_events()
        return result

    @property
    def search_results(self) -> List[SearchResult]:
        return list(self._search_results)

    # endregion

    # region annotations
    @_exclusive
    def add_highlight(
        self, position: str, text: str, kind: HighlightKind = HighlightKind.HIGHLIGHT, color: Optional[str] = None
    ) -> str:
        return self.annotations.add_highlight(position, text, kind, color)

    @_exclusive
    def remove_highlight(self, position: str, kind: HighlightKind = HighlightKind.HIGHLIGHT) -> bool:
        removed = self.annotations.remove_highlight(position, kind)
        clicked = self._state.clicked_highlight
        if removed and clicked is not None and clicked.position == position and clicked.kind == kind:
            self._state.clicked_highlight = None
        return removed

    @_exclusive
    def remove_all_highlights(self, kind: Optional[HighlightKind] = None) -> int:
        self._state.clicked_highlight = None
        return self.annotations.remove_all_highlights(kind)

    @_exclusive
    def update_highlight_color(self, position: str, color: str) -> int:
        return self.annotations.update_highlight_color(position, color)

    def list_highlights(self, kind: Optional[HighlightKind] = None) -> List[Highlight]:
        return self.annotations.list_highlights(kind)

    @_exclusive
    def add_note(self, position: str, text: str, note: str) -> Note:
        return self.annotations.add_note(position, text, note)

    @_exclusive
    def edit_note(self, position: str, note: str) -> Optional[Note]:
        edited = self.annotations.edit_note(position, note)
        if edited is not None and self._state.editing_note is not None:
            if self._state.editing_note.position == position:
                self._state.editing_note = edited
        return edited

    @_exclusive
    def remove_note(self, position: str) -> bool:
        removed = self.annotations.remove_note(position)
        if removed and self._state.editing_note is not None and self._state.editing_note.position == position:
            self._state.editing_note = None
        return removed

    @_exclusive
    def remove_all_notes(self) -> int:
        self._state.editing_note = None
        return self.annotations.remove_all_notes()

    def list_notes(self) -> List[Note]:
        return self.annotations.list_notes()

    @_exclusive
    def add_bookmark(self, label: Optional[str] = None) -> Optional[Bookmark]:
        position = self._state.location or self.host.current_position()
        if not position:
            logger.info("No current position, bookmark not added")
            return None
        return self.annotations.add_bookmark(
            position,
            chapter_title=self._state.chapter_title,
            page_number=self._page_for(position),
            label=label,
        )

    @_exclusive
    def remove_bookmark(self, position: str) -> bool:
        return self.annotations.remove_bookmark(position)

    @_exclusive
    def remove_all_bookmarks(self) -> int:
        return self.annotations.remove_all_bookmarks()

    def list_bookmarks(self) -> List[Bookmark]:
        return self.annotations.list_bookmarks()

    # endregion

    # region text
    def get_preview_text(self, char_count: Optional[int] = None) -> Optional[str]:
        """First characters of the chapter holding the middle of the document."""
        count = self.config.preview_chars if char_count is None else char_count
        position = self.locations.position_at_fraction(0.5)
        if position is None:
            return None
        chapter = chapter_of(position)
        try:
            with self.index.acquire(chapter) as handle:
                text = self.index.plain_text(handle).strip()
        except ChapterLoadFailure as exc:
            logger.warning("No preview available: %s", exc)
            return None
        return text[:count] or None

    @_exclusive
    def copy_text(self, text: str) -> None:
        """
        Copy `text` to the clipboard. Under copy protection the quota is
        charged first and a QuotaExceeded is raised when it would overflow.
        """
        if not self.quota.enabled:
            try:
                self.clipboard.write(text)
            except ClipboardFailure as exc:
                logger.error("Failed to copy text: %s", exc)
            return

        self.quota.authorize(len(text))
        self._state.copied_chars = self.quota.copied_chars
        self.clipboard.write(text)

    # endregion

    # region state
    @property
    def state(self) -> SessionState:
        with self._lock:
            return replace(self._state)

    @property
    def toc(self) -> List[TocNode]:
        return list(self._toc)

    @property
    def spine(self) -> List[SpineItem]:
        return list(self._spine)

    @property
    def images(self) -> List[BookImage]:
        return list(self._images)

    # endregion
