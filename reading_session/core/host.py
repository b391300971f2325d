from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Sequence

from bs4 import BeautifulSoup, NavigableString, Tag

from .errors import ChapterLoadFailure
from .models import (
    ChapterImage,
    DocumentMetadata,
    HostEvent,
    HostEventKind,
    SpineItem,
    TextNode,
    TocNode,
)
from .positions import Steps, format_point, format_range, parse_position, spine_step_for

logger = logging.getLogger(__name__)


@dataclass
class LoadedChapter:
    index: int
    href: str
    nodes: List[TextNode]
    images: List[ChapterImage] = field(default_factory=list)
    document: Any = None


class DocumentHost:
    """
    Rendering/pagination collaborator. Implementations own the rendered
    document; the engine only asks them for chapter text, for canonical
    positions of text ranges, and to move the reading viewport.
    """

    document_id: str

    def metadata(self) -> DocumentMetadata:
        raise NotImplementedError

    def spine(self) -> List[SpineItem]:
        raise NotImplementedError

    def toc(self) -> List[TocNode]:
        raise NotImplementedError

    def load_chapter(self, index: int) -> LoadedChapter:
        raise NotImplementedError

    def unload_chapter(self, index: int) -> None:
        raise NotImplementedError

    def position_from_range(self, chapter: LoadedChapter, node_index: int, char_offset: int, length: int) -> str:
        raise NotImplementedError

    def display(self, target: Optional[str] = None) -> None:
        """Jump to a position or an href; None means the start of the document."""
        raise NotImplementedError

    def next(self) -> None:
        raise NotImplementedError

    def previous(self) -> None:
        raise NotImplementedError

    def current_position(self) -> Optional[str]:
        raise NotImplementedError

    def poll_events(self) -> List[HostEvent]:
        """
        Drain pending host events. Hosts that push events through the
        controller's dispatch directly can keep the default.
        """
        return []


@dataclass
class HtmlChapter:
    href: str
    html: str
    title: Optional[str] = None
    idref: Optional[str] = None


@dataclass
class _ParsedChapter:
    root: Tag
    body: Tag
    nodes: List[NavigableString]
    node_steps: List[Steps]
    node_offsets: List[int]


def _steps_for(node, root: Tag) -> Steps:
    steps: List[int] = []
    current = node
    while current is not root and current.parent is not None:
        parent = current.parent
        elements_before = 0
        for sibling in parent.contents:
            if sibling is current:
                break
            if isinstance(sibling, Tag):
                elements_before += 1
        if isinstance(current, Tag):
            steps.append(2 * (elements_before + 1))
        else:
            steps.append(2 * elements_before + 1)
        current = parent
    return tuple(reversed(steps))


def _run_offset(node) -> int:
    """Characters of the text runs before `node` that share its step, across comments."""
    offset = 0
    sibling = node.previous_sibling
    while sibling is not None and not isinstance(sibling, Tag):
        if type(sibling) is NavigableString:
            offset += len(sibling)
        sibling = sibling.previous_sibling
    return offset


def _parse_html(html: str) -> _ParsedChapter:
    soup = BeautifulSoup(html, "html.parser")
    if soup.body is None:
        soup = BeautifulSoup(f"<html><head></head><body>{html}</body></html>", "html.parser")
    root = soup.html or soup
    body = soup.body
    nodes = [
        string
        for string in body.descendants
        if type(string) is NavigableString and string.parent.name not in ("script", "style")
    ]
    return _ParsedChapter(
        root=root,
        body=body,
        nodes=nodes,
        node_steps=[_steps_for(n, root) for n in nodes],
        node_offsets=[_run_offset(n) for n in nodes],
    )


class HtmlDocumentHost(DocumentHost):
    """
    In-memory host over chapters supplied as (X)HTML strings. Navigation is
    chapter-granular; there is no visual pagination.
    """

    def __init__(
        self,
        document_id: str,
        chapters: Sequence[HtmlChapter],
        metadata: Optional[DocumentMetadata] = None,
        toc: Optional[List[TocNode]] = None,
    ):
        self.document_id = document_id
        self._chapters = list(chapters)
        self._metadata = metadata or DocumentMetadata(title=document_id)
        self._toc = toc
        self._current: Optional[str] = None
        self._events: Deque[HostEvent] = deque()
        self._lock = threading.Lock()
        self._parsed: Dict[int, _ParsedChapter] = {}
        self._open: Dict[int, LoadedChapter] = {}
        self.load_calls: Counter = Counter()
        self.unload_calls: Counter = Counter()

    # region document structure
    def metadata(self) -> DocumentMetadata:
        return self._metadata

    def spine(self) -> List[SpineItem]:
        return [
            SpineItem(index=i, href=ch.href, title=ch.title or f"Section {i + 1}", idref=ch.idref)
            for i, ch in enumerate(self._chapters)
        ]

    def toc(self) -> List[TocNode]:
        if self._toc is not None:
            return self._toc
        # Flat fallback built from the spine
        return [TocNode(title=item.title, href=item.href) for item in self.spine()]

    def is_open(self, index: int) -> bool:
        return index in self._open

    # endregion

    # region chapter loading
    def _parsed_chapter(self, index: int) -> _ParsedChapter:
        with self._lock:
            parsed = self._parsed.get(index)
        if parsed is None:
            parsed = _parse_html(self._chapters[index].html)
            with self._lock:
                self._parsed[index] = parsed
        return parsed

    def load_chapter(self, index: int) -> LoadedChapter:
        if index < 0 or index >= len(self._chapters):
            raise ChapterLoadFailure(index, "no such spine item")
        chapter = self._chapters[index]
        parsed = self._parsed_chapter(index)
        spine_step = spine_step_for(index)
        images = []
        for img in parsed.body.find_all("img"):
            images.append(
                ChapterImage(
                    src=img.get("src", ""),
                    position=format_point(spine_step, _steps_for(img, parsed.root), None, chapter.idref),
                    description=img.get("title") or img.get("alt") or "",
                )
            )
        loaded = LoadedChapter(
            index=index,
            href=chapter.href,
            nodes=[TextNode(node_index=i, text=str(node)) for i, node in enumerate(parsed.nodes)],
            images=images,
            document=parsed,
        )
        with self._lock:
            self.load_calls[index] += 1
            self._open[index] = loaded
        logger.debug("Loaded chapter %s (%s text runs, %s images)", index, len(loaded.nodes), len(images))
        return loaded

    def unload_chapter(self, index: int) -> None:
        with self._lock:
            self.unload_calls[index] += 1
            self._open.pop(index, None)

    # endregion

    # region positions
    def position_from_range(self, chapter: LoadedChapter, node_index: int, char_offset: int, length: int) -> str:
        nodes = chapter.nodes
        parsed: _ParsedChapter = chapter.document
        node_steps, node_offsets = parsed.node_steps, parsed.node_offsets
        if node_index < 0 or node_index >= len(nodes):
            raise IndexError(f"Text node {node_index} out of range for chapter {chapter.index}")
        if char_offset < 0 or char_offset > len(nodes[node_index].text):
            raise IndexError(f"Offset {char_offset} out of range for text node {node_index}")

        spine_step = spine_step_for(chapter.index)
        idref = self._chapters[chapter.index].idref
        if length <= 0:
            return format_point(spine_step, node_steps[node_index], node_offsets[node_index] + char_offset, idref)

        end_node = node_index
        end_offset = char_offset + length
        while end_offset > len(nodes[end_node].text) and end_node + 1 < len(nodes):
            end_offset -= len(nodes[end_node].text)
            end_node += 1
        if end_offset > len(nodes[end_node].text):
            raise IndexError(f"Range runs past the end of chapter {chapter.index}")
        return format_range(
            spine_step,
            node_steps[node_index],
            node_offsets[node_index] + char_offset,
            node_steps[end_node],
            node_offsets[end_node] + end_offset,
            idref,
        )

    def _chapter_start(self, index: int) -> str:
        parsed = self._parsed_chapter(index)
        return format_point(
            spine_step_for(index), _steps_for(parsed.body, parsed.root), None, self._chapters[index].idref
        )

    def _resolve_href(self, href: str) -> str:
        file_href, _, anchor = href.partition("#")
        for index, chapter in enumerate(self._chapters):
            if chapter.href != file_href and chapter.href.rsplit("/", 1)[-1] != file_href:
                continue
            if anchor:
                parsed = self._parsed_chapter(index)
                target = parsed.body.find(id=anchor)
                if target is not None:
                    return format_point(
                        spine_step_for(index), _steps_for(target, parsed.root), None, chapter.idref
                    )
            return self._chapter_start(index)
        raise LookupError(f"Unknown href: {href}")

    # endregion

    # region navigation
    def _move_to(self, position: str) -> None:
        self._current = position
        self._events.append(HostEvent(kind=HostEventKind.POSITION_CHANGED, position=position))

    def display(self, target: Optional[str] = None) -> None:
        if not self._chapters:
            raise LookupError("Document has no chapters")
        if target is None:
            self._move_to(self._chapter_start(0))
        elif target.startswith("epubcfi("):
            if parse_position(target).chapter_index >= len(self._chapters):
                raise LookupError(f"Position outside the document: {target}")
            self._move_to(target)
        else:
            self._move_to(self._resolve_href(target))

    def _current_chapter(self) -> int:
        if self._current is None:
            return 0
        return parse_position(self._current).chapter_index

    def next(self) -> None:
        index = self._current_chapter() + 1
        if index < len(self._chapters):
            self._move_to(self._chapter_start(index))

    def previous(self) -> None:
        index = self._current_chapter() - 1
        if index >= 0:
            self._move_to(self._chapter_start(index))

    def current_position(self) -> Optional[str]:
        return self._current

    def emit(self, event: HostEvent) -> None:
        self._events.append(event)

    def poll_events(self) -> List[HostEvent]:
        events: List[HostEvent] = []
        while self._events:
            events.append(self._events.popleft())
        return events

    # endregion
