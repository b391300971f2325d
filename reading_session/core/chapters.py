from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Sequence

from .errors import ChapterLoadFailure
from .host import DocumentHost, LoadedChapter
from .models import ChapterImage, TextNode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextHandle:
    chapter_index: int
    href: str
    chapter: LoadedChapter


class ChapterTextIndex:
    """
    Ref-counted access to chapter text. The first `load` of a chapter asks the
    host to load it, the matching last `unload` releases it, so concurrent
    readers of the same chapter share one loaded copy.
    """

    def __init__(self, host: DocumentHost):
        self.host = host
        self._refs: Dict[int, int] = {}
        self._handles: Dict[int, TextHandle] = {}
        self._guard = threading.Lock()
        self._chapter_locks: Dict[int, threading.Lock] = {}

    def _lock_for(self, chapter_index: int) -> threading.Lock:
        with self._guard:
            return self._chapter_locks.setdefault(chapter_index, threading.Lock())

    def load(self, chapter_index: int) -> TextHandle:
        with self._lock_for(chapter_index):
            handle = self._handles.get(chapter_index)
            if handle is None:
                try:
                    loaded = self.host.load_chapter(chapter_index)
                except ChapterLoadFailure:
                    raise
                except Exception as exc:  # noqa: BLE001
                    raise ChapterLoadFailure(chapter_index, str(exc)) from exc
                handle = TextHandle(chapter_index=chapter_index, href=loaded.href, chapter=loaded)
                self._handles[chapter_index] = handle
            self._refs[chapter_index] = self._refs.get(chapter_index, 0) + 1
            return handle

    def unload(self, chapter_index: int) -> None:
        with self._lock_for(chapter_index):
            count = self._refs.get(chapter_index, 0)
            if count <= 0:
                return
            if count > 1:
                self._refs[chapter_index] = count - 1
                return
            self._refs.pop(chapter_index, None)
            self._handles.pop(chapter_index, None)
            try:
                self.host.unload_chapter(chapter_index)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to unload chapter %s: %s", chapter_index, exc)

    @contextmanager
    def acquire(self, chapter_index: int) -> Iterator[TextHandle]:
        handle = self.load(chapter_index)
        try:
            yield handle
        finally:
            self.unload(chapter_index)

    def ref_count(self, chapter_index: int) -> int:
        return self._refs.get(chapter_index, 0)

    def text_of(self, handle: TextHandle) -> Sequence[TextNode]:
        return handle.chapter.nodes

    def plain_text(self, handle: TextHandle) -> str:
        return "".join(node.text for node in handle.chapter.nodes)

    def images_of(self, handle: TextHandle) -> List[ChapterImage]:
        return list(handle.chapter.images)

    def range_to_position(self, handle: TextHandle, node_index: int, char_offset: int, length: int) -> str:
        return self.host.position_from_range(handle.chapter, node_index, char_offset, length)
