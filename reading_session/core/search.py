from __future__ import annotations

import bisect
import logging
from concurrent.futures import ThreadPoolExecutor
from itertools import accumulate
from typing import List, Sequence

from .chapters import ChapterTextIndex
from .errors import ChapterLoadFailure, MalformedPosition
from .models import SearchResult, SpineItem

logger = logging.getLogger(__name__)


def find_occurrences(buffer: str, query: str) -> List[int]:
    """Every match start, restarting one character past the previous start."""
    hits: List[int] = []
    start = buffer.find(query)
    while start != -1:
        hits.append(start)
        start = buffer.find(query, start + 1)
    return hits


def _fold_char(char: str) -> str:
    lowered = char.lower()
    return lowered if len(lowered) == 1 else char


def fold_case(text: str) -> str:
    """Lower-case `text` one character at a time so offsets still line up with the original."""
    return "".join(_fold_char(char) for char in text)


def make_excerpt(buffer: str, start: int, length: int, context: int) -> str:
    return "..." + buffer[max(0, start - context) : start + length + context] + "..."


class SearchEngine:
    """
    Case-insensitive substring search over every chapter.

    Chapters are scanned concurrently, each task loading and releasing its own
    chapter; results are only published once every task has finished, in
    spine order.
    """

    def __init__(self, index: ChapterTextIndex, max_workers: int = 8, context_length: int = 30):
        self.index = index
        self.max_workers = max_workers
        self.context_length = context_length

    def search(self, query: str, spine: Sequence[SpineItem]) -> List[SearchResult]:
        needle = fold_case((query or "").strip())
        if not needle or not spine:
            return []

        workers = max(1, min(self.max_workers, len(spine)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            per_chapter = list(executor.map(lambda item: self._search_chapter(item, needle), spine))

        results = [result for chapter_results in per_chapter for result in chapter_results]
        logger.info("Search for %r found %s results in %s chapters", needle, len(results), len(spine))
        return results

    def _search_chapter(self, item: SpineItem, needle: str) -> List[SearchResult]:
        try:
            with self.index.acquire(item.index) as handle:
                nodes = self.index.text_of(handle)
                lowered = [fold_case(node.text) for node in nodes]
                buffer = "".join(lowered)
                ends = list(accumulate(len(text) for text in lowered))

                results: List[SearchResult] = []
                for start in find_occurrences(buffer, needle):
                    node_index = bisect.bisect_right(ends, start)
                    node_start = ends[node_index - 1] if node_index else 0
                    try:
                        position = self.index.range_to_position(handle, node_index, start - node_start, len(needle))
                    except (IndexError, MalformedPosition) as exc:
                        logger.warning("Skipping match at %s in chapter %s: %s", start, item.index, exc)
                        continue
                    results.append(
                        SearchResult(
                            position=position,
                            excerpt=make_excerpt(buffer, start, len(needle), self.context_length),
                            chapter_href=item.href,
                            chapter_title=item.title,
                            chapter_index=item.index,
                        )
                    )
                return results
        except ChapterLoadFailure as exc:
            logger.warning("Skipping chapter %s during search: %s", item.index, exc)
            return []
