from __future__ import annotations

import bisect
import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .chapters import ChapterTextIndex
from .errors import ChapterLoadFailure
from .models import SpineItem, TocNode
from .positions import PositionLike, Steps, parse_position

logger = logging.getLogger(__name__)


@dataclass
class _ChapterLengths:
    index: int
    node_lengths: List[int]

    @property
    def total(self) -> int:
        return sum(self.node_lengths)


class LocationMap:
    """
    The document discretized into equal-content location buckets. Bucket `i`
    starts at the position of character `floor(i * total_chars / n)`.
    """

    def __init__(self, boundaries: Sequence[str], total_chars: int):
        self.boundaries: List[str] = list(boundaries)
        self.total_chars = total_chars
        self._keys: List[Tuple[int, Steps, int]] = [parse_position(b).point_key() for b in self.boundaries]

    @property
    def total(self) -> int:
        return len(self.boundaries)

    def location_of(self, position: PositionLike) -> int:
        key = parse_position(position).point_key()
        index = bisect.bisect_right(self._keys, key) - 1
        if index < 0 or self._keys[index][0] != key[0]:
            # Before the first boundary of its chapter: use that boundary
            first = bisect.bisect_left(self._keys, (key[0],))
            if first < len(self._keys) and self._keys[first][0] == key[0]:
                index = first
        return max(0, index)

    def page_of(self, position: PositionLike) -> int:
        if not self.boundaries:
            return 1
        return min(self.total, max(1, self.location_of(position) + 1))

    def percentage_of(self, position: PositionLike) -> int:
        if not self.boundaries:
            return 0
        # Halves round up
        return math.floor(100 * self.location_of(position) / self.total + 0.5)

    def position_at_fraction(self, fraction: float) -> Optional[str]:
        if not self.boundaries:
            return None
        index = int(min(1.0, max(0.0, fraction)) * self.total)
        return self.boundaries[min(index, self.total - 1)]

    @classmethod
    def empty(cls) -> "LocationMap":
        return cls([], 0)

    @classmethod
    def generate(cls, index: ChapterTextIndex, spine: Sequence[SpineItem], resolution: int) -> "LocationMap":
        lengths: List[_ChapterLengths] = []
        for item in spine:
            try:
                with index.acquire(item.index) as handle:
                    lengths.append(_ChapterLengths(item.index, [len(n.text) for n in index.text_of(handle)]))
            except ChapterLoadFailure as exc:
                logger.warning("Skipping chapter %s while generating locations: %s", item.index, exc)

        total_chars = sum(chapter.total for chapter in lengths)
        buckets = min(resolution, total_chars)
        if buckets <= 0:
            return cls([], total_chars)

        starts = [(i * total_chars) // buckets for i in range(buckets)]
        boundaries: List[str] = []
        cursor = 0
        consumed = 0
        for chapter in lengths:
            chapter_end = consumed + chapter.total
            wanted = []
            while cursor < len(starts) and starts[cursor] < chapter_end:
                wanted.append(starts[cursor] - consumed)
                cursor += 1
            if wanted:
                boundaries.extend(cls._chapter_boundaries(index, chapter, wanted))
            consumed = chapter_end

        logger.info("Generated %s locations over %s characters", len(boundaries), total_chars)
        return cls(boundaries, total_chars)

    @staticmethod
    def _chapter_boundaries(index: ChapterTextIndex, chapter: _ChapterLengths, offsets: List[int]) -> List[str]:
        positions: List[str] = []
        try:
            with index.acquire(chapter.index) as handle:
                node, base = 0, 0
                for offset in offsets:
                    while offset - base >= chapter.node_lengths[node]:
                        base += chapter.node_lengths[node]
                        node += 1
                    positions.append(index.range_to_position(handle, node, offset - base, 0))
        except ChapterLoadFailure as exc:
            logger.warning("Skipping chapter %s while generating locations: %s", chapter.index, exc)
        return positions


def count_toc_entries(toc: Sequence[TocNode]) -> int:
    return sum(1 + count_toc_entries(node.children) for node in toc)


def estimate_toc_pages(toc: Sequence[TocNode], total_locations: int) -> List[TocNode]:
    """
    Return a copy of the TOC tree annotated with estimated pages.

    Entry `i` of `n` (all entries, every depth) gets `floor(i / n * total) + 1`,
    clamped to `[1, total]`. Children are numbered from their parent's index:
    `parent + position + 1`. Nothing is estimated when there are no locations.
    """
    count = count_toc_entries(toc)

    def estimate(index: int) -> Optional[int]:
        if total_locations <= 0 or count == 0:
            return None
        page = math.floor(index / count * total_locations) + 1
        return min(total_locations, max(1, page))

    def enhance(node: TocNode, index: int) -> TocNode:
        try:
            page = estimate(index)
        except (ArithmeticError, ValueError) as exc:
            logger.warning("Could not estimate a page for %r: %s", node.title, exc)
            page = None
        children = [enhance(child, index + offset + 1) for offset, child in enumerate(node.children)]
        return TocNode(title=node.title, href=node.href, estimated_page=page, children=children)

    return [enhance(node, i) for i, node in enumerate(toc)]


def _strip_fragment(href: str) -> str:
    return href.split("#", 1)[0]


def _walk(toc: Sequence[TocNode]):
    for node in toc:
        yield node
        yield from _walk(node.children)


def chapter_title_for(position: PositionLike, spine: Sequence[SpineItem], toc: Sequence[TocNode]) -> Optional[str]:
    """Title of the first TOC entry (pre-order) pointing into the position's chapter."""
    chapter = parse_position(position).chapter_index
    if chapter < 0 or chapter >= len(spine):
        return None
    href = spine[chapter].href
    for node in _walk(toc):
        target = _strip_fragment(node.href)
        if target == href or href.endswith("/" + target):
            return node.title
    return None


def toc_to_json(toc: Sequence[TocNode]) -> list:
    return [
        {
            "title": node.title,
            "href": node.href,
            "estimated_page": node.estimated_page,
            "children": toc_to_json(node.children),
        }
        for node in toc
    ]


def toc_from_json(data) -> List[TocNode]:
    if not isinstance(data, list):
        return []
    nodes: List[TocNode] = []
    for entry in data:
        try:
            nodes.append(
                TocNode(
                    title=entry["title"],
                    href=entry["href"],
                    estimated_page=entry.get("estimated_page"),
                    children=toc_from_json(entry.get("children") or []),
                )
            )
        except (KeyError, TypeError, AttributeError) as exc:
            logger.warning("Skipping unreadable cached TOC entry: %s", exc)
    return nodes
