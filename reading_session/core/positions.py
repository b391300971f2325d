"""
Canonical position references.

Positions are EPUB CFI strings issued by the rendering host. The engine only
decodes them far enough to order them and to extract the chapter they point
into; everything else about them is opaque.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple, Union

from .errors import MalformedPosition
from .models import Ordering

_CFI_RE = re.compile(r"^epubcfi\((?P<body>.+)\)$")
_PATH_RE = re.compile(r"^(?P<steps>(?:/\d+(?:\[[^\]]*\])?)*)(?::(?P<offset>\d+)(?:\[[^\]]*\])?)?$")
_STEP_RE = re.compile(r"/(\d+)(?:\[[^\]]*\])?")

Steps = Tuple[int, ...]


@dataclass(frozen=True)
class Position:
    raw: str
    chapter_index: int
    start_steps: Steps
    start_offset: int
    end_steps: Steps
    end_offset: int

    @property
    def is_range(self) -> bool:
        return (self.start_steps, self.start_offset) != (self.end_steps, self.end_offset)

    def sort_key(self) -> Tuple[int, Steps, int, Steps, int]:
        return (self.chapter_index, self.start_steps, self.start_offset, self.end_steps, self.end_offset)

    def point_key(self) -> Tuple[int, Steps, int]:
        return (self.chapter_index, self.start_steps, self.start_offset)


PositionLike = Union[str, Position]


def _parse_path(raw: str, text: str) -> Tuple[Steps, Optional[int]]:
    match = _PATH_RE.match(text)
    if not match:
        raise MalformedPosition(raw, f"invalid path segment {text!r}")
    steps = tuple(int(step) for step in _STEP_RE.findall(match.group("steps")))
    offset = match.group("offset")
    return steps, int(offset) if offset is not None else None


@lru_cache(maxsize=4096)
def _parse(raw: str) -> Position:
    match = _CFI_RE.match(raw.strip())
    if not match:
        raise MalformedPosition(raw, "not an epubcfi(...) reference")

    parts = match.group("body").split(",")
    if len(parts) not in (1, 3):
        raise MalformedPosition(raw, "a range needs exactly a start and an end")

    head = parts[0].split("!")
    if len(head) > 2:
        raise MalformedPosition(raw, "more than one indirection step")

    spine_steps, spine_offset = _parse_path(raw, head[0])
    if len(spine_steps) < 2 or spine_offset is not None:
        raise MalformedPosition(raw, "missing spine step")
    spine_step = spine_steps[1]
    if spine_step < 2 or spine_step % 2:
        raise MalformedPosition(raw, f"spine step {spine_step} does not address a chapter")

    base_steps: Steps = ()
    base_offset: Optional[int] = None
    if len(head) == 2:
        base_steps, base_offset = _parse_path(raw, head[1])

    start_steps, start_offset = base_steps, base_offset
    end_steps, end_offset = base_steps, base_offset
    if len(parts) == 3:
        if base_offset is not None:
            raise MalformedPosition(raw, "range parent cannot carry an offset")
        start_rel, start_offset = _parse_path(raw, parts[1])
        end_rel, end_offset = _parse_path(raw, parts[2])
        start_steps = base_steps + start_rel
        end_steps = base_steps + end_rel

    return Position(
        raw=raw,
        chapter_index=spine_step // 2 - 1,
        start_steps=start_steps,
        start_offset=start_offset or 0,
        end_steps=end_steps,
        end_offset=end_offset or 0,
    )


def parse_position(position: PositionLike) -> Position:
    if isinstance(position, Position):
        return position
    if not isinstance(position, str) or not position:
        raise MalformedPosition(position, "expected a non-empty string")
    return _parse(position)


def is_valid(position: PositionLike) -> bool:
    try:
        parse_position(position)
    except MalformedPosition:
        return False
    return True


def chapter_of(position: PositionLike) -> int:
    return parse_position(position).chapter_index


def compare(a: PositionLike, b: PositionLike) -> Ordering:
    key_a = parse_position(a).sort_key()
    key_b = parse_position(b).sort_key()
    if key_a < key_b:
        return Ordering.BEFORE
    if key_a > key_b:
        return Ordering.AFTER
    return Ordering.EQUAL


def percentage(position: PositionLike, locations) -> float:
    """
    Fraction of the document read at `position`, in [0, 1].
    `locations` is the precomputed discretization (a LocationMap).
    """
    total = locations.total
    if not total:
        return 0.0
    return min(1.0, max(0.0, locations.location_of(position) / total))


def _format_steps(steps: Steps) -> str:
    return "".join(f"/{step}" for step in steps)


def format_point(spine_step: int, steps: Steps, offset: Optional[int], idref: Optional[str] = None) -> str:
    assertion = f"[{idref}]" if idref else ""
    tail = f":{offset}" if offset is not None else ""
    return f"epubcfi(/6/{spine_step}{assertion}!{_format_steps(steps)}{tail})"


def format_range(
    spine_step: int,
    start_steps: Steps,
    start_offset: int,
    end_steps: Steps,
    end_offset: int,
    idref: Optional[str] = None,
) -> str:
    common = 0
    limit = min(len(start_steps), len(end_steps))
    while common < limit and start_steps[common] == end_steps[common]:
        common += 1
    assertion = f"[{idref}]" if idref else ""
    return (
        f"epubcfi(/6/{spine_step}{assertion}!{_format_steps(start_steps[:common])},"
        f"{_format_steps(start_steps[common:])}:{start_offset},"
        f"{_format_steps(end_steps[common:])}:{end_offset})"
    )


def spine_step_for(chapter_index: int) -> int:
    return (chapter_index + 1) * 2
