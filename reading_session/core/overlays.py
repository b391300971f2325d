from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Protocol, Sequence, Tuple

from .models import OverlayKind, Rect

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverlayStyle:
    class_name: Optional[str]
    style: Dict[str, str] = field(default_factory=dict)


OVERLAY_STYLES: Dict[OverlayKind, OverlayStyle] = {
    OverlayKind.HIGHLIGHT: OverlayStyle(
        "epub-highlight", {"fill": "yellow", "fillOpacity": "0.5", "mixBlendMode": "multiply"}
    ),
    OverlayKind.UNDERLINE: OverlayStyle("epub-underline", {"stroke": "yellow", "strokeWidth": "1"}),
    OverlayKind.NOTE: OverlayStyle(
        "epub-note", {"fill": "lightblue", "fillOpacity": "0.4", "mixBlendMode": "multiply"}
    ),
    OverlayKind.SEARCH_RESULT: OverlayStyle(
        "epub-search-highlight", {"fill": "red", "fillOpacity": "0.3", "mixBlendMode": "multiply"}
    ),
    OverlayKind.SELECTED_RESULT: OverlayStyle(
        None, {"fill": "yellow", "fillOpacity": "100", "mixBlendMode": "multiply"}
    ),
}


def style_for(kind: OverlayKind, color: Optional[str] = None) -> OverlayStyle:
    base = OVERLAY_STYLES[kind]
    if color is None:
        return base
    # A colour override paints both the fill and the stroke
    return OverlayStyle(base.class_name, {**base.style, "fill": color, "stroke": color})


class OverlayService(Protocol):
    def apply_overlay(
        self, kind: OverlayKind, position: str, style: OverlayStyle, label: Optional[str] = None
    ) -> None:
        ...

    def remove_overlay(self, position: str, kind: OverlayKind) -> None:
        ...

    def client_rects(self, position: str) -> Sequence[Rect]:
        ...


class NoopOverlayService:
    """
    Default overlay service. Keeps the session wired when nothing is painting.
    """

    def apply_overlay(
        self, kind: OverlayKind, position: str, style: OverlayStyle, label: Optional[str] = None
    ) -> None:
        return None

    def remove_overlay(self, position: str, kind: OverlayKind) -> None:
        return None

    def client_rects(self, position: str) -> Sequence[Rect]:
        return []


@dataclass
class AppliedOverlay:
    kind: OverlayKind
    position: str
    style: OverlayStyle
    label: Optional[str] = None


class RecordingOverlayService:
    """
    Keeps the set of overlays currently applied and serves the screen
    rectangles a host UI registered for positions. Used by the HTTP layer to
    report overlays and by tests to observe overlay commands. Only the most
    recent `history` commands are kept.
    """

    def __init__(self, history: int = 500):
        self.overlays: Dict[Tuple[str, OverlayKind], AppliedOverlay] = {}
        self.commands: Deque[Tuple[str, OverlayKind, str]] = deque(maxlen=history)
        self.rects: Dict[str, List[Rect]] = {}

    def apply_overlay(
        self, kind: OverlayKind, position: str, style: OverlayStyle, label: Optional[str] = None
    ) -> None:
        self.overlays[(position, kind)] = AppliedOverlay(kind=kind, position=position, style=style, label=label)
        self.commands.append(("apply", kind, position))

    def remove_overlay(self, position: str, kind: OverlayKind) -> None:
        self.overlays.pop((position, kind), None)
        self.commands.append(("remove", kind, position))

    def client_rects(self, position: str) -> Sequence[Rect]:
        return self.rects.get(position, [])

    def register_rects(self, position: str, rects: Sequence[Rect]) -> None:
        self.rects[position] = list(rects)

    def active(self, kind: Optional[OverlayKind] = None) -> List[AppliedOverlay]:
        return [o for o in self.overlays.values() if kind is None or o.kind == kind]


class OverlayDispatcher:
    """
    Fire-and-forget wrapper around an overlay service: failures are logged
    and never reach the caller.
    """

    def __init__(self, service: OverlayService):
        self.service = service

    def apply(self, kind: OverlayKind, position: str, color: Optional[str] = None, label: Optional[str] = None) -> None:
        try:
            self.service.apply_overlay(kind, position, style_for(kind, color), label)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Overlay %s could not be applied at %s: %s", kind.value, position, exc)

    def remove(self, position: str, kind: OverlayKind) -> None:
        try:
            self.service.remove_overlay(position, kind)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Overlay %s could not be removed at %s: %s", kind.value, position, exc)

    def restyle(self, kind: OverlayKind, position: str, color: str, label: Optional[str] = None) -> None:
        self.remove(position, kind)
        self.apply(kind, position, color, label)

    def rects(self, position: str) -> Sequence[Rect]:
        return self.service.client_rects(position)
