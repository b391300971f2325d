from __future__ import annotations

import logging
from dataclasses import asdict, replace
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from reading_session.core import (
    DocumentMetadata,
    HostEvent,
    HostEventKind,
    HtmlChapter,
    HtmlDocumentHost,
    ImagePreview,
    InMemoryClipboard,
    KeyValueRepository,
    Point,
    ReadingSession,
    RecordingOverlayService,
    Rect,
    SessionConfig,
    TocNode,
)

from api.dependencies import SessionRegistry, get_config, get_registry, get_repo, get_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


class ChapterIn(BaseModel):
    href: str
    html: str
    title: Optional[str] = None
    idref: Optional[str] = None


class TocIn(BaseModel):
    title: str
    href: str
    children: List["TocIn"] = Field(default_factory=list)

    def to_node(self) -> TocNode:
        return TocNode(title=self.title, href=self.href, children=[c.to_node() for c in self.children])


TocIn.model_rebuild()


class OpenSessionIn(BaseModel):
    document_id: str
    title: str
    author: Optional[str] = None
    cover: Optional[str] = None
    chapters: List[ChapterIn]
    toc: Optional[List[TocIn]] = None
    copy_protected: Optional[bool] = None
    copy_allowance_percent: Optional[float] = None
    location_resolution: Optional[int] = None


class NavigateIn(BaseModel):
    direction: Optional[Literal["next", "prev"]] = None
    href: Optional[str] = None
    position: Optional[str] = None


class RectIn(BaseModel):
    left: float
    top: float
    right: float
    bottom: float

    def to_rect(self) -> Rect:
        return Rect(left=self.left, top=self.top, right=self.right, bottom=self.bottom)


class EventIn(BaseModel):
    kind: HostEventKind
    position: Optional[str] = None
    text: Optional[str] = None
    x: Optional[float] = None
    y: Optional[float] = None
    rect: Optional[RectIn] = None
    image_src: Optional[str] = None
    image_description: str = ""


class RectsIn(BaseModel):
    position: str
    rects: List[RectIn]


class CopyIn(BaseModel):
    text: str


def _state(session: ReadingSession) -> dict:
    return asdict(session.state)


@router.post("")
def open_session(
    body: OpenSessionIn,
    registry: SessionRegistry = Depends(get_registry),
    repo: KeyValueRepository = Depends(get_repo),
    config: SessionConfig = Depends(get_config),
):
    overrides = {
        name: value
        for name, value in (
            ("copy_protected", body.copy_protected),
            ("copy_allowance_percent", body.copy_allowance_percent),
            ("location_resolution", body.location_resolution),
        )
        if value is not None
    }
    session_config = replace(config, **overrides)
    host = HtmlDocumentHost(
        document_id=body.document_id,
        chapters=[HtmlChapter(href=c.href, html=c.html, title=c.title, idref=c.idref) for c in body.chapters],
        metadata=DocumentMetadata(title=body.title, author=body.author, cover=body.cover),
        toc=[entry.to_node() for entry in body.toc] if body.toc is not None else None,
    )
    overlays = RecordingOverlayService()
    clipboard = InMemoryClipboard()
    session = ReadingSession(
        host=host, repository=repo, config=session_config, overlay_service=overlays, clipboard=clipboard
    )
    session.start()
    registry.add(session, overlays)
    logger.info("Opened session %s", body.document_id)
    return _state(session)


@router.get("")
def list_sessions(registry: SessionRegistry = Depends(get_registry)):
    return registry.ids()


@router.get("/{session_id}")
def get_state(session: ReadingSession = Depends(get_session)):
    return _state(session)


@router.delete("/{session_id}")
def close_session(session_id: str, purge: bool = False, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    if purge:
        session.storage.clear()
    registry.remove(session_id)
    return {"closed": session_id, "purged": purge}


@router.post("/{session_id}/navigate")
def navigate(body: NavigateIn, session: ReadingSession = Depends(get_session)):
    if body.direction == "next":
        session.go_next()
    elif body.direction == "prev":
        session.go_prev()
    elif body.position:
        session.go_to_position(body.position)
    elif body.href:
        try:
            session.go_to_href(body.href)
        except LookupError as exc:
            raise HTTPException(status_code=404, detail=str(exc))
    else:
        raise HTTPException(status_code=400, detail="Provide a direction, an href or a position")
    return _state(session)


@router.post("/{session_id}/events")
def post_event(body: EventIn, session: ReadingSession = Depends(get_session)):
    point = Point(x=body.x, y=body.y) if body.x is not None and body.y is not None else None
    image = ImagePreview(src=body.image_src, description=body.image_description) if body.image_src else None
    session.dispatch(
        HostEvent(
            kind=body.kind,
            position=body.position,
            text=body.text,
            point=point,
            rect=body.rect.to_rect() if body.rect else None,
            image=image,
        )
    )
    return _state(session)


@router.get("/{session_id}/toc")
def get_toc(session: ReadingSession = Depends(get_session)):
    return [asdict(node) for node in session.toc]


@router.get("/{session_id}/images")
def get_images(session: ReadingSession = Depends(get_session)):
    return [asdict(image) for image in session.images]


@router.get("/{session_id}/search")
def search(query: str, session: ReadingSession = Depends(get_session)):
    results = session.search(query)
    return {
        "query": query,
        "current_index": session.state.current_search_index,
        "results": [asdict(result) for result in results],
    }


@router.post("/{session_id}/search/{index}")
def select_search_result(index: int, session: ReadingSession = Depends(get_session)):
    result = session.go_to_search_result(index)
    if result is None:
        raise HTTPException(status_code=404, detail=f"No search result at index {index}")
    return {"result": asdict(result), "state": _state(session)}


@router.get("/{session_id}/preview")
def get_preview(chars: Optional[int] = None, session: ReadingSession = Depends(get_session)):
    return {"text": session.get_preview_text(chars)}


@router.post("/{session_id}/copy")
def copy_text(body: CopyIn, session: ReadingSession = Depends(get_session)):
    session.copy_text(body.text)
    quota = session.quota.state
    return {
        "copied_chars": quota.copied_chars,
        "total_chars": quota.total_chars,
        "allowance": quota.allowance,
        "remaining": quota.remaining,
        "enabled": quota.enabled,
    }


@router.get("/{session_id}/overlays")
def list_overlays(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    overlays = registry.overlays(session_id)
    if overlays is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return [
        {
            "kind": overlay.kind,
            "position": overlay.position,
            "class_name": overlay.style.class_name,
            "style": overlay.style.style,
            "label": overlay.label,
        }
        for overlay in overlays.active()
    ]


@router.put("/{session_id}/overlays/rects")
def register_rects(session_id: str, body: RectsIn, registry: SessionRegistry = Depends(get_registry)):
    overlays = registry.overlays(session_id)
    if overlays is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    overlays.register_rects(body.position, [r.to_rect() for r in body.rects])
    return {"position": body.position, "rects": len(body.rects)}
