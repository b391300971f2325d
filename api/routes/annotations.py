from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from reading_session.core import HighlightKind, ReadingSession

from api.dependencies import get_session

router = APIRouter(prefix="/sessions/{session_id}", tags=["annotations"])


class HighlightIn(BaseModel):
    position: str
    text: str
    kind: HighlightKind = HighlightKind.HIGHLIGHT
    color: Optional[str] = None


class HighlightColorIn(BaseModel):
    position: str
    color: str


class NoteIn(BaseModel):
    position: str
    text: str
    note: str


class NoteEditIn(BaseModel):
    position: str
    note: str


class BookmarkIn(BaseModel):
    label: Optional[str] = None


class PositionIn(BaseModel):
    position: str


@router.get("/highlights")
def list_highlights(kind: Optional[HighlightKind] = None, session: ReadingSession = Depends(get_session)):
    return [asdict(h) for h in session.list_highlights(kind)]


@router.post("/highlights")
def add_highlight(body: HighlightIn, session: ReadingSession = Depends(get_session)):
    highlight_id = session.add_highlight(body.position, body.text, body.kind, body.color)
    return {"id": highlight_id}


@router.patch("/highlights")
def update_highlight_color(body: HighlightColorIn, session: ReadingSession = Depends(get_session)):
    updated = session.update_highlight_color(body.position, body.color)
    if not updated:
        raise HTTPException(status_code=404, detail=f"No highlight at {body.position}")
    return {"updated": updated}


@router.delete("/highlights")
def remove_highlights(
    position: Optional[str] = None,
    kind: Optional[HighlightKind] = None,
    session: ReadingSession = Depends(get_session),
):
    if position is None:
        return {"removed": session.remove_all_highlights(kind)}
    removed = session.remove_highlight(position, kind or HighlightKind.HIGHLIGHT)
    return {"removed": int(removed)}


@router.get("/notes")
def list_notes(session: ReadingSession = Depends(get_session)):
    return [asdict(n) for n in session.list_notes()]


@router.post("/notes")
def add_note(body: NoteIn, session: ReadingSession = Depends(get_session)):
    return asdict(session.add_note(body.position, body.text, body.note))


@router.patch("/notes")
def edit_note(body: NoteEditIn, session: ReadingSession = Depends(get_session)):
    note = session.edit_note(body.position, body.note)
    if note is None:
        raise HTTPException(status_code=404, detail=f"No note at {body.position}")
    return asdict(note)


@router.delete("/notes")
def remove_notes(position: Optional[str] = None, session: ReadingSession = Depends(get_session)):
    if position is None:
        return {"removed": session.remove_all_notes()}
    return {"removed": int(session.remove_note(position))}


@router.get("/bookmarks")
def list_bookmarks(session: ReadingSession = Depends(get_session)):
    return [asdict(b) for b in session.list_bookmarks()]


@router.post("/bookmarks")
def add_bookmark(body: BookmarkIn, session: ReadingSession = Depends(get_session)):
    bookmark = session.add_bookmark(body.label)
    if bookmark is None:
        raise HTTPException(status_code=409, detail="The session has no current position")
    return asdict(bookmark)


@router.post("/bookmarks/open")
def open_bookmark(body: PositionIn, session: ReadingSession = Depends(get_session)):
    session.go_to_bookmark(body.position)
    return asdict(session.state)


@router.delete("/bookmarks")
def remove_bookmarks(position: Optional[str] = None, session: ReadingSession = Depends(get_session)):
    if position is None:
        return {"removed": session.remove_all_bookmarks()}
    return {"removed": int(session.remove_bookmark(position))}
