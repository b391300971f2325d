import json

from reading_session.core import (
    AnnotationStore,
    HighlightKind,
    OverlayDispatcher,
    OverlayKind,
    Point,
    Rect,
    RecordingOverlayService,
)

FIRST = "epubcfi(/6/2!/4/2/1,:0,:10)"
SECOND = "epubcfi(/6/4!/4/2/1,:5,:20)"


def make_store(storage, dispatcher):
    store = AnnotationStore(storage, dispatcher)
    store.load()
    return store


def stored(repo, key):
    raw = repo.get(key)
    return json.loads(raw) if raw is not None else None


def test_add_highlight_persists_and_paints(storage, repo, dispatcher, overlay_service):
    store = make_store(storage, dispatcher)
    highlight_id = store.add_highlight(FIRST, "The openin", color="green")

    assert [h.id for h in store.list_highlights()] == [highlight_id]
    overlay = overlay_service.overlays[(FIRST, OverlayKind.HIGHLIGHT)]
    assert overlay.style.style["fill"] == "green"
    assert overlay.style.class_name == "epub-highlight"
    assert stored(repo, "book-1/highlights")[0]["color"] == "green"


def test_duplicate_add_replaces_in_place(storage, dispatcher):
    store = make_store(storage, dispatcher)
    first_id = store.add_highlight(FIRST, "old text")
    store.add_highlight(SECOND, "other")
    again_id = store.add_highlight(FIRST, "new text", color="pink")

    highlights = store.list_highlights()
    assert first_id == again_id
    assert [h.position for h in highlights] == [FIRST, SECOND]
    assert highlights[0].text == "new text"
    assert highlights[0].color == "pink"


def test_highlight_and_underline_at_same_position_coexist(storage, dispatcher, overlay_service):
    store = make_store(storage, dispatcher)
    store.add_highlight(FIRST, "text")
    store.add_highlight(FIRST, "text", kind=HighlightKind.UNDERLINE)

    assert len(store.list_highlights()) == 2
    assert len(store.list_highlights(HighlightKind.UNDERLINE)) == 1
    assert store.remove_highlight(FIRST, HighlightKind.UNDERLINE)
    assert [h.kind for h in store.list_highlights()] == [HighlightKind.HIGHLIGHT]
    assert (FIRST, OverlayKind.UNDERLINE) not in overlay_service.overlays


def test_remove_missing_highlight_is_a_noop(storage, repo, dispatcher):
    store = make_store(storage, dispatcher)
    assert store.remove_highlight(FIRST) is False
    assert repo.get("book-1/highlights") is None


def test_update_color_restyles_every_kind(storage, repo, dispatcher, overlay_service):
    store = make_store(storage, dispatcher)
    store.add_highlight(FIRST, "text")
    store.add_highlight(FIRST, "text", kind=HighlightKind.UNDERLINE)

    assert store.update_highlight_color(FIRST, "blue") == 2
    assert {h.color for h in store.list_highlights()} == {"blue"}
    assert overlay_service.overlays[(FIRST, OverlayKind.UNDERLINE)].style.style["stroke"] == "blue"
    assert {h["color"] for h in stored(repo, "book-1/highlights")} == {"blue"}
    assert store.update_highlight_color(SECOND, "blue") == 0


def test_remove_all_clears_storage_key(storage, repo, dispatcher, overlay_service):
    store = make_store(storage, dispatcher)
    store.add_highlight(FIRST, "a")
    store.add_highlight(SECOND, "b")

    assert store.remove_all_highlights() == 2
    assert store.list_highlights() == []
    assert repo.get("book-1/highlights") is None
    assert overlay_service.active(OverlayKind.HIGHLIGHT) == []


def test_collections_survive_reload(storage, repo, dispatcher):
    store = make_store(storage, dispatcher)
    store.add_highlight(FIRST, "a", color="red")
    store.add_note(SECOND, "b", "remember this")
    store.add_bookmark(FIRST, chapter_title="Intro", page_number=3)

    reloaded_overlays = RecordingOverlayService()
    reloaded = make_store(storage, OverlayDispatcher(reloaded_overlays))
    assert reloaded.list_highlights() == store.list_highlights()
    assert reloaded.list_notes() == store.list_notes()
    assert reloaded.list_bookmarks() == store.list_bookmarks()
    assert (FIRST, OverlayKind.HIGHLIGHT) in reloaded_overlays.overlays
    assert reloaded_overlays.overlays[(SECOND, OverlayKind.NOTE)].label == "remember this"


def test_unreadable_collections_fall_back_to_empty(storage, repo, dispatcher):
    repo.set("book-1/highlights", b"{not json")
    repo.set("book-1/notes", json.dumps({"not": "a list"}).encode())
    repo.set("book-1/bookmarks", json.dumps([{"label": "no position"}, {"position": FIRST}]).encode())

    store = make_store(storage, dispatcher)
    assert store.list_highlights() == []
    assert store.list_notes() == []
    assert [b.position for b in store.list_bookmarks()] == [FIRST]


def test_notes_are_unique_by_position_and_editable(storage, dispatcher):
    store = make_store(storage, dispatcher)
    store.add_note(FIRST, "text", "first thought")
    store.add_note(FIRST, "text", "second thought")
    assert [n.note for n in store.list_notes()] == ["second thought"]

    edited = store.edit_note(FIRST, "final thought")
    assert edited.note == "final thought"
    assert store.edit_note(SECOND, "nothing here") is None
    assert store.remove_note(SECOND) is False
    assert store.remove_note(FIRST) is True
    assert store.list_notes() == []


def test_bookmarks_remove_all_clears_storage(storage, repo, dispatcher):
    store = make_store(storage, dispatcher)
    store.add_bookmark(FIRST)
    assert repo.get("book-1/bookmarks") is not None

    assert store.remove_all_bookmarks() == 1
    assert store.list_bookmarks() == []
    assert repo.get("book-1/bookmarks") is None


def test_list_returns_a_snapshot(storage, dispatcher):
    store = make_store(storage, dispatcher)
    store.add_highlight(FIRST, "a")
    snapshot = store.list_highlights()
    store.add_highlight(SECOND, "b")
    assert len(snapshot) == 1


def test_hit_test_prefers_notes(storage, dispatcher, overlay_service):
    store = make_store(storage, dispatcher)
    overlay_service.register_rects(FIRST, [Rect(0, 0, 100, 20)])
    overlay_service.register_rects(SECOND, [Rect(0, 40, 100, 60)])
    store.add_highlight(FIRST, "a")
    store.add_note(FIRST, "a", "note on top")
    store.add_highlight(SECOND, "b")

    hit = store.hit_test(Point(10, 10))
    assert hit.note is not None and hit.note.note == "note on top"
    assert hit.highlight is None

    hit = store.hit_test(Point(10, 50))
    assert hit.note is None
    assert hit.highlight.position == SECOND

    assert store.hit_test(Point(500, 500)).empty


def test_hit_test_skips_positions_the_service_cannot_resolve(storage):
    class FailingRects(RecordingOverlayService):
        def client_rects(self, position):
            if position == FIRST:
                raise ValueError("range not rendered")
            return super().client_rects(position)

    service = FailingRects()
    service.register_rects(SECOND, [Rect(0, 0, 10, 10)])
    store = make_store(storage, OverlayDispatcher(service))
    store.add_highlight(FIRST, "a")
    store.add_highlight(SECOND, "b")

    assert store.hit_test(Point(5, 5)).highlight.position == SECOND


def test_overlay_failures_do_not_block_mutations(storage):
    class BrokenOverlays(RecordingOverlayService):
        def apply_overlay(self, kind, position, style, label=None):
            raise RuntimeError("renderer gone")

    store = make_store(storage, OverlayDispatcher(BrokenOverlays()))
    store.add_highlight(FIRST, "a")
    assert len(store.list_highlights()) == 1


def test_recorded_overlay_commands_are_bounded(storage):
    overlays = RecordingOverlayService(history=5)
    store = make_store(storage, OverlayDispatcher(overlays))
    for color in ("red", "green", "blue", "yellow"):
        store.add_highlight(FIRST, "a", color=color)

    assert len(overlays.commands) == 5
    assert overlays.commands[-1] == ("apply", OverlayKind.HIGHLIGHT, FIRST)
    assert len(overlays.active()) == 1
