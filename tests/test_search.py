import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from reading_session.core import (
    ChapterLoadFailure,
    ChapterTextIndex,
    HtmlChapter,
    HtmlDocumentHost,
    SearchEngine,
)
from reading_session.core.search import find_occurrences, make_excerpt


def make_engine(*htmls, host_cls=HtmlDocumentHost):
    chapters = [HtmlChapter(href=f"ch{i}.xhtml", html=html, title=f"Chapter {i + 1}") for i, html in enumerate(htmls)]
    host = host_cls("search-book", chapters)
    index = ChapterTextIndex(host)
    return host, index, SearchEngine(index, max_workers=4)


def test_reports_every_occurrence_in_a_chapter():
    host, _, engine = make_engine("<p>the cats category</p>")
    results = engine.search("cat", host.spine())
    assert [r.position for r in results] == [
        "epubcfi(/6/2!/4/2/1,:4,:7)",
        "epubcfi(/6/2!/4/2/1,:9,:12)",
    ]
    assert all(r.chapter_index == 0 and r.chapter_href == "ch0.xhtml" for r in results)
    assert results[0].excerpt == "...the cats category..."


def test_query_is_trimmed_and_case_insensitive():
    host, _, engine = make_engine("<p>The Cats Category</p>")
    assert len(engine.search("  CAT ", host.spine())) == 2


@pytest.mark.parametrize("query", ["", "   ", None])
def test_blank_query_returns_nothing(query):
    host, index, engine = make_engine("<p>anything</p>")
    assert engine.search(query, host.spine()) == []
    assert host.load_calls[0] == 0


def test_overlapping_matches_are_reported():
    assert find_occurrences("aaa", "aa") == [0, 1]


def test_excerpt_is_clamped_to_buffer():
    buffer = "x" * 10 + "needle" + "y" * 50
    excerpt = make_excerpt(buffer, 10, 6, 30)
    assert excerpt == "..." + "x" * 10 + "needle" + "y" * 30 + "..."


def test_results_follow_chapter_order_and_release_chapters():
    host, index, engine = make_engine(
        "<p>one needle</p>",
        "<p>no match here</p>",
        "<p>needle and needle</p>",
    )
    results = engine.search("needle", host.spine())
    assert [r.chapter_index for r in results] == [0, 2, 2]
    assert [r.chapter_title for r in results] == ["Chapter 1", "Chapter 3", "Chapter 3"]
    for chapter in range(3):
        assert index.ref_count(chapter) == 0
        assert host.load_calls[chapter] == host.unload_calls[chapter] == 1


def test_match_spanning_text_runs_maps_to_a_range():
    host, _, engine = make_engine("<p>the <b>ca</b>ts</p>")
    results = engine.search("cats", host.spine())
    assert len(results) == 1
    assert results[0].position == "epubcfi(/6/2!/4/2,/2/1:0,/3:2)"


def test_failing_chapter_is_skipped():
    class FlakyHost(HtmlDocumentHost):
        def load_chapter(self, index):
            if index == 1:
                raise ChapterLoadFailure(index, "corrupt")
            return super().load_chapter(index)

    host, index, engine = make_engine(
        "<p>needle</p>",
        "<p>needle</p>",
        "<p>needle</p>",
        host_cls=FlakyHost,
    )
    results = engine.search("needle", host.spine())
    assert [r.chapter_index for r in results] == [0, 2]
    assert index.ref_count(1) == 0


def test_offsets_survive_characters_that_grow_when_lower_cased():
    host, _, engine = make_engine("<p>İ cat</p>")
    results = engine.search("CAT", host.spine())
    assert [r.position for r in results] == ["epubcfi(/6/2!/4/2/1,:2,:5)"]
    assert results[0].excerpt == "...İ cat..."


def test_searches_overlapping_a_held_chapter_keep_ref_counts():
    class SlowHost(HtmlDocumentHost):
        def load_chapter(self, index):
            time.sleep(0.02)
            return super().load_chapter(index)

    host, index, engine = make_engine(
        "<p>needle one</p>",
        "<p>needle two</p>",
        "<p>needle three</p>",
        host_cls=SlowHost,
    )
    with index.acquire(0):
        with ThreadPoolExecutor(max_workers=3) as pool:
            runs = list(pool.map(lambda _: engine.search("needle", host.spine()), range(3)))
        assert index.ref_count(0) == 1
        assert host.is_open(0)
        assert host.load_calls[0] == 1

    assert all([r.chapter_index for r in run] == [0, 1, 2] for run in runs)
    assert all(index.ref_count(chapter) == 0 for chapter in range(3))
    assert all(host.load_calls[c] == host.unload_calls[c] for c in range(3))
    assert not any(host.is_open(chapter) for chapter in range(3))
