from reading_session.core import (
    ChapterLoadFailure,
    ChapterTextIndex,
    HtmlChapter,
    HtmlDocumentHost,
    LocationMap,
    SpineItem,
    TocNode,
    chapter_title_for,
    estimate_toc_pages,
)
from reading_session.core.progress import toc_from_json, toc_to_json


def flat_toc(count):
    return [TocNode(title=f"Entry {i}", href=f"ch{i}.xhtml") for i in range(count)]


def test_flat_toc_estimates():
    estimated = estimate_toc_pages(flat_toc(4), 100)
    assert [node.estimated_page for node in estimated] == [1, 26, 51, 76]


def test_nested_toc_numbers_children_from_parent():
    toc = [
        TocNode(
            title="Part I",
            href="p1.xhtml",
            children=[TocNode(title="One", href="c1.xhtml"), TocNode(title="Two", href="c2.xhtml")],
        ),
        TocNode(title="Part II", href="p2.xhtml"),
    ]
    estimated = estimate_toc_pages(toc, 100)
    assert estimated[0].estimated_page == 1
    assert [child.estimated_page for child in estimated[0].children] == [26, 51]
    assert estimated[1].estimated_page == 26
    assert toc[0].estimated_page is None


def test_toc_without_locations_has_no_pages():
    estimated = estimate_toc_pages(flat_toc(3), 0)
    assert [node.estimated_page for node in estimated] == [None, None, None]
    assert [node.title for node in estimated] == ["Entry 0", "Entry 1", "Entry 2"]


def test_toc_json_round_trip_skips_bad_entries():
    nodes = estimate_toc_pages(flat_toc(2), 10)
    data = toc_to_json(nodes) + [{"title": "missing href"}]
    restored = toc_from_json(data)
    assert restored == nodes
    assert toc_from_json("garbage") == []


def test_locations_split_document_evenly(host, text_index):
    locations = LocationMap.generate(text_index, host.spine(), 100)
    assert locations.total == 100
    assert locations.total_chars == 400
    assert locations.boundaries[0] == "epubcfi(/6/2!/4/2/1:0)"
    assert locations.boundaries[25] == "epubcfi(/6/4!/4/2/1:0)"
    assert locations.boundaries[26] == "epubcfi(/6/4!/4/2/1:4)"
    assert all(text_index.ref_count(i) == 0 for i in range(2))


def test_pages_and_percentages(host, text_index):
    locations = LocationMap.generate(text_index, host.spine(), 100)
    assert locations.page_of("epubcfi(/6/2!/4)") == 1
    assert locations.page_of("epubcfi(/6/4!/4)") == 26
    assert locations.page_of("epubcfi(/6/4!/4/2/1:299)") == 100
    assert locations.percentage_of("epubcfi(/6/4!/4/2/1:100)") == 50
    assert locations.position_at_fraction(0.5) == "epubcfi(/6/4!/4/2/1:100)"


def test_percentage_rounds_halves_up(host, text_index):
    locations = LocationMap.generate(text_index, host.spine(), 200)
    assert locations.boundaries[1] == "epubcfi(/6/2!/4/2/1:2)"
    assert locations.percentage_of("epubcfi(/6/2!/4/2/1:2)") == 1
    assert locations.percentage_of("epubcfi(/6/2!/4/2/1:10)") == 3
    assert locations.percentage_of("epubcfi(/6/2!/4/2/1:0)") == 0


def test_resolution_is_capped_by_character_count(host, text_index):
    locations = LocationMap.generate(text_index, host.spine(), 5000)
    assert locations.total == 400


def test_empty_document_has_no_locations():
    host = HtmlDocumentHost("empty", [HtmlChapter(href="a.xhtml", html="<div></div>")])
    locations = LocationMap.generate(ChapterTextIndex(host), host.spine(), 100)
    assert locations.total == 0
    assert locations.page_of("epubcfi(/6/2!/4)") == 1
    assert locations.percentage_of("epubcfi(/6/2!/4)") == 0
    assert locations.position_at_fraction(0.5) is None


def test_failed_chapter_is_left_out_of_locations():
    class FlakyHost(HtmlDocumentHost):
        def load_chapter(self, index):
            if index == 0:
                raise ChapterLoadFailure(index)
            return super().load_chapter(index)

    host = FlakyHost(
        "flaky",
        [HtmlChapter(href="a.xhtml", html="<p>aaaa</p>"), HtmlChapter(href="b.xhtml", html="<p>bbbb</p>")],
    )
    locations = LocationMap.generate(ChapterTextIndex(host), host.spine(), 10)
    assert locations.total_chars == 4
    assert locations.boundaries[0] == "epubcfi(/6/4!/4/2/1:0)"


def test_chapter_title_uses_first_matching_toc_entry():
    spine = [SpineItem(index=0, href="text/intro.xhtml", title="Section 1"), SpineItem(1, "text/body.xhtml", "x")]
    toc = [
        TocNode(title="Introduction", href="intro.xhtml#start"),
        TocNode(title="Body", href="body.xhtml", children=[TocNode(title="Body, part 2", href="body.xhtml#p2")]),
    ]
    assert chapter_title_for("epubcfi(/6/2!/4/2/1:0)", spine, toc) == "Introduction"
    assert chapter_title_for("epubcfi(/6/4!/4/2/1:0)", spine, toc) == "Body"
    assert chapter_title_for("epubcfi(/6/8!/4/2/1:0)", spine, toc) is None
