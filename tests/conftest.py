import time

import pytest

from reading_session.core import (
    ChapterTextIndex,
    DocumentMetadata,
    DocumentStorage,
    HtmlChapter,
    HtmlDocumentHost,
    InMemoryKeyValueRepository,
    OverlayDispatcher,
    RecordingOverlayService,
    SessionConfig,
)

INTRO_TEXT = ("The opening words of the book. " * 4)[:100]
BODY_TEXT = ("The cats category holds every cat. " * 9)[:300]


class SlowRepository(InMemoryKeyValueRepository):
    """Repository whose writes take long enough for threads to interleave."""

    def set(self, key, value):
        time.sleep(0.05)
        super().set(key, value)


def page(text: str, title: str = "") -> str:
    return f"<html><head><title>{title}</title></head><body><p>{text}</p></body></html>"


def make_host(document_id: str = "book-1", host_cls=HtmlDocumentHost) -> HtmlDocumentHost:
    return host_cls(
        document_id,
        [
            HtmlChapter(href="intro.xhtml", html=page(INTRO_TEXT, "Intro"), title="Intro"),
            HtmlChapter(href="body.xhtml", html=page(BODY_TEXT, "Body"), title="Body"),
        ],
        metadata=DocumentMetadata(title="A Test Book", author="A. Writer"),
    )


@pytest.fixture
def host():
    return make_host()


@pytest.fixture
def repo():
    return InMemoryKeyValueRepository()


@pytest.fixture
def storage(repo):
    return DocumentStorage(repo, "book-1")


@pytest.fixture
def overlay_service():
    return RecordingOverlayService()


@pytest.fixture
def dispatcher(overlay_service):
    return OverlayDispatcher(overlay_service)


@pytest.fixture
def text_index(host):
    return ChapterTextIndex(host)


@pytest.fixture
def config():
    return SessionConfig(location_resolution=100, search_workers=4)
