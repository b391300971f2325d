import pytest

from reading_session.core import (
    DocumentStorage,
    InMemoryKeyValueRepository,
    PersistenceFailure,
    SqlAlchemyKeyValueRepository,
)


@pytest.fixture(params=["memory", "sqlite"])
def any_repo(request, tmp_path):
    if request.param == "memory":
        return InMemoryKeyValueRepository()
    return SqlAlchemyKeyValueRepository(f"sqlite+pysqlite:///{tmp_path / 'test.db'}")


def test_get_set_delete(any_repo):
    assert any_repo.get("book-1/notes") is None
    any_repo.set("book-1/notes", b"[]")
    any_repo.set("book-1/notes", b'[{"note": "x"}]')
    assert any_repo.get("book-1/notes") == b'[{"note": "x"}]'
    any_repo.delete("book-1/notes")
    assert any_repo.get("book-1/notes") is None
    any_repo.delete("book-1/notes")


def test_keys_are_filtered_by_literal_prefix(any_repo):
    any_repo.set("book_1/notes", b"1")
    any_repo.set("bookX1/notes", b"2")
    any_repo.set("book_1/toc", b"3")
    assert any_repo.keys("book_1/") == ["book_1/notes", "book_1/toc"]


def test_storage_namespaces_and_clears_one_document(any_repo):
    first = DocumentStorage(any_repo, "first")
    second = DocumentStorage(any_repo, "second")
    first.write_json(first.keys.highlights, [{"position": "p", "text": "ü"}])
    second.write_json(second.keys.location, "epubcfi(/6/2!/4)")

    assert first.read_json(first.keys.highlights) == [{"position": "p", "text": "ü"}]
    assert first.stored_keys() == ["first/highlights"]
    first.clear()
    assert first.stored_keys() == []
    assert second.read_json(second.keys.location) == "epubcfi(/6/2!/4)"


def test_undecodable_value_reads_as_default(any_repo):
    storage = DocumentStorage(any_repo, "doc")
    any_repo.set("doc/toc", b"\xff\xfe")
    assert storage.read_json("doc/toc", default=[]) == []


def test_read_failure_falls_back_and_write_failure_propagates():
    class BrokenRepo(InMemoryKeyValueRepository):
        def get(self, key):
            raise PersistenceFailure("backend down")

        def set(self, key, value):
            raise PersistenceFailure("backend down")

    storage = DocumentStorage(BrokenRepo(), "doc")
    assert storage.read_json("doc/notes", default=[]) == []
    with pytest.raises(PersistenceFailure):
        storage.write_json("doc/notes", [])
