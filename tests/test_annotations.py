"""Tests for AnnotationService — tags, favorites, comments, checksums, downloads."""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

import pytest

from strongroom.fs.annotations import AnnotationService, compute_checksum
from strongroom.fs.exceptions import NotFoundError

if TYPE_CHECKING:
    from pathlib import Path

    from strongroom.fs.metadata import MetadataStore
    from strongroom.fs.paths import PathResolver

    from conftest import FakeClock


@pytest.fixture
def service(resolver: PathResolver, store: MetadataStore, clock: FakeClock) -> AnnotationService:
    ids = iter(f"c{i}" for i in range(100))
    return AnnotationService(resolver, store, clock=clock, id_factory=lambda: next(ids))


@pytest.fixture
def note(root: Path) -> str:
    (root / "notes").mkdir()
    (root / "notes" / "todo.md").write_text("- milk\n")
    return "notes/todo.md"


class TestTags:
    def test_add_and_list(self, service: AnnotationService, note: str) -> None:
        assert service.add_tag(note, "home") == ["home"]
        assert service.add_tag(note, "urgent") == ["home", "urgent"]
        assert service.add_tag("/" + note, "home") == ["home", "urgent"]
        assert service.tags(note) == ["home", "urgent"]

    def test_tag_is_stripped(self, service: AnnotationService, note: str) -> None:
        assert service.add_tag(note, "  work ") == ["work"]

    def test_empty_tag(self, service: AnnotationService, note: str) -> None:
        with pytest.raises(ValueError):
            service.add_tag(note, "  ")

    def test_missing_path(self, service: AnnotationService) -> None:
        with pytest.raises(NotFoundError):
            service.add_tag("ghost.txt", "x")

    def test_remove_drops_key_when_empty(
        self, service: AnnotationService, store: MetadataStore, note: str
    ) -> None:
        service.add_tag(note, "a")
        service.add_tag(note, "b")
        assert service.remove_tag(note, "a") == ["b"]
        assert service.remove_tag(note, "b") == []
        assert not store.contains("tags", note)

    def test_all_tags(self, service: AnnotationService, note: str) -> None:
        service.add_tag(note, "a")
        assert service.all_tags() == {note: ["a"]}


class TestFavorites:
    def test_add_remove(self, service: AnnotationService, note: str) -> None:
        assert service.add_favorite(note) is True
        assert service.add_favorite(note) is False
        assert service.is_favorite(note)
        assert service.favorites() == [note]
        assert service.remove_favorite(note) is True
        assert service.favorites() == []

    def test_root_cannot_be_favorited(self, service: AnnotationService) -> None:
        with pytest.raises(NotFoundError):
            service.add_favorite("")


class TestComments:
    def test_add_and_delete(
        self, service: AnnotationService, note: str, clock: FakeClock
    ) -> None:
        comment = service.add_comment(note, " looks good ", author="bob")
        assert comment == {
            "id": "c0",
            "text": "looks good",
            "author": "bob",
            "created_at": clock.now.isoformat(),
        }
        assert service.comments(note) == [comment]
        assert service.delete_comment(note, "c0") is True
        assert service.delete_comment(note, "c0") is False
        assert service.comments(note) == []

    def test_empty_comment(self, service: AnnotationService, note: str) -> None:
        with pytest.raises(ValueError):
            service.add_comment(note, "")


class TestChecksumsAndDownloads:
    def test_compute_checksum(self) -> None:
        assert compute_checksum(b"abc") == (hashlib.sha256(b"abc").hexdigest(), 3)

    def test_record_checksum(self, service: AnnotationService, note: str) -> None:
        record = service.record_checksum(note, b"- milk\n")
        assert service.checksum(note) == record
        assert record["size_bytes"] == 7

    def test_download_counts(self, service: AnnotationService, note: str) -> None:
        assert service.download_count(note) == 0
        service.increment_downloads(note)
        assert service.increment_downloads(note) == 2
        assert service.download_count(note) == 2


class TestRecent:
    def test_newest_first_one_entry_per_path(
        self, service: AnnotationService, root: Path, note: str, clock: FakeClock
    ) -> None:
        (root / "a.txt").write_text("a")
        service.add_recent(note, "downloaded")
        clock.advance(seconds=1)
        service.add_recent("a.txt")
        clock.advance(seconds=1)
        entry = service.add_recent(note, "previewed")

        assert entry == {"path": note, "action": "previewed", "timestamp": clock.now.isoformat()}
        assert [(r["path"], r["action"]) for r in service.recent()] == [
            (note, "previewed"),
            ("a.txt", "opened"),
        ]

    def test_capped(
        self, resolver: PathResolver, store: MetadataStore, root: Path, clock: FakeClock
    ) -> None:
        service = AnnotationService(resolver, store, clock=clock, max_recent=3)
        for i in range(5):
            (root / f"f{i}.txt").write_text(str(i))
            service.add_recent(f"f{i}.txt")
            clock.advance(seconds=1)
        assert [r["path"] for r in service.recent()] == ["f4.txt", "f3.txt", "f2.txt"]
        assert len(store.keys("recent")) == 3

    def test_same_timestamp_latest_wins(self, service: AnnotationService, root: Path) -> None:
        (root / "x.txt").write_text("x")
        (root / "y.txt").write_text("y")
        service.add_recent("x.txt")
        service.add_recent("y.txt")
        assert [r["path"] for r in service.recent()] == ["y.txt", "x.txt"]

    def test_missing_path(self, service: AnnotationService) -> None:
        with pytest.raises(NotFoundError):
            service.add_recent("ghost.txt")

    def test_clear(self, service: AnnotationService, note: str) -> None:
        service.add_recent(note)
        assert service.clear_recent() == 1
        assert service.recent() == []
