"""
Tests for manifest driven removal.
"""

from pathlib import Path

import pytest

from recipkg_recipe import loads
from recipkg_remove import RecipkgRemove


@pytest.fixture
def remover(cfg, layout, fake, logger, checkpoints) -> RecipkgRemove:
    return RecipkgRemove(cfg, layout, fake, logger, checkpoints)


@pytest.fixture
def installed(layout):
    """Destination root holding {a, b/c} with a matching manifest."""
    root = layout.dest_root("pkg-1")
    (root / "b").mkdir(parents=True)
    (root / "a").write_text("a")
    (root / "b" / "c").write_text("c")
    layout.manifest("pkg-1").write_text("a\nb/c\n")
    return root


RECIPE = '[package]\nname = "pkg"\nversion = "1"\n'


class TestRemove:
    def test_manifest_removal_twice(self, remover, installed, layout):
        r = loads(RECIPE)
        first = remover.remove(r)
        assert sorted(first.removed) == ["a", "b/c"]
        assert first.had_manifest
        assert not installed.exists()
        assert not layout.manifest("pkg-1").exists()

        second = remover.remove(r)
        assert not second.had_manifest
        assert second.removed == []

    def test_checkpoint_taken_before_removal(self, remover, installed, store):
        result = remover.remove(loads(RECIPE))
        assert result.checkpoint == "pkg-1"
        assert "pkg-1" in store.blobs

    def test_already_deleted_files_tolerated(self, remover, installed):
        (installed / "a").unlink()
        result = remover.remove(loads(RECIPE))
        assert result.missing == ["a"]
        assert result.removed == ["b/c"]

    def test_escaping_entries_skipped(self, remover, installed, layout, tmp_path: Path):
        outside = tmp_path / "precious"
        outside.write_text("keep me")
        rel = Path("..") / ".." / ".." / outside.relative_to(tmp_path)
        layout.manifest("pkg-1").write_text(f"a\n{rel.as_posix()}\n")
        result = remover.remove(loads(RECIPE))
        assert result.skipped == [rel.as_posix()]
        assert outside.read_text() == "keep me"

    def test_no_manifest_removes_root_anyway(self, remover, layout):
        root = layout.dest_root("pkg-1")
        root.mkdir(parents=True)
        (root / "orphan").write_text("o")
        remover.remove(loads(RECIPE))
        assert not root.exists()

    def test_postremove_failure_is_not_fatal(self, remover, installed, fake, layout):
        fake.on("./cleanup.sh", 3)
        r = loads(RECIPE + 'postremove = "./cleanup.sh"\n')
        result = remover.remove(r)
        assert result.postremove_rc == 3
        assert fake.calls[-1][2]["DESTDIR"] == str(layout.dest_root("pkg-1"))

    def test_nothing_installed(self, remover):
        result = remover.remove(loads('[package]\nname = "ghost"\n'))
        assert result.removed == [] and result.checkpoint is None
