"""
Tests for the work tree builder.

The merge test runs the real tar binary; everything else goes through the
recording executor.
"""

import io
import shutil
import tarfile
from pathlib import Path

import pytest

from conftest import tree
from recipkg_errors import NotFoundError
from recipkg_exec import CommandExecutor
from recipkg_extract import RecipkgExtractor, strip_one_level
from recipkg_recipe import loads


def make_tarball(path: Path, top: str, files: dict) -> None:
    with tarfile.open(path, "w:gz") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(f"{top}/{name}")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))


TWO_SOURCES = '[package]\nname = "foo"\nversion = "1"\nurl = "https://x/a.tar.gz, https://x/b.tgz"\n'


@pytest.fixture
def extractor(cfg, layout, fake, logger) -> RecipkgExtractor:
    return RecipkgExtractor(cfg, layout, fake, logger)


@pytest.mark.skipif(shutil.which("tar") is None, reason="tar not installed")
class TestRealTarMerge:
    def test_two_archives_merge_and_stray_files_vanish(self, cfg, layout, logger):
        make_tarball(layout.sources / "a.tar.gz", "a-1", {"x.txt": b"x", "sub/y.txt": b"y"})
        make_tarball(layout.sources / "b.tgz", "b-1", {"z.txt": b"z", "sub/w.txt": b"w"})
        ex = RecipkgExtractor(cfg, layout, CommandExecutor(logger=logger), logger)
        r = loads(TWO_SOURCES)

        work = ex.extract(r)
        expected = {"x.txt": b"x", "sub/y.txt": b"y", "z.txt": b"z", "sub/w.txt": b"w"}
        assert tree(work) == expected

        (work / "stray.o").write_bytes(b"junk")
        assert tree(ex.extract(r)) == expected


class TestDispatch:
    @pytest.mark.parametrize("fname, needle", [
        ("s.tar.xz", "tar -xJf"),
        ("s.tbz2", "tar -xjf"),
        ("s.tgz", "tar -xzf"),
        ("s.tar", "tar -xf"),
        ("s.zip", "unzip -qq"),
        ("s.xz", "xz -dc"),
    ])
    def test_format_dispatch(self, extractor, fake, layout, fname, needle):
        (layout.sources / fname).write_bytes(b"")
        extractor.extract(loads(f'[package]\nname = "s"\nurl = "https://x/{fname}"\n'))
        assert fake.ran(needle)

    def test_tar_strips_one_component(self, extractor, fake, layout):
        (layout.sources / "s.tar.gz").write_bytes(b"")
        extractor.extract(loads('[package]\nname = "s"\nurl = "https://x/s.tar.gz"\n'))
        assert "--strip-components=1" in fake.ran("tar -xzf")[0]

    def test_conventional_tarball_without_sources(self, extractor, fake, layout):
        (layout.sources / "s-2.tar").write_bytes(b"")
        extractor.extract(loads('[package]\nname = "s"\nversion = "2"\n'))
        assert fake.ran("s-2.tar")

    def test_missing_archive(self, extractor, layout):
        with pytest.raises(NotFoundError) as exc:
            extractor.extract(loads('[package]\nname = "s"\nurl = "https://x/s.tgz"\n'))
        assert exc.value.exit_code == 4

    def test_nothing_to_extract(self, extractor):
        with pytest.raises(NotFoundError) as exc:
            extractor.extract(loads('[package]\nname = "s"\n'))
        assert exc.value.exit_code == 4

    def test_live_source_copied(self, extractor, layout):
        live = layout.live_source("s")
        (live / "src").mkdir(parents=True)
        (live / "src" / "main.c").write_text("int main(){}")
        work = extractor.extract(loads('[package]\nname = "s"\nversion = "9"\nvcs = "git:https://x/s.git"\n'))
        assert (work / "src" / "main.c").read_text() == "int main(){}"

    def test_uncached_url_falls_back_to_live_source(self, extractor, fake, layout):
        live = layout.live_source("lv")
        live.mkdir(parents=True)
        (live / "main.c").write_text("int main(){}")
        work = extractor.extract(loads(
            '[package]\nname = "lv"\nversion = "1"\nurl = "https://x/lv-1.tar.gz"\nvcs = "git:https://x/lv.git"\n'))
        assert (work / "main.c").read_text() == "int main(){}"
        assert not fake.ran("tar -x")

    def test_partially_cached_archives_still_fail(self, extractor, fake, layout):
        live = layout.live_source("lv")
        live.mkdir(parents=True)
        (live / "main.c").write_text("int main(){}")
        (layout.sources / "lv-a.tar.gz").write_bytes(b"")
        with pytest.raises(NotFoundError) as exc:
            extractor.extract(loads(
                '[package]\nname = "lv"\nversion = "1"\n'
                'url = "https://x/lv-a.tar.gz, https://x/lv-b.tar.gz"\nvcs = "git:https://x/lv.git"\n'))
        assert exc.value.exit_code == 4
        assert "lv-b.tar.gz" in str(exc.value)


class TestStripOneLevel:
    def test_merges_top_directories(self, tmp_path: Path):
        scratch, dest = tmp_path / "scratch", tmp_path / "dest"
        (scratch / "a" / "d").mkdir(parents=True)
        (scratch / "b" / "d").mkdir(parents=True)
        (scratch / "a" / "d" / "1").write_text("1")
        (scratch / "b" / "d" / "2").write_text("2")
        (scratch / "toplevel.txt").write_text("dropped")
        dest.mkdir()
        strip_one_level(scratch, dest)
        assert tree(dest) == {"d/1": b"1", "d/2": b"2"}
