"""
Tests for source acquisition — cache naming, idempotence, integrity checks.
"""

import hashlib
from pathlib import Path

import pytest

from recipkg_download import RecipkgDownload, cache_name_for
from recipkg_errors import ExternalToolError, IntegrityError
from recipkg_recipe import loads

PAYLOAD = b"pretend tarball"


def curl_writes(payload: bytes):
    """Handler that emulates `curl -o <file> <url>`."""
    def _h(cmd, cwd, env):
        parts = cmd.split()
        Path(parts[parts.index("-o") + 1].strip("'")).write_bytes(payload)
        return 0
    return _h


@pytest.fixture
def downloader(cfg, layout, fake, logger) -> RecipkgDownload:
    return RecipkgDownload(cfg, layout, fake, logger)


class TestCacheName:
    def test_last_segment(self):
        assert cache_name_for("https://x.org/pub/foo-1.0.tar.gz?dl=1#frag", "fb") == "foo-1.0.tar.gz"

    def test_fallback_when_no_segment(self):
        assert cache_name_for("https://x.org/", "pkg-1.0.tar.gz") == "pkg-1.0.tar.gz"


class TestFetch:
    def test_no_sources_is_noop(self, downloader, fake):
        assert downloader.fetch(loads('[package]\nname = "empty"\n')) == []
        assert fake.calls == []

    def test_fetch_is_idempotent(self, downloader, fake, layout):
        fake.on("curl", curl_writes(PAYLOAD))
        r = loads('[package]\nname = "foo"\nurl = "https://x.org/foo-1.0.tar.gz"\n')
        first = downloader.fetch(r)
        second = downloader.fetch(r)
        assert first == second == [layout.sources / "foo-1.0.tar.gz"]
        assert len(fake.ran("curl")) == 1
        assert not (layout.sources / "foo-1.0.tar.gz.part").exists()

    def test_checksum_match(self, downloader, fake):
        fake.on("curl", curl_writes(PAYLOAD))
        digest = hashlib.sha256(PAYLOAD).hexdigest().upper()
        r = loads(f'[package]\nname = "foo"\nurl = "https://x.org/foo.tgz"\nsha256 = "{digest}"\n')
        downloader.fetch(r)

    def test_checksum_mismatch_keeps_artifact(self, downloader, fake, layout):
        fake.on("curl", curl_writes(PAYLOAD))
        r = loads('[package]\nname = "foo"\nurl = "https://x.org/foo.tgz"\nsha256 = "00ff"\n')
        with pytest.raises(IntegrityError) as exc:
            downloader.fetch(r)
        assert exc.value.exit_code == 3
        assert (layout.sources / "foo.tgz").read_bytes() == PAYLOAD

    def test_download_failure_leaves_no_artifact(self, downloader, fake, layout):
        fake.on("curl", 22)
        r = loads('[package]\nname = "foo"\nurl = "https://x.org/foo.tgz"\n')
        with pytest.raises(ExternalToolError) as exc:
            downloader.fetch(r)
        assert exc.value.exit_code == 22
        assert list(layout.sources.iterdir()) == []

    def test_missing_tool(self, downloader, fake):
        fake.missing.add("curl")
        r = loads('[package]\nname = "foo"\nurl = "https://x.org/foo.tgz"\n')
        with pytest.raises(ExternalToolError) as exc:
            downloader.fetch(r)
        assert exc.value.exit_code == 127


class TestFetchVcs:
    def test_clone_then_refresh(self, downloader, fake, layout):
        def clone(cmd, cwd, env):
            (layout.sources / "foo-git").mkdir(parents=True)
            return 0
        fake.on("git clone", clone)
        r = loads('[package]\nname = "foo"\nvcs = "git:https://x.org/foo.git"\nsubmodules = true\n')
        downloader.fetch(r)
        downloader.fetch(r)
        assert len(fake.ran("git clone")) == 1
        assert len(fake.ran("fetch --all --tags")) == 1
        assert len(fake.ran("submodule update --init --recursive")) == 2

    def test_submodule_failure_only_warns(self, downloader, fake):
        fake.on("submodule", 1)
        r = loads('[package]\nname = "foo"\nvcs = "git:https://x.org/foo.git"\nsubmodules = true\n')
        downloader.fetch(r)
