"""
Tests for the API hub — recipe lookup, scaffolding, whole pipeline.
"""

from pathlib import Path

import pytest

from recipkg_errors import NotFoundError, UsageError


class TestRecipes:
    def test_load_recipe_missing(self, api):
        with pytest.raises(NotFoundError) as exc:
            api.load_recipe("nothing")
        assert exc.value.exit_code == 1

    def test_init_keeps_existing_recipe(self, api, write_recipe):
        path = write_recipe("kept", '[package]\nname = "kept"\nversion = "7"\n')
        assert api.init_recipe("kept") == path
        assert api.load_recipe("kept").version == "7"

    def test_init_rejects_path_names(self, api):
        with pytest.raises(UsageError):
            api.init_recipe("../evil")

    def test_search_matches_recipe_text(self, api, write_recipe):
        write_recipe("zlib", '[package]\nname = "zlib"\n# general purpose compression\n')
        write_recipe("curl", '[package]\nname = "curl"\n')
        assert api.search("COMPRESSION") == ["zlib"]
        assert api.search("") == ["curl", "zlib"]

    def test_search_invalid_pattern(self, api):
        with pytest.raises(UsageError):
            api.search("[unclosed")

    def test_components_are_shared(self, api):
        assert api.core is api.core
        assert api.patcher.downloader is api.fetcher


class TestPipeline:
    def test_run_pipeline(self, api, fake, layout, write_recipe):
        write_recipe("demo", '[package]\nname = "demo"\nversion = "1"\n[options]\nbuild = "make"\n')
        (layout.sources / "demo-1.tar").write_bytes(b"")

        def install(cmd, cwd, env):
            out = Path(env["DESTDIR"]) / "usr" / "bin" / "demo"
            out.parent.mkdir(parents=True)
            out.write_text("#!/bin/sh\n")
            return 0
        fake.on("make install", install)

        recipe = api.load_recipe("demo")
        assert api.run_pipeline(recipe) == ["fetch", "extract", "patch", "build", "install"]
        assert fake.ran("demo-1.tar")
        assert fake.ran("set -e; make")
        assert layout.manifest("demo-1").read_text() == "usr/bin/demo\n"

    def test_pipeline_stops_at_first_failure(self, api, fake, layout, write_recipe):
        write_recipe("demo", '[package]\nname = "demo"\nversion = "1"\n[options]\nbuild = "make"\n')
        with pytest.raises(NotFoundError) as exc:
            api.run_pipeline(api.load_recipe("demo"))
        assert exc.value.exit_code == 4
        assert fake.ran("make") == []
