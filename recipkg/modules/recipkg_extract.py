#!/usr/bin/env python3
# recipkg_extract.py
"""
recipkg_extract.py — rebuild the work tree of a recipe from its cached sources

The work tree is removed and recreated on every call, so files left over from
a previous build never leak into the next one. Every archive is unpacked with
exactly one leading path component stripped, which makes several archives
merge into a single tree.

Format dispatch (by file name):
  .zip                        unzip into scratch dir, then strip one level
  .tar.gz .tgz                tar -xzf
  .tar.xz .txz                tar -xJf
  .tar.bz2 .tbz2 .tbz         tar -xjf
  .xz / .gz (bare)            decompress to scratch file, then tar -xf
  anything else               tar -xf
"""

from __future__ import annotations

import shlex
import shutil
from pathlib import Path
from typing import Any, List

from recipkg_download import source_paths
from recipkg_errors import EXIT_NOTHING_TO_EXTRACT, NotFoundError
from recipkg_exec import STAGE_TOOLS

TAR_FLAGS = (
    ((".tar.gz", ".tgz"), "-xzf"),
    ((".tar.xz", ".txz"), "-xJf"),
    ((".tar.bz2", ".tbz2", ".tbz"), "-xjf"),
)
BARE_DECOMPRESSORS = ((".xz", "xz"), (".gz", "gzip"))


def strip_one_level(scratch: Path, dest: Path) -> None:
    """Move the children of every top-level directory in scratch into dest."""
    for top in sorted(scratch.iterdir()):
        if not top.is_dir() or top.is_symlink():
            # tar --strip-components=1 drops top-level files too
            continue
        for child in sorted(top.iterdir()):
            target = dest / child.name
            if target.is_dir() and child.is_dir() and not child.is_symlink():
                shutil.copytree(child, target, symlinks=True, dirs_exist_ok=True)
                shutil.rmtree(child)
            else:
                if target.exists() or target.is_symlink():
                    if target.is_dir() and not target.is_symlink():
                        shutil.rmtree(target)
                    else:
                        target.unlink()
                shutil.move(str(child), str(target))


class RecipkgExtractor:
    def __init__(self, cfg: Any, layout: Any, executor: Any, logger: Any):
        self.cfg = cfg
        self.layout = layout
        self.executor = executor
        self.logger = logger

    def _scratch(self, recipe: Any) -> Path:
        p = self.layout.work / f".{recipe.key}.scratch"
        if p.exists():
            shutil.rmtree(p)
        p.mkdir(parents=True)
        return p

    def extract_one(self, archive: Path, dest: Path, recipe: Any) -> None:
        name = archive.name.lower()
        run = self.executor.run

        if name.endswith(".zip"):
            self.executor.require(["unzip"], stage="extract")
            scratch = self._scratch(recipe)
            try:
                run(["unzip", "-qq", str(archive), "-d", str(scratch)], stage="extract", check=True)
                strip_one_level(scratch, dest)
            finally:
                shutil.rmtree(scratch, ignore_errors=True)
            return

        for suffixes, flags in TAR_FLAGS:
            if name.endswith(suffixes):
                run(["tar", flags, str(archive), "-C", str(dest), "--strip-components=1"], stage="extract", check=True)
                return

        for suffix, tool in BARE_DECOMPRESSORS:
            if name.endswith(suffix):
                self.executor.require([tool], stage="extract")
                scratch = self._scratch(recipe)
                try:
                    inner = scratch / "archive.tar"
                    run(f"{tool} -dc {shlex.quote(str(archive))} > {shlex.quote(str(inner))}", stage="extract", check=True)
                    run(["tar", "-xf", str(inner), "-C", str(dest), "--strip-components=1"], stage="extract", check=True)
                finally:
                    shutil.rmtree(scratch, ignore_errors=True)
                return

        run(["tar", "-xf", str(archive), "-C", str(dest), "--strip-components=1"], stage="extract", check=True)

    def archives_for(self, recipe: Any) -> List[Path]:
        paths = source_paths(self.layout, recipe)
        if not paths and not recipe.vcs:
            # manually dropped tarball
            conventional = self.layout.sources / f"{recipe.key}.tar"
            if conventional.exists():
                paths = [conventional]
        return paths

    def extract(self, recipe: Any) -> Path:
        dest = self.layout.work_dir(recipe.key)
        if dest.exists() or dest.is_symlink():
            self.logger.warning("extract.clean", f"removing old work tree: {dest}", path=str(dest))
            shutil.rmtree(dest)
        dest.mkdir(parents=True)

        archives = self.archives_for(recipe)
        live = self.layout.live_source(recipe.name)
        # an undownloaded url falls back to the live clone
        use_live = bool(recipe.vcs) and live.is_dir() and not any(a.exists() for a in archives)
        if archives and not use_live:
            self.executor.require(STAGE_TOOLS["extract"], stage="extract")
            with self.logger.spinner(f"extracting {recipe.key}"):
                for archive in archives:
                    if not archive.exists():
                        raise NotFoundError(f"source not found: {archive} (run fetch first)",
                                            exit_code=EXIT_NOTHING_TO_EXTRACT, stage="extract", path=str(archive))
                    self.logger.info("extract.archive", f"extracting {archive.name}", archive=str(archive))
                    self.extract_one(archive, dest, recipe)
        elif use_live:
            self.logger.info("extract.vcs", f"copying live source {live.name}", src=str(live))
            shutil.copytree(live, dest, symlinks=True, dirs_exist_ok=True)
            if recipe.vcs.submodules:
                res = self.executor.run(["git", "-C", str(dest), "submodule", "update", "--init", "--recursive"], stage="extract")
                if not res.ok:
                    self.logger.warning("extract.submodules.fail", f"submodule sync failed (rc={res.rc})")
        else:
            raise NotFoundError("nothing to extract (no source archive and no vcs checkout)",
                                exit_code=EXIT_NOTHING_TO_EXTRACT, stage="extract")

        self.logger.ok("extract.done", f"work tree ready: {dest}")
        return dest
