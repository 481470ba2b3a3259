#!/usr/bin/env python3
# recipkg_download.py
"""
recipkg download manager

Features:
 - Deterministic cache naming from the final path segment of each source URL
 - Idempotent fetch: artifacts already in the cache are never downloaded again
 - Downloads land in <artifact>.part and are renamed only on success
 - Optional sha256 verification, positionally aligned with the url list;
   a mismatching artifact is kept for inspection
 - Live git source: clone on first use, fetch --all --tags afterwards,
   optional recursive submodule sync (failures there are only logged)
"""

from __future__ import annotations

import hashlib
import os
import shlex
from pathlib import Path
from typing import Any, List, Optional, Union
from urllib.parse import unquote, urlsplit

from recipkg_errors import ConfigError, ExternalToolError, IntegrityError
from recipkg_exec import STAGE_TOOLS


# ------------------ utilities ------------------
def sha256_of_path(path: Union[str, Path]) -> str:
    h = hashlib.sha256()
    with open(str(path), "rb") as fh:
        for chunk in iter(lambda: fh.read(1 << 20), b""):
            h.update(chunk)
    return h.hexdigest()


def sha256_of_string(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def cache_name_for(url: str, fallback: str) -> str:
    """Final path segment of the URL (query/fragment ignored), or fallback when it has none."""
    path = urlsplit(url).path if "://" in url else url
    name = unquote(path.rstrip("/").rsplit("/", 1)[-1]) if path.rstrip("/") else ""
    return name or fallback


def source_paths(layout: Any, recipe: Any) -> List[Path]:
    """Cache paths for every declared source of a recipe, in declared order."""
    fallback = f"{recipe.name}-{recipe.version}.tar.gz"
    return [layout.sources / cache_name_for(u, fallback) for u in recipe.sources]


class RecipkgDownload:
    def __init__(self, cfg: Any, layout: Any, executor: Any, logger: Any):
        self.cfg = cfg
        self.layout = layout
        self.executor = executor
        self.logger = logger
        self.download_cmd = shlex.split(str(cfg.get("download.command", "curl -L --fail")))

    # ------------------ archives ------------------
    def download(self, url: str, dest: Path, stage: str = "fetch") -> Path:
        """Download url to dest atomically. Raises ExternalToolError on failure."""
        dest.parent.mkdir(parents=True, exist_ok=True)
        part = dest.with_name(dest.name + ".part")
        cmd = self.download_cmd + ["-o", str(part), url]
        with self.logger.spinner(f"downloading {dest.name}"):
            res = self.executor.run(cmd, stage=stage)
        if not res.ok:
            if part.exists():
                part.unlink()
            raise ExternalToolError(cmd, res.rc, stage=stage, output=res.output)
        os.replace(part, dest)
        return dest

    def verify(self, path: Path, expected: str) -> None:
        actual = sha256_of_path(path)
        if actual.lower() != expected.strip().lower():
            self.logger.error("fetch.sha256.mismatch", f"sha256 mismatch for {path.name}: {actual} != {expected}", path=str(path))
            raise IntegrityError(str(path), expected, actual)
        self.logger.ok("fetch.sha256.ok", f"sha256 ok: {path.name}")

    # ------------------ live vcs source ------------------
    def sync_submodules(self, repo: Path, stage: str) -> bool:
        res = self.executor.run(["git", "-C", str(repo), "submodule", "update", "--init", "--recursive"], stage=stage)
        if not res.ok:
            self.logger.warning(f"{stage}.submodules.fail", f"submodule sync failed in {repo} (rc={res.rc})", repo=str(repo))
        return res.ok

    def fetch_vcs(self, recipe: Any) -> Path:
        vcs = recipe.vcs
        if vcs.scheme != "git":
            raise ConfigError(f"unsupported vcs scheme: {vcs.scheme}", field="vcs", stage="fetch")
        self.executor.require(STAGE_TOOLS["fetch.vcs"], stage="fetch")
        repo = self.layout.live_source(recipe.name)
        with self.logger.spinner(f"syncing {vcs.url}"):
            if not repo.exists():
                self.logger.info("fetch.vcs.clone", f"cloning {vcs.url}", repo=str(repo))
                self.executor.run(["git", "clone", vcs.url, str(repo)], stage="fetch", check=True)
            else:
                self.logger.info("fetch.vcs.refresh", f"refreshing {repo.name}", repo=str(repo))
                self.executor.run(["git", "-C", str(repo), "fetch", "--all", "--tags"], stage="fetch", check=True)
            if vcs.submodules:
                self.sync_submodules(repo, "fetch")
        return repo

    # ------------------ public entry ------------------
    def fetch(self, recipe: Any) -> List[Path]:
        """
        Make every declared source available in the cache. Returns the cached
        archive paths (live clone excluded).
        """
        if not recipe.sources and not recipe.vcs:
            self.logger.info("fetch.noop", f"{recipe.key}: no sources declared")
            return []

        self.layout.sources.mkdir(parents=True, exist_ok=True)
        paths = source_paths(self.layout, recipe)
        if paths:
            self.executor.require(STAGE_TOOLS["fetch"], stage="fetch")
        for i, (url, dest) in enumerate(zip(recipe.sources, paths)):
            if dest.exists():
                self.logger.info("fetch.cached", f"source already present: {dest.name}", path=str(dest))
            else:
                self.logger.info("fetch.download", f"downloading {url}", url=url, path=str(dest))
                self.download(url, dest)
            expected = recipe.checksum_for(i)
            if expected:
                self.verify(dest, expected)

        if recipe.vcs:
            self.fetch_vcs(recipe)
        self.logger.ok("fetch.done", f"{recipe.key}: sources ready")
        return paths
