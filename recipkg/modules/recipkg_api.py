#!/usr/bin/env python3
# recipkg_api.py
"""
recipkg_api.py — wiring hub for the recipkg pipeline

RecipkgAPI builds config, layout, logger, executor and checkpoint manager once
and hands them to every stage component, created lazily on first use:

  api.fetcher    RecipkgDownload     fetch sources / live clone
  api.extractor  RecipkgExtractor    rebuild the work tree
  api.patcher    RecipkgPatcher      apply patch sources
  api.core       RecipkgCore         build / install
  api.remover    RecipkgRemove       manifest driven removal
  api.auditor    RecipkgAudit        ldd dependency map
  api.syncer     RecipeSync          recipes/ under git

Recipes are looked up as recipes/<name>/recipe.toml (or recipe.ini).
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from recipkg_audit import RecipkgAudit
from recipkg_config import ConfigStore, Layout
from recipkg_core import RecipkgCore
from recipkg_download import RecipkgDownload
from recipkg_errors import EXIT_RECIPE_NOT_FOUND, NotFoundError, UsageError
from recipkg_exec import CommandExecutor
from recipkg_extract import RecipkgExtractor
from recipkg_logger import RecipkgLogger
from recipkg_patcher import RecipkgPatcher
from recipkg_recipe import DEFAULT_VERSION, RECIPE_FILES, Recipe, find_recipe_file, load, render_template
from recipkg_remove import RecipkgRemove
from recipkg_snapshot import CheckpointManager, SnapshotStore, TarSnapshotStore
from recipkg_sync import RecipeSync

PIPELINE = ("fetch", "extract", "patch", "build", "install")


class RecipkgAPI:
    def __init__(self, cfg: Optional[ConfigStore] = None, logger: Optional[RecipkgLogger] = None,
                 executor: Optional[Any] = None, store: Optional[SnapshotStore] = None):
        self.cfg = cfg or ConfigStore.load()
        self.layout = Layout.from_config(self.cfg)
        self.logger = logger or RecipkgLogger.from_config(self.cfg, log_dir=self.layout.logs)
        self.executor = executor or CommandExecutor(logger=self.logger)
        self.checkpoints = CheckpointManager(store or TarSnapshotStore(self.layout), self.logger)
        self._components: Dict[str, Any] = {}

    # ---------------- lazy components ----------------
    def _component(self, name: str, factory):
        if name not in self._components:
            self._components[name] = factory()
        return self._components[name]

    @property
    def fetcher(self) -> RecipkgDownload:
        return self._component("fetcher", lambda: RecipkgDownload(self.cfg, self.layout, self.executor, self.logger))

    @property
    def extractor(self) -> RecipkgExtractor:
        return self._component("extractor", lambda: RecipkgExtractor(self.cfg, self.layout, self.executor, self.logger))

    @property
    def patcher(self) -> RecipkgPatcher:
        return self._component("patcher", lambda: RecipkgPatcher(self.cfg, self.layout, self.executor, self.logger, self.fetcher))

    @property
    def core(self) -> RecipkgCore:
        return self._component("core", lambda: RecipkgCore(self.cfg, self.layout, self.executor, self.logger, self.checkpoints))

    @property
    def remover(self) -> RecipkgRemove:
        return self._component("remover", lambda: RecipkgRemove(self.cfg, self.layout, self.executor, self.logger, self.checkpoints))

    @property
    def auditor(self) -> RecipkgAudit:
        return self._component("auditor", lambda: RecipkgAudit(self.cfg, self.layout, self.executor, self.logger))

    @property
    def syncer(self) -> RecipeSync:
        return self._component("syncer", lambda: RecipeSync(self.cfg, self.layout, self.executor, self.logger))

    # ---------------- recipes ----------------
    def load_recipe(self, name: str) -> Recipe:
        path = find_recipe_file(self.layout.recipes, name)
        if path is None:
            raise NotFoundError(f"recipe not found: {name} (looked in {self.layout.recipe_dir(name)})",
                                exit_code=EXIT_RECIPE_NOT_FOUND, package=name)
        recipe = load(path)
        self.logger.debug("recipe.loaded", f"loaded {recipe.key} from {path}")
        return recipe

    def list_recipes(self) -> List[str]:
        if not self.layout.recipes.is_dir():
            return []
        return sorted(d.name for d in self.layout.recipes.iterdir()
                      if d.is_dir() and any((d / f).is_file() for f in RECIPE_FILES))

    def search(self, pattern: str) -> List[str]:
        try:
            rx = re.compile(pattern, re.IGNORECASE)
        except re.error as e:
            raise UsageError(f"invalid search pattern {pattern!r}: {e}") from e
        hits = []
        for name in self.list_recipes():
            path = find_recipe_file(self.layout.recipes, name)
            if rx.search(name) or rx.search(path.read_text(encoding="utf-8", errors="replace")):
                hits.append(name)
        return hits

    def init_recipe(self, name: str, version: str = DEFAULT_VERSION) -> Path:
        """Create the layout and a recipe template. An existing recipe is left untouched."""
        if not name or "/" in name or name in (".", ".."):
            raise UsageError(f"invalid package name: {name!r}")
        self.layout.ensure()
        existing = find_recipe_file(self.layout.recipes, name)
        if existing is not None:
            self.logger.warning("init.exists", f"recipe already exists: {existing}")
            return existing
        path = self.layout.recipe_dir(name) / RECIPE_FILES[0]
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(render_template(name, version), encoding="utf-8")
        self.logger.ok("init.created", f"recipe template written: {path}")
        return path

    def mkpkg(self, name: str, version: str = DEFAULT_VERSION) -> Dict[str, str]:
        path = self.init_recipe(name, version)
        recipe = load(path)
        work = self.layout.work_dir(recipe.key)
        work.mkdir(parents=True, exist_ok=True)
        self.logger.ok("mkpkg.done", f"package scaffolding ready for {recipe.key}")
        return {"recipe": str(path), "work": str(work)}

    # ---------------- stages ----------------
    def run_stage(self, stage: str, recipe: Recipe) -> Any:
        if stage == "fetch":
            return self.fetcher.fetch(recipe)
        if stage == "extract":
            return self.extractor.extract(recipe)
        if stage == "patch":
            return self.patcher.apply(recipe)
        if stage == "build":
            return self.core.build(recipe)
        if stage == "install":
            return self.core.install(recipe)
        if stage == "remove":
            return self.remover.remove(recipe)
        if stage == "audit":
            return self.auditor.audit(recipe)
        raise UsageError(f"unknown stage: {stage}")

    def run_pipeline(self, recipe: Recipe) -> List[str]:
        """fetch -> extract -> patch -> build -> install; the first failure propagates."""
        done = []
        for stage in PIPELINE:
            self.logger.info("pipeline.stage", f"==> {stage} {recipe.key}")
            self.run_stage(stage, recipe)
            done.append(stage)
        self.logger.ok("pipeline.done", f"{recipe.key}: pipeline complete")
        return done
