#!/usr/bin/env python3
# recipkg_sync.py
"""
recipkg_sync.py — keep the recipes/ directory under git

sync(): git init (first time), stage everything, commit when there is
something to commit, push HEAD to origin when an origin remote exists.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from recipkg_errors import EXIT_RECIPE_NOT_FOUND, NotFoundError
from recipkg_exec import STAGE_TOOLS
from recipkg_patcher import GIT_IDENTITY


class RecipeSync:
    def __init__(self, cfg: Any, layout: Any, executor: Any, logger: Any):
        self.cfg = cfg
        self.layout = layout
        self.executor = executor
        self.logger = logger

    def _git(self, *args: str, check: bool = True):
        return self.executor.run(["git", "-C", str(self.layout.recipes), *GIT_IDENTITY, *args], stage="sync", check=check)

    def _git_head(self) -> str:
        res = self._git("rev-parse", "HEAD", check=False)
        return res.stdout.strip() if res.ok else ""

    def sync(self) -> Dict[str, Any]:
        repo = self.layout.recipes
        if not repo.is_dir():
            raise NotFoundError(f"recipes directory not found: {repo} (run init first)",
                                exit_code=EXIT_RECIPE_NOT_FOUND, stage="sync", path=str(repo))
        self.executor.require(STAGE_TOOLS["sync"], stage="sync")

        if not (repo / ".git").exists():
            self.logger.info("sync.init", f"initialising git repository in {repo}")
            self._git("init", "-q")

        self._git("add", "-A")
        committed = False
        if self._git("status", "--porcelain").stdout.strip():
            stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
            self._git("commit", "--no-verify", "-q", "-m", f"recipkg sync {stamp}")
            committed = True
        else:
            self.logger.info("sync.clean", "nothing to commit")

        pushed = False
        remotes = self._git("remote").stdout.split()
        if "origin" in remotes:
            with self.logger.spinner("pushing recipes"):
                self._git("push", "origin", "HEAD")
            pushed = True
        else:
            self.logger.info("sync.noremote", "no origin remote configured; not pushing")

        head = self._git_head()
        self.logger.ok("sync.done", f"recipes synced at {head[:12] or '(no commits)'}", committed=committed, pushed=pushed)
        return {"repo": str(repo), "head": head, "committed": committed, "pushed": pushed}
