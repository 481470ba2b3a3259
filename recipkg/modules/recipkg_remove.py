#!/usr/bin/env python3
# recipkg_remove.py
"""
recipkg_remove.py — manifest driven package removal

Features:
 - Best-effort checkpoint of the destination root before anything is deleted
 - Deletes every path listed in logs/<key>.manifest, then the whole
   destination root, then the consumed manifest
 - Manifest entries that resolve outside the destination root are skipped
 - Without a manifest the destination root is still removed (with a warning)
 - postremove runs with DESTDIR exported; its failure is only logged
 - Removing something that is already gone succeeds
"""

from __future__ import annotations

import os
import shutil
import tarfile
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from recipkg_core import read_manifest


@dataclass
class RemoveResult:
    package: str
    removed: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    had_manifest: bool = False
    checkpoint: Optional[str] = None
    postremove_rc: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _inside(root: Path, path: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
        return True
    except ValueError:
        return False


class RecipkgRemove:
    def __init__(self, cfg: Any, layout: Any, executor: Any, logger: Any, checkpoints: Any):
        self.cfg = cfg
        self.layout = layout
        self.executor = executor
        self.logger = logger
        self.checkpoints = checkpoints

    def _checkpoint(self, recipe: Any, root: Path) -> Optional[str]:
        try:
            token = self.checkpoints.capture(recipe.key, root)
        except (OSError, tarfile.TarError) as e:
            self.logger.warning("remove.checkpoint.fail", f"could not checkpoint {root}: {e}", error=str(e))
            return None
        return token.location if token else None

    def _remove_entry(self, root: Path, entry: str, result: RemoveResult) -> None:
        path = root / entry
        if not _inside(root, path):
            self.logger.warning("remove.unsafe", f"skipping path outside destination root: {entry}", entry=entry)
            result.skipped.append(entry)
            return
        if path.is_symlink() or path.is_file():
            path.unlink()
            result.removed.append(entry)
        elif path.is_dir():
            shutil.rmtree(path)
            result.removed.append(entry)
        else:
            result.missing.append(entry)

    def remove(self, recipe: Any) -> RemoveResult:
        root = self.layout.dest_root(recipe.key)
        manifest = self.layout.manifest(recipe.key)
        result = RemoveResult(package=recipe.key)
        result.checkpoint = self._checkpoint(recipe, root)

        if manifest.is_file():
            result.had_manifest = True
            entries = read_manifest(manifest)
            self.logger.info("remove.manifest", f"removing {len(entries)} file(s) of {recipe.key}", manifest=str(manifest))
            for entry in entries:
                self._remove_entry(root, entry, result)
            if root.exists():
                shutil.rmtree(root)
            manifest.unlink()
        else:
            self.logger.warning("remove.nomanifest", f"no manifest for {recipe.key}; removing {root} wholesale")
            if root.is_symlink():
                root.unlink()
            elif root.exists():
                shutil.rmtree(root)

        if recipe.postremove:
            env = {"DESTDIR": str(root)}
            cwd = root.parent if root.parent.is_dir() else Path(os.getcwd())
            res = self.executor.run(f"set -e; {recipe.postremove}", cwd=cwd, env=env, stage="postremove")
            result.postremove_rc = res.rc
            if not res.ok:
                self.logger.warning("remove.postremove.fail", f"postremove failed (rc={res.rc})", output=res.output[-2000:])

        if result.missing:
            self.logger.info("remove.missing", f"{len(result.missing)} listed file(s) were already gone")
        self.logger.ok("remove.done", f"{recipe.key} removed")
        return result
