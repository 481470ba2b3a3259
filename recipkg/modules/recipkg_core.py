#!/usr/bin/env python3
# recipkg_core.py
"""
recipkg_core.py — build and install stages

Features:
 - build(): prebuild, prepare, configure, build, each a `set -e` shell command
   run inside the work tree; empty stages are logged no-ops
 - install(): installs into destdir/<name>-<version> with DESTDIR exported,
   optionally under fakeroot
 - The destination root is checkpointed before it is cleared; a failing
   install (or postinstall) restores it to exactly what it held before
 - Optional stripping of ELF files after install (strip failures only warn)
 - Manifest of every installed regular file, written atomically
"""

from __future__ import annotations

import os
import shlex
from pathlib import Path
from typing import Any, Dict, List, Optional

from recipkg_errors import EXIT_NO_WORK_BEFORE_BUILD, ExternalToolError, StateError
from recipkg_snapshot import Checkpoint, clear_dir

BUILD_STAGES = ("prebuild", "prepare", "configure", "build")
ELF_MAGIC = b"\x7fELF"
FAKEROOT_MODES = ("auto", "always", "never")


# ---------------- file helpers ----------------
def is_elf(path: Path) -> bool:
    try:
        with open(path, "rb") as fh:
            return fh.read(4) == ELF_MAGIC
    except OSError:
        return False


def regular_files(root: Path) -> List[Path]:
    """Every regular (non-symlink) file below root, sorted."""
    if not root.is_dir():
        return []
    return sorted(p for p in root.rglob("*") if p.is_file() and not p.is_symlink())


def write_manifest(root: Path, manifest: Path) -> List[str]:
    entries = [p.relative_to(root).as_posix() for p in regular_files(root)]
    manifest.parent.mkdir(parents=True, exist_ok=True)
    tmp = manifest.with_name(manifest.name + ".tmp")
    tmp.write_text("".join(e + "\n" for e in entries), encoding="utf-8")
    os.replace(tmp, manifest)
    return entries


def read_manifest(manifest: Path) -> List[str]:
    return [line.strip() for line in manifest.read_text(encoding="utf-8").splitlines() if line.strip()]


class RecipkgCore:
    def __init__(self, cfg: Any, layout: Any, executor: Any, logger: Any, checkpoints: Any):
        self.cfg = cfg
        self.layout = layout
        self.executor = executor
        self.logger = logger
        self.checkpoints = checkpoints
        self.build = logger.perf_timer("core.build")(self.build)
        self.install = logger.perf_timer("core.install")(self.install)

    # ---------------- preconditions ----------------
    def _require_work_tree(self, recipe: Any, stage: str) -> Path:
        workdir = self.layout.work_dir(recipe.key)
        if not workdir.is_dir():
            raise StateError(f"work tree missing: {workdir} (run extract first)",
                             exit_code=EXIT_NO_WORK_BEFORE_BUILD, stage=stage, path=str(workdir))
        return workdir

    def _run_stage(self, stage: str, command: str, cwd: Path, env: Optional[Dict[str, str]] = None) -> None:
        res = self.executor.run(f"set -e; {command}", cwd=cwd, env=env, stage=stage)
        if not res.ok:
            raise ExternalToolError(command, res.rc, stage=stage, output=res.output,
                                    message=f"[{stage}] failed (rc={res.rc}): {command}")

    # ---------------- build ----------------
    def build(self, recipe: Any) -> List[str]:
        """Run the build stages in order; returns the names of the stages that ran."""
        workdir = self._require_work_tree(recipe, "build")
        ran = []
        for stage in BUILD_STAGES:
            command = recipe.stage(stage)
            if not command:
                self.logger.info(f"build.{stage}.skip", f"{stage}: nothing to do")
                continue
            self.logger.info(f"build.{stage}", f"{recipe.key}: {stage}", command=command)
            with self.logger.spinner(f"{stage} {recipe.key}"):
                self._run_stage(stage, command, workdir)
            ran.append(stage)
        self.logger.ok("build.done", f"{recipe.key} built")
        return ran

    # ---------------- install ----------------
    def _use_fakeroot(self) -> bool:
        mode = str(self.cfg.get("install.fakeroot", "auto")).lower()
        if mode == "never":
            return False
        if mode == "always":
            self.executor.require(["fakeroot"], stage="install")
            return True
        return self.executor.which("fakeroot") is not None

    def install_command(self, recipe: Any, root: Path) -> str:
        command = recipe.install or str(self.cfg.get("install.default_command", "make install"))
        if "DESTDIR" not in command:
            command = f"{command} DESTDIR={shlex.quote(str(root))}"
        script = f"set -e; {command}"
        if self._use_fakeroot():
            return f"fakeroot -- sh -c {shlex.quote(script)}"
        return script

    def _rollback(self, token: Optional[Checkpoint], root: Path) -> None:
        if token is None:
            # root held nothing before the call
            clear_dir(root)
        else:
            self.checkpoints.restore(token, root)

    def install(self, recipe: Any) -> List[str]:
        """Install into the destination root; returns the manifest entries."""
        workdir = self._require_work_tree(recipe, "install")
        root = self.layout.dest_root(recipe.key)
        manifest = self.layout.manifest(recipe.key)
        previous_manifest = manifest.read_bytes() if manifest.is_file() else None

        token = self.checkpoints.capture(recipe.key, root)
        clear_dir(root)

        env = {"DESTDIR": str(root)}
        command = self.install_command(recipe, root)
        self.logger.info("install.run", f"installing {recipe.key} into {root}", command=command)
        with self.logger.spinner(f"installing {recipe.key}"):
            res = self.executor.run(command, cwd=workdir, env=env, stage="install")
        if not res.ok:
            self.logger.error("install.fail", f"install failed (rc={res.rc}), rolling back {root}")
            self._rollback(token, root)
            raise ExternalToolError(command, res.rc, stage="install", output=res.output)

        if recipe.strip:
            self.strip_binaries(root)
        entries = write_manifest(root, manifest)
        self.logger.info("install.manifest", f"{len(entries)} file(s) recorded", manifest=str(manifest))

        if recipe.postinstall:
            self.logger.info("install.postinstall", f"{recipe.key}: postinstall")
            res = self.executor.run(f"set -e; {recipe.postinstall}", cwd=workdir, env=env, stage="postinstall")
            if not res.ok:
                self.logger.error("install.postinstall.fail", f"postinstall failed (rc={res.rc}), rolling back {root}")
                self._rollback(token, root)
                if previous_manifest is None:
                    manifest.unlink(missing_ok=True)
                else:
                    manifest.write_bytes(previous_manifest)
                raise ExternalToolError(recipe.postinstall, res.rc, stage="postinstall", output=res.output)

        self.logger.ok("install.done", f"{recipe.key} installed into {root}")
        return entries

    # ---------------- strip ----------------
    def strip_binaries(self, root: Path) -> int:
        base = shlex.split(str(self.cfg.get("strip.command", "strip --strip-unneeded")))
        if not base or self.executor.which(base[0]) is None:
            self.logger.warning("install.strip.missing", f"{base[0] if base else 'strip'} not found, skipping strip")
            return 0
        stripped = 0
        for path in regular_files(root):
            if not is_elf(path):
                continue
            res = self.executor.run(base + [str(path)], stage="install.strip")
            if res.ok:
                stripped += 1
            else:
                self.logger.warning("install.strip.fail", f"strip failed for {path.relative_to(root)} (rc={res.rc})")
        self.logger.info("install.strip", f"stripped {stripped} file(s)")
        return stripped
