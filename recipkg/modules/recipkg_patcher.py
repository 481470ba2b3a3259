#!/usr/bin/env python3
# recipkg_patcher.py
"""
recipkg_patcher.py — patch resolver for recipkg work trees

Features:
 - Three patch source kinds: remote single file (http/https/ftp), git ref or
   linear range (git:<repo>@<ref> / git:<repo>@A..B), local file or directory
 - Directories contribute *.patch, *.diff and *.mbox files, sorted by name
 - Ordered strategy cascade per patch file: git am --3way, then patch -p1,
   then patch -p0; the first strategy that succeeds wins
 - The work tree is turned into a git repository with a baseline commit the
   first time patches are applied, so commit based strategies work the same
   for local diffs and remote changes
 - The first failure aborts the remaining patch list
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, List, Optional, Sequence

from recipkg_download import sha256_of_string
from recipkg_errors import (
    EXIT_NO_WORK_BEFORE_PATCH,
    EXIT_PATCH_NOT_FOUND,
    ConfigError,
    ExternalToolError,
    NotFoundError,
    StateError,
)
from recipkg_exec import STAGE_TOOLS
from recipkg_recipe import PATCH_LOCAL, PATCH_REMOTE, PATCH_VCS

PATCH_SUFFIXES = (".patch", ".diff", ".mbox")
TMP_REF = "refs/tmp/recipkg"
TMP_BASE_REF = "refs/tmp/recipkg-base"
GIT_IDENTITY = ["-c", "user.email=recipkg@localhost", "-c", "user.name=recipkg"]


def git(workdir: Path, *args: str) -> List[str]:
    return ["git", "-C", str(workdir), *GIT_IDENTITY, *args]


# ------------------ strategies ------------------
class PatchStrategy:
    """One way of applying a single patch file. apply() returns True on success."""
    name = "base"

    def apply(self, executor: Any, patch: Path, workdir: Path) -> bool:
        raise NotImplementedError


class GitAmStrategy(PatchStrategy):
    name = "git-am"

    def apply(self, executor: Any, patch: Path, workdir: Path) -> bool:
        res = executor.run(git(workdir, "am", "--3way", "--keep-cr", str(patch)), stage="patch")
        if res.ok:
            return True
        # leave no half-finished am session behind for the next strategy
        executor.run(git(workdir, "am", "--abort"), stage="patch")
        return False


class TextualPatchStrategy(PatchStrategy):
    def __init__(self, strip: int):
        self.strip = strip
        self.name = f"patch-p{strip}"

    def apply(self, executor: Any, patch: Path, workdir: Path) -> bool:
        base = ["patch", f"-p{self.strip}", "--forward", "--batch", "-i", str(patch)]
        # dry run first so a failing level does not leave a half-applied tree
        if not executor.run(base + ["--dry-run"], cwd=workdir, stage="patch").ok:
            return False
        if not executor.run(base, cwd=workdir, stage="patch").ok:
            return False
        executor.run(git(workdir, "add", "-A"), stage="patch", check=True)
        executor.run(git(workdir, "commit", "--no-verify", "--allow-empty", "-q", "-m", f"recipkg: apply {patch.name}"), stage="patch", check=True)
        return True


DEFAULT_STRATEGIES: Sequence[PatchStrategy] = (GitAmStrategy(), TextualPatchStrategy(1), TextualPatchStrategy(0))


class RecipkgPatcher:
    def __init__(self, cfg: Any, layout: Any, executor: Any, logger: Any, downloader: Any, strategies: Optional[Sequence[PatchStrategy]] = None):
        self.cfg = cfg
        self.layout = layout
        self.executor = executor
        self.logger = logger
        self.downloader = downloader
        self.strategies = list(strategies or DEFAULT_STRATEGIES)

    # ------------------ work tree ------------------
    def ensure_git_repo(self, workdir: Path) -> None:
        if (workdir / ".git").exists():
            return
        self.logger.info("patch.git.init", f"creating baseline commit in {workdir.name}")
        self.executor.run(["git", "-C", str(workdir), "init", "-q"], stage="patch", check=True)
        self.executor.run(git(workdir, "add", "-A"), stage="patch", check=True)
        self.executor.run(git(workdir, "commit", "--no-verify", "--allow-empty", "-q", "-m", "base"), stage="patch", check=True)

    # ------------------ single patch file ------------------
    def apply_file(self, patch: Path, workdir: Path) -> str:
        """Run the strategy cascade; returns the name of the strategy that worked."""
        for strategy in self.strategies:
            self.logger.debug("patch.try", f"{patch.name}: trying {strategy.name}")
            if strategy.apply(self.executor, patch, workdir):
                self.logger.ok("patch.applied", f"applied {patch.name} ({strategy.name})", patch=str(patch))
                return strategy.name
        tried = ", ".join(s.name for s in self.strategies)
        raise ExternalToolError(str(patch), 1, stage="patch", message=f"could not apply {patch} (tried {tried})")

    def discover(self, directory: Path) -> List[Path]:
        return sorted((p for p in directory.iterdir() if p.is_file() and p.suffix in PATCH_SUFFIXES), key=lambda p: p.name)

    def apply_directory(self, directory: Path, workdir: Path) -> List[str]:
        applied = []
        for p in self.discover(directory):
            # apply_file raises; later files in the directory are never tried
            self.apply_file(p, workdir)
            applied.append(str(p))
        return applied

    # ------------------ source kinds ------------------
    def apply_remote(self, recipe: Any, url: str, workdir: Path) -> None:
        dest = self.layout.sources / f"{recipe.name}-{sha256_of_string(url)[:16]}.patch"
        if dest.exists():
            self.logger.info("patch.cached", f"remote patch already cached: {dest.name}")
        else:
            self.downloader.download(url, dest, stage="patch")
        self.apply_file(dest, workdir)

    def apply_vcs_ref(self, repo_url: str, ref: Optional[str], workdir: Path) -> None:
        if not ref:
            raise ConfigError(f"git patch without @ref: {repo_url}", field="patches", stage="patch")
        if ".." in ref:
            base, _, head = ref.partition("..")
            refspecs = [f"{base}:{TMP_BASE_REF}", f"{head}:{TMP_REF}"]
            pick = f"{TMP_BASE_REF}..{TMP_REF}"
            tmp_refs = [TMP_REF, TMP_BASE_REF]
        else:
            refspecs = [f"{ref}:{TMP_REF}"]
            pick = TMP_REF
            tmp_refs = [TMP_REF]

        try:
            self.executor.run(["git", "-C", str(workdir), "fetch", "--no-tags", repo_url, *refspecs], stage="patch", check=True)
            res = self.executor.run(git(workdir, "cherry-pick", "-x", pick), stage="patch")
            if not res.ok:
                self.executor.run(git(workdir, "cherry-pick", "--abort"), stage="patch")
                raise ExternalToolError(f"git cherry-pick -x {ref}", res.rc, stage="patch", output=res.output,
                                        message=f"cherry-pick of {repo_url}@{ref} failed (rc={res.rc})")
            self.logger.ok("patch.picked", f"cherry-picked {repo_url}@{ref}")
        finally:
            for r in tmp_refs:
                self.executor.run(["git", "-C", str(workdir), "update-ref", "-d", r], stage="patch")

    def apply_local(self, recipe: Any, locator: str, workdir: Path) -> None:
        path = Path(locator).expanduser()
        if not path.is_absolute():
            path = (recipe.recipe_dir or self.layout.recipe_dir(recipe.name)) / path
        if not path.exists():
            raise NotFoundError(f"patch not found: {path}", exit_code=EXIT_PATCH_NOT_FOUND, stage="patch", path=str(path))
        if path.is_dir():
            self.apply_directory(path, workdir)
        else:
            self.apply_file(path, workdir)

    # ------------------ public entry ------------------
    def apply(self, recipe: Any) -> int:
        if not recipe.patches:
            self.logger.info("patch.none", f"{recipe.key}: no patches")
            return 0
        workdir = self.layout.work_dir(recipe.key)
        if not workdir.is_dir():
            raise StateError(f"work tree missing: {workdir} (run extract first)",
                             exit_code=EXIT_NO_WORK_BEFORE_PATCH, stage="patch", path=str(workdir))
        self.executor.require(STAGE_TOOLS["patch"], stage="patch")
        self.ensure_git_repo(workdir)

        with self.logger.spinner(f"patching {recipe.key}"):
            for src in recipe.patches:
                self.logger.info("patch.source", f"applying {src}", kind=src.kind)
                if src.kind == PATCH_VCS:
                    self.apply_vcs_ref(src.locator, src.ref, workdir)
                elif src.kind == PATCH_REMOTE:
                    self.apply_remote(recipe, src.locator, workdir)
                elif src.kind == PATCH_LOCAL:
                    self.apply_local(recipe, src.locator, workdir)
                else:
                    raise ConfigError(f"unknown patch kind: {src.kind}", stage="patch")
        self.logger.ok("patch.done", f"{recipe.key}: {len(recipe.patches)} patch source(s) applied")
        return len(recipe.patches)
