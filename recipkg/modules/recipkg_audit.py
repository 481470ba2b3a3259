#!/usr/bin/env python3
# recipkg_audit.py
"""
recipkg_audit.py — shared library dependency report for an installed package

Runs ldd over every ELF file in the destination root and inverts the result
into library -> [binaries]. Both levels are sorted, so auditing an unchanged
root twice yields the same map.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Set

from recipkg_core import is_elf, regular_files
from recipkg_errors import EXIT_RECIPE_NOT_FOUND, ExternalToolError, NotFoundError
from recipkg_exec import STAGE_TOOLS

NOT_DYNAMIC = ("not a dynamic executable", "statically linked")


def parse_ldd(output: str) -> List[str]:
    """First whitespace separated token of every non-empty line."""
    libs = []
    for line in output.splitlines():
        parts = line.split()
        if parts:
            libs.append(parts[0])
    return libs


class RecipkgAudit:
    def __init__(self, cfg: Any, layout: Any, executor: Any, logger: Any):
        self.cfg = cfg
        self.layout = layout
        self.executor = executor
        self.logger = logger

    def libraries_of(self, path: Path) -> List[str]:
        res = self.executor.run(["ldd", str(path)], stage="audit")
        text = res.output.lower()
        if any(marker in text for marker in NOT_DYNAMIC):
            return []
        if not res.ok:
            raise ExternalToolError(f"ldd {path}", res.rc, stage="audit", output=res.output)
        return parse_ldd(res.stdout)

    def audit(self, recipe: Any) -> Dict[str, List[str]]:
        root = self.layout.dest_root(recipe.key)
        if not root.is_dir():
            raise NotFoundError(f"{recipe.key} is not installed (no {root})",
                                exit_code=EXIT_RECIPE_NOT_FOUND, stage="audit", path=str(root))
        self.executor.require(STAGE_TOOLS["audit"], stage="audit")

        deps: Dict[str, Set[str]] = {}
        scanned = 0
        with self.logger.spinner(f"auditing {recipe.key}"):
            for path in regular_files(root):
                if not is_elf(path):
                    continue
                scanned += 1
                rel = path.relative_to(root).as_posix()
                for lib in self.libraries_of(path):
                    deps.setdefault(lib, set()).add(rel)

        result = {lib: sorted(bins) for lib, bins in sorted(deps.items())}
        self.logger.ok("audit.done", f"{recipe.key}: {scanned} ELF file(s), {len(result)} librar(y/ies)")
        return result
