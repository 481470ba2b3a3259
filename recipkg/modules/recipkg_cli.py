#!/usr/bin/env python3
# recipkg_cli.py
"""
recipkg CLI

Features:
 - one front-end for every pipeline stage: fetch, extract, patch, build,
   install, remove, audit, plus run (fetch -> install) for the whole pipeline
 - recipe housekeeping: init, mkpkg, info, search, sync
 - short aliases (dl, x, p, b, i, rm, srch, inf, rv/revdep, mk) and any
   unambiguous prefix of a command name
 - --quiet, --json, --no-progress, --base, --config
 - rich tables for info and audit, JSON on stdout with --json
 - exit status: the error's exit code, 100 for unexpected failures
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from rich.console import Console
from rich.table import Table

from recipkg_api import RecipkgAPI
from recipkg_config import ConfigStore
from recipkg_errors import (
    EXIT_INTERNAL,
    EXIT_OK,
    EXIT_UNKNOWN_COMMAND,
    EXIT_USAGE,
    RecipkgError,
    UsageError,
)
from recipkg_recipe import DEFAULT_VERSION

PROG = "recipkg"

# command -> (needs a package name, help)
COMMANDS: Dict[str, Tuple[bool, str]] = {
    "help": (False, "show this help"),
    "init": (True, "create a recipe template under recipes/<name>/"),
    "fetch": (True, "download sources (and clone/refresh the live git source)"),
    "extract": (True, "rebuild the work tree from cached sources"),
    "patch": (True, "apply the recipe's patches to the work tree"),
    "build": (True, "run prebuild, prepare, configure and build"),
    "install": (True, "install into destdir/<name>-<version> and write the manifest"),
    "remove": (True, "remove an installed package using its manifest"),
    "info": (True, "show a recipe"),
    "search": (True, "search recipes by regular expression"),
    "sync": (False, "commit the recipes directory and push it to origin"),
    "audit": (True, "list shared libraries needed by an installed package"),
    "mkpkg": (True, "create recipe and work directory scaffolding"),
    "run": (True, "fetch, extract, patch, build and install in one go"),
}

ALIASES = {
    "dl": "fetch",
    "x": "extract",
    "p": "patch",
    "b": "build",
    "i": "install",
    "rm": "remove",
    "srch": "search",
    "inf": "info",
    "rv": "audit",
    "revdep": "audit",
    "mk": "mkpkg",
}

# global options that consume the following token
VALUE_OPTIONS = ("--base", "--config")

EPILOG = """\
aliases: dl=fetch x=extract p=patch b=build i=install rm=remove srch=search
         inf=info rv/revdep=audit mk=mkpkg; any unambiguous prefix also works.

Running several recipkg processes against the same package at the same time
is not supported: there is no locking of work trees, destination roots,
manifests or checkpoints.
"""


def resolve_command(word: str) -> Optional[str]:
    """Map an alias or unambiguous prefix to a command name; None if unknown or ambiguous."""
    if word in COMMANDS:
        return word
    if word in ALIASES:
        return ALIASES[word]
    matches = [c for c in COMMANDS if c.startswith(word)]
    if len(matches) == 1:
        return matches[0]
    return None


def _command_index(argv: List[str]) -> Optional[int]:
    skip = False
    for i, tok in enumerate(argv):
        if skip:
            skip = False
            continue
        if tok in VALUE_OPTIONS:
            skip = True
            continue
        if tok.startswith("-"):
            continue
        return i
    return None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=PROG, description="recipe driven build / install / rollback tool",
                                     epilog=EPILOG, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--base", help="base directory (default ~/.recipkg)")
    parser.add_argument("--config", action="append", default=[], help="extra TOML config file (repeatable)")
    parser.add_argument("--quiet", action="store_true", help="only print errors")
    parser.add_argument("--json", action="store_true", help="JSON output")
    parser.add_argument("--no-progress", action="store_true", help="disable spinners")
    sub = parser.add_subparsers(dest="cmd", metavar="command")
    for name, (needs_name, text) in COMMANDS.items():
        p = sub.add_parser(name, help=text)
        if name == "search":
            p.add_argument("name", nargs="?", metavar="pattern")
        elif needs_name:
            p.add_argument("name", nargs="?", metavar="name")
        if name in ("init", "mkpkg"):
            p.add_argument("--version", dest="pkg_version", default=DEFAULT_VERSION, help="initial package version")
    return parser


class RecipkgCLI:
    def __init__(self, api: Optional[RecipkgAPI] = None):
        self.api = api
        self.json_out = False
        self.out = Console(highlight=False)

    def _make_api(self, args: argparse.Namespace) -> RecipkgAPI:
        overrides: Dict[str, Any] = {}
        if args.base:
            overrides["paths.base"] = str(Path(args.base).expanduser())
        if args.quiet:
            overrides["output.quiet"] = True
        if args.json:
            overrides["output.json"] = True
        if args.no_progress:
            overrides["output.progress"] = False
        cfg = ConfigStore.load(extra_paths=[Path(p) for p in args.config], overrides=overrides)
        return RecipkgAPI(cfg)

    # ---------------- output ----------------
    def _emit(self, payload: Any) -> None:
        if self.json_out:
            print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))

    def _show_info(self, recipe: Any) -> None:
        data = recipe.to_dict()
        root = self.api.layout.dest_root(recipe.key)
        data["installed"] = self.api.layout.manifest(recipe.key).is_file()
        data["destdir"] = str(root)
        if self.json_out:
            self._emit(data)
            return
        table = Table(title=f"{recipe.key}", show_header=False)
        table.add_column("field", style="bold")
        table.add_column("value")
        for k, v in data.items():
            if isinstance(v, list):
                v = "\n".join(str(x) for x in v)
            table.add_row(k, "" if v is None else str(v))
        self.out.print(table)

    def _show_audit(self, recipe: Any, deps: Dict[str, List[str]]) -> None:
        if self.json_out:
            self._emit({"package": recipe.key, "libraries": deps})
            return
        table = Table(title=f"{recipe.key}: shared libraries")
        table.add_column("library")
        table.add_column("needed by")
        for lib, bins in deps.items():
            table.add_row(lib, "\n".join(bins))
        self.out.print(table)

    # ---------------- dispatch ----------------
    def dispatch(self, cmd: str, name: Optional[str], args: argparse.Namespace) -> int:
        api = self.api
        if cmd == "sync":
            self._emit(api.syncer.sync())
            return EXIT_OK
        if not name:
            raise UsageError(f"{cmd}: missing {'pattern' if cmd == 'search' else 'package name'}")
        if cmd == "init":
            self._emit({"recipe": str(api.init_recipe(name, args.pkg_version))})
            return EXIT_OK
        if cmd == "mkpkg":
            self._emit(api.mkpkg(name, args.pkg_version))
            return EXIT_OK
        if cmd == "search":
            hits = api.search(name)
            if self.json_out:
                self._emit(hits)
            else:
                for h in hits:
                    self.out.print(h, markup=False)
            return EXIT_OK

        recipe = api.load_recipe(name)
        if cmd == "info":
            self._show_info(recipe)
        elif cmd == "audit":
            self._show_audit(recipe, api.auditor.audit(recipe))
        elif cmd == "run":
            self._emit({"package": recipe.key, "stages": api.run_pipeline(recipe)})
        elif cmd == "remove":
            self._emit(api.remover.remove(recipe).to_dict())
        else:
            result = api.run_stage(cmd, recipe)
            self._emit({"package": recipe.key, "stage": cmd, "result": result})
        return EXIT_OK

    def run(self, argv: Optional[List[str]] = None) -> int:
        argv = list(sys.argv[1:] if argv is None else argv)
        parser = build_parser()

        idx = _command_index(argv)
        if idx is None:
            parser.print_help(sys.stderr)
            return EXIT_USAGE
        cmd = resolve_command(argv[idx])
        if cmd is None:
            print(f"{PROG}: unknown command: {argv[idx]!r} (try '{PROG} help')", file=sys.stderr)
            return EXIT_UNKNOWN_COMMAND
        argv[idx] = cmd

        try:
            args = parser.parse_args(argv)
        except SystemExit as e:
            # argparse already printed the problem
            return e.code if isinstance(e.code, int) else EXIT_USAGE
        if cmd == "help":
            parser.print_help()
            return EXIT_OK
        self.json_out = bool(args.json)

        try:
            if self.api is None:
                self.api = self._make_api(args)
            return self.dispatch(cmd, getattr(args, "name", None), args)
        except RecipkgError as e:
            if self.api is not None:
                self.api.logger.error(f"{cmd}.error", e.message, **e.to_dict()["context"])
                if getattr(e, "output", ""):
                    self.api.logger.debug(f"{cmd}.output", e.output_tail())
            else:
                print(f"{PROG}: {e.message}", file=sys.stderr)
            return e.exit_code
        except Exception as e:
            if self.api is not None:
                self.api.logger.error(f"{cmd}.internal", f"unexpected failure: {e}", exc=e)
            else:
                print(f"{PROG}: unexpected failure: {e}", file=sys.stderr)
            return EXIT_INTERNAL
        finally:
            if self.api is not None:
                self.api.logger.flush()


def main(argv: Optional[List[str]] = None) -> int:
    return RecipkgCLI().run(argv)


if __name__ == "__main__":
    sys.exit(main())
