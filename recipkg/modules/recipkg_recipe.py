#!/usr/bin/env python3
# recipkg_recipe.py
"""
recipkg_recipe.py — load / validate package recipes

A recipe lives in recipes/<name>/recipe.toml (or the older flat recipe.ini)
and has two sections:

  [package]  name, version, url, sha256, vcs, patches, strip, postremove, submodules
  [options]  prebuild, configure, prepare, build, install, postinstall

List fields (url, sha256, patches) are comma separated strings or TOML arrays.
Unknown keys and sections are ignored. Only `name` is mandatory.
"""

from __future__ import annotations

import configparser
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from recipkg_errors import ConfigError, NotFoundError

DEFAULT_VERSION = "1.0.0"
RECIPE_FILES = ("recipe.toml", "recipe.ini")
STAGE_KEYS = ("prebuild", "prepare", "configure", "build", "install", "postinstall")

PATCH_REMOTE = "remote"
PATCH_VCS = "vcs"
PATCH_LOCAL = "local"
REMOTE_SCHEMES = ("http://", "https://", "ftp://")

RECIPE_TEMPLATE = """\
[package]
name = "{name}"
version = "{version}"
url = ""
sha256 = ""
vcs = ""
patches = ""
strip = true
postremove = ""
submodules = false

[options]
prebuild = ""
configure = ""
prepare = ""
build = ""
install = ""
postinstall = ""
"""


# ---------- helpers ----------
def split_list(value: Any) -> List[str]:
    """Split a comma separated field, trimming entries and dropping empty ones."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        items = str(value).split(",")
    return [i.strip() for i in items if i is not None and i.strip()]


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class PatchSource:
    kind: str
    locator: str
    ref: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "PatchSource":
        if text.startswith("git:"):
            rest = text[4:]
            # the last '@' separates the ref, so git@host:repo locators survive
            at = rest.rfind("@")
            if at <= 0 or at == len(rest) - 1:
                return cls(PATCH_VCS, rest, None)
            locator, ref = rest[:at], rest[at + 1:]
            # refs never hold ":"; a url locator needs a path after its host
            if ":" in ref or ("://" in locator and "/" not in locator.split("://", 1)[1]):
                return cls(PATCH_VCS, rest, None)
            return cls(PATCH_VCS, locator, ref)
        if text.startswith(REMOTE_SCHEMES):
            return cls(PATCH_REMOTE, text)
        return cls(PATCH_LOCAL, text)

    def __str__(self) -> str:
        if self.kind == PATCH_VCS:
            return f"git:{self.locator}@{self.ref}" if self.ref else f"git:{self.locator}"
        return self.locator


@dataclass(frozen=True)
class VcsSource:
    scheme: str
    url: str
    submodules: bool = False

    @classmethod
    def parse(cls, text: str, submodules: bool = False) -> Optional["VcsSource"]:
        text = text.strip()
        if not text:
            return None
        scheme, sep, url = text.partition(":")
        if not sep or not url:
            raise ConfigError(f"vcs must look like '<scheme>:<locator>', got {text!r}", field="vcs")
        return cls(scheme=scheme, url=url, submodules=submodules)


@dataclass(frozen=True)
class Recipe:
    name: str
    version: str = DEFAULT_VERSION
    sources: Tuple[str, ...] = ()
    checksums: Tuple[Optional[str], ...] = ()
    vcs: Optional[VcsSource] = None
    patches: Tuple[PatchSource, ...] = ()
    strip: bool = False
    prebuild: str = ""
    prepare: str = ""
    configure: str = ""
    build: str = ""
    install: str = ""
    postinstall: str = ""
    postremove: str = ""
    recipe_dir: Optional[Path] = field(default=None, compare=False)

    @property
    def key(self) -> str:
        return f"{self.name}-{self.version}"

    def checksum_for(self, index: int) -> Optional[str]:
        if index < len(self.checksums):
            return self.checksums[index] or None
        return None

    def stage(self, name: str) -> str:
        return getattr(self, name, "") or ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "sources": list(self.sources),
            "checksums": list(self.checksums),
            "vcs": f"{self.vcs.scheme}:{self.vcs.url}" if self.vcs else None,
            "submodules": bool(self.vcs and self.vcs.submodules),
            "patches": [str(p) for p in self.patches],
            "strip": self.strip,
            **{k: self.stage(k) for k in STAGE_KEYS},
            "postremove": self.postremove,
        }

    # ---------- construction ----------
    @classmethod
    def from_sections(cls, package: Dict[str, Any], options: Dict[str, Any], recipe_dir: Optional[Path] = None) -> "Recipe":
        name = _as_str(package.get("name"))
        if not name:
            raise ConfigError("recipe field [package].name is missing", field="name")
        submodules = _as_bool(package.get("submodules"))
        # sha256 entries stay positional: an empty slot means "not checked"
        raw_sums = package.get("sha256")
        if isinstance(raw_sums, (list, tuple)):
            sums = tuple(_as_str(s) or None for s in raw_sums)
        else:
            sums = tuple(s.strip() or None for s in _as_str(raw_sums).split(",")) if _as_str(raw_sums) else ()
        return cls(
            name=name,
            version=_as_str(package.get("version")) or DEFAULT_VERSION,
            sources=tuple(split_list(package.get("url"))),
            checksums=sums,
            vcs=VcsSource.parse(_as_str(package.get("vcs")), submodules=submodules),
            patches=tuple(PatchSource.parse(p) for p in split_list(package.get("patches"))),
            strip=_as_bool(package.get("strip")),
            postremove=_as_str(package.get("postremove")),
            recipe_dir=recipe_dir,
            **{k: _as_str(options.get(k)) for k in STAGE_KEYS},
        )


# ---------- loading ----------
def _parse_toml(text: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid recipe TOML: {e}") from e
    package = data.get("package") if isinstance(data.get("package"), dict) else {}
    options = data.get("options") if isinstance(data.get("options"), dict) else {}
    return package, options


def _parse_ini(text: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    parser = configparser.ConfigParser(interpolation=None, comment_prefixes=("#", ";"), strict=False)
    try:
        parser.read_string(text)
    except configparser.Error as e:
        raise ConfigError(f"invalid recipe INI: {e}") from e
    package = dict(parser["package"]) if parser.has_section("package") else {}
    options = dict(parser["options"]) if parser.has_section("options") else {}
    return package, options


def loads(text: str, fmt: str = "toml", recipe_dir: Optional[Path] = None) -> Recipe:
    """Parse recipe text. fmt is 'toml' or 'ini'."""
    if fmt == "toml":
        package, options = _parse_toml(text)
    elif fmt == "ini":
        package, options = _parse_ini(text)
    else:
        raise ConfigError(f"unknown recipe format: {fmt}")
    return Recipe.from_sections(package, options, recipe_dir=recipe_dir)


def load(source: Union[str, Path]) -> Recipe:
    path = Path(source)
    if not path.is_file():
        raise NotFoundError(f"recipe not found: {path}", path=str(path))
    fmt = "ini" if path.suffix == ".ini" else "toml"
    return loads(path.read_text(encoding="utf-8"), fmt=fmt, recipe_dir=path.parent)


def find_recipe_file(recipes_dir: Path, name: str) -> Optional[Path]:
    for fname in RECIPE_FILES:
        p = Path(recipes_dir) / name / fname
        if p.is_file():
            return p
    return None


def render_template(name: str, version: str = DEFAULT_VERSION) -> str:
    return RECIPE_TEMPLATE.format(name=name, version=version)
