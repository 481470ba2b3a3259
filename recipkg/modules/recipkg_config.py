"""
recipkg.config

Configuration layer for recipkg.
- Loads TOML (system, user, extra files)
- Priority: defaults < system < user < extra paths < env
- Variable expansion (${var} / ${var:-default}) with cycle detection
- Layout: base directory tree and per-package paths derived from config
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from recipkg_errors import ConfigError

# -------------------------- Utilities --------------------------
VAR_PATTERN = re.compile(r"\$(?:\{([^}\s:]+)(?::-([^}]*))?\}|([A-Za-z_][A-Za-z0-9_]*))")

SYSTEM_CONFIG = Path("/etc/recipkg/config.toml")
USER_CONFIG = Path.home() / ".config" / "recipkg" / "config.toml"
ENV_PREFIX = "RECIPKG_"

DEFAULTS: Dict[str, Any] = {
    "paths": {
        "base": str(Path.home() / ".recipkg"),
        "recipes": "${paths.base}/recipes",
        "sources": "${paths.base}/sources",
        "work": "${paths.base}/work",
        "destdir": "${paths.base}/destdir",
        "logs": "${paths.base}/logs",
        "snapshots": "${paths.base}/snapshots",
    },
    "output": {"quiet": False, "json": False, "use_rich": True, "progress": True},
    "logging": {"max_bytes": 5 * 1024 * 1024, "backups": 3},
    "install": {"fakeroot": "auto", "default_command": "make install"},
    "strip": {"command": "strip --strip-unneeded"},
    "download": {"command": "curl -L --fail --silent --show-error"},
}


def _is_truthy(val: Any) -> bool:
    if isinstance(val, str):
        return val.strip().lower() in ("1", "true", "yes", "on")
    return bool(val)


def _read_toml_file(path: Path) -> dict:
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid TOML in {path}: {e}", path=str(path)) from e


def _merge_dict(a: dict, b: dict) -> dict:
    """Merge b into a (deep), returning new dict."""
    out = dict(a)
    for k, v in b.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _merge_dict(out[k], v)
        else:
            out[k] = v
    return out


# ----------------------- ConfigStore ---------------------------

@dataclass
class ConfigStore:
    _raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, extra_paths: Optional[List[Path]] = None, env: Optional[Dict[str, str]] = None, overrides: Optional[Dict[str, Any]] = None, read_system: bool = True) -> "ConfigStore":
        """Load config following priorities and merge into a ConfigStore.

        Defaults < /etc/recipkg/config.toml < ~/.config/recipkg/config.toml < extra_paths (ordered) < RECIPKG_* env < overrides
        """
        store = cls(_raw=_merge_dict({}, DEFAULTS))

        if read_system:
            for conf in (SYSTEM_CONFIG, USER_CONFIG):
                if conf.exists():
                    store._raw = _merge_dict(store._raw, _read_toml_file(conf))

        for p in extra_paths or []:
            p = Path(p)
            if not p.exists():
                raise ConfigError(f"config file not found: {p}", path=str(p))
            store._raw = _merge_dict(store._raw, _read_toml_file(p))

        # RECIPKG_PATHS__BASE -> paths.base
        environ = os.environ if env is None else env
        for k, v in environ.items():
            if not k.startswith(ENV_PREFIX):
                continue
            parts = k[len(ENV_PREFIX):].lower().split("__")
            if len(parts) < 2:
                continue
            dest = store._raw
            for part in parts[:-1]:
                dest = dest.setdefault(part, {})
            dest[parts[-1]] = v

        for key, value in (overrides or {}).items():
            if value is not None:
                store.set(key, value)
        return store

    # -------------------------------
    # Accessors
    # -------------------------------
    def get(self, key: str, default: Any = None) -> Any:
        """Get a dotted key, expanded. Example: get('paths.work')"""
        node = self._lookup(key)
        if node is None:
            return default
        return self._expand_value(node)

    def get_bool(self, key: str, default: bool = False) -> bool:
        v = self.get(key)
        return default if v is None else _is_truthy(v)

    def get_int(self, key: str, default: int = 0) -> int:
        v = self.get(key)
        try:
            return int(v) if v is not None else default
        except (TypeError, ValueError) as e:
            raise ConfigError(f"config key {key} is not an integer: {v!r}", key=key) from e

    def set(self, key: str, value: Any) -> None:
        parts = key.split(".")
        node = self._raw
        for p in parts[:-1]:
            node = node.setdefault(p, {})
        node[parts[-1]] = value

    def _lookup(self, key: str) -> Optional[Any]:
        node: Any = self._raw
        for p in key.split("."):
            if isinstance(node, dict) and p in node:
                node = node[p]
            else:
                return None
        return node

    # -------------------------------
    # Expansion logic
    # -------------------------------
    def _expand_value(self, value: Any, _stack: Optional[List[str]] = None) -> Any:
        if isinstance(value, str):
            return self._expand_str(value, _stack=_stack)
        if isinstance(value, dict):
            return {k: self._expand_value(v, _stack=_stack) for k, v in value.items()}
        if isinstance(value, list):
            return [self._expand_value(v, _stack=_stack) for v in value]
        return value

    def _expand_str(self, s: str, _stack: Optional[List[str]] = None) -> str:
        if _stack is None:
            _stack = []

        def _repl(m: re.Match) -> str:
            var_name = m.group(1) or m.group(3)
            default = m.group(2)
            if var_name in _stack:
                chain = " -> ".join(_stack + [var_name])
                raise ConfigError(f"cycle detected when expanding variables: {chain}")
            val = self._lookup(var_name)
            if val is None:
                val = os.environ.get(var_name)
            if val is None:
                return default if default is not None else m.group(0)
            _stack.append(var_name)
            try:
                return str(self._expand_value(val, _stack=_stack))
            finally:
                _stack.pop()

        return VAR_PATTERN.sub(_repl, s)


# ----------------------- Layout ------------------------

@dataclass(frozen=True)
class Layout:
    base: Path
    recipes: Path
    sources: Path
    work: Path
    destdir: Path
    logs: Path
    snapshots: Path

    @classmethod
    def from_config(cls, cfg: ConfigStore) -> "Layout":
        def _p(key: str) -> Path:
            return Path(os.path.expanduser(str(cfg.get(f"paths.{key}"))))
        return cls(
            base=_p("base"),
            recipes=_p("recipes"),
            sources=_p("sources"),
            work=_p("work"),
            destdir=_p("destdir"),
            logs=_p("logs"),
            snapshots=_p("snapshots"),
        )

    @classmethod
    def at(cls, base: Path) -> "Layout":
        base = Path(base)
        return cls(base, base / "recipes", base / "sources", base / "work", base / "destdir", base / "logs", base / "snapshots")

    def ensure(self) -> None:
        for d in (self.base, self.recipes, self.sources, self.work, self.destdir, self.logs, self.snapshots):
            d.mkdir(parents=True, exist_ok=True)

    # per-package paths
    def recipe_dir(self, name: str) -> Path:
        return self.recipes / name

    def work_dir(self, key: str) -> Path:
        return self.work / key

    def dest_root(self, key: str) -> Path:
        return self.destdir / key

    def manifest(self, key: str) -> Path:
        return self.logs / f"{key}.manifest"

    def snapshot(self, key: str) -> Path:
        return self.snapshots / f"{key}.tar.gz"

    def live_source(self, name: str) -> Path:
        return self.sources / f"{name}-git"
