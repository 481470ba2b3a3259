#!/usr/bin/env python3
# recipkg_logger.py
"""
RecipkgLogger — logger for the recipkg pipeline

Features:
 - Colorized terminal output through rich (stderr), plain text when use_rich is off
 - JSON structured output option (one JSON object per line)
 - Respects config: output.quiet, output.json, output.use_rich, output.progress,
   logging.max_bytes, logging.backups
 - Append-only RotatingFileHandler at <logs>/recipkg.log; writes serialized by an RLock
 - perf_timer decorator that reports stage durations
 - spinner() start/stop handle for long-running external commands
"""

from __future__ import annotations

import functools
import json
import logging
import threading
import time
import traceback
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from rich.console import Console
from rich.markup import escape

# ----------------- defaults -----------------
DEFAULT_LOG_FILE = "recipkg.log"
DEFAULT_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_BACKUPS = 3

LEVEL_STYLES = {
    "debug": ("[DBG ]", "dim"),
    "info": ("[INFO]", "cyan"),
    "ok": ("[ OK ]", "green"),
    "warning": ("[WARN]", "yellow"),
    "error": ("[ERR ]", "bold red"),
}
PY_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "ok": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class Spinner:
    """
    Start/stop handle around a rich status spinner.

    The spinner owns its refresh thread; stop() joins it and is safe to call
    more than once. A disabled spinner does nothing, so pipeline code can use
    it unconditionally.
    """

    def __init__(self, console: Optional[Console], text: str, enabled: bool = True):
        self.text = text
        self.enabled = enabled and console is not None
        self._console = console
        self._status = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._status is not None

    def start(self) -> "Spinner":
        with self._lock:
            if self.enabled and self._status is None:
                self._status = self._console.status(escape(self.text), spinner="line")
                self._status.start()
        return self

    def stop(self) -> None:
        with self._lock:
            if self._status is not None:
                status, self._status = self._status, None
                status.stop()

    def __enter__(self) -> "Spinner":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


class RecipkgLogger:
    """
    RecipkgLogger manages console/file/json logging.
    Use RecipkgLogger.from_config(cfg, log_dir) to build from a ConfigStore.
    """

    def __init__(
        self,
        *,
        module: str = "recipkg",
        log_dir: Optional[Path] = None,
        json_out: bool = False,
        quiet: bool = False,
        use_rich: bool = True,
        progress: bool = True,
        max_bytes: int = DEFAULT_MAX_BYTES,
        backups: int = DEFAULT_BACKUPS,
        console: Optional[Console] = None,
    ):
        self.module = module
        self.json_out = json_out
        self.quiet = quiet
        self.use_rich = use_rich and not json_out
        self.progress_enabled = progress and not quiet and not json_out
        self._console = console or Console(stderr=True, highlight=False, no_color=not self.use_rich)
        self._lock = threading.RLock()
        self._metrics: Dict[str, Dict[str, float]] = {}

        self.log_path: Optional[Path] = None
        self._pylogger = logging.getLogger(f"recipkg.{module}")
        self._pylogger.setLevel(logging.DEBUG)
        self._pylogger.propagate = False
        if log_dir is not None:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            self.log_path = log_dir / DEFAULT_LOG_FILE
            self._configure_file_handler(max_bytes, backups)
        else:
            for h in list(self._pylogger.handlers):
                self._pylogger.removeHandler(h)
                h.close()

    # ----------------- constructor helper -----------------
    @classmethod
    def from_config(cls, cfg: Any, log_dir: Optional[Path] = None, module: str = "recipkg") -> "RecipkgLogger":
        return cls(
            module=module,
            log_dir=log_dir,
            json_out=cfg.get_bool("output.json", False),
            quiet=cfg.get_bool("output.quiet", False),
            use_rich=cfg.get_bool("output.use_rich", True),
            progress=cfg.get_bool("output.progress", True),
            max_bytes=cfg.get_int("logging.max_bytes", DEFAULT_MAX_BYTES),
            backups=cfg.get_int("logging.backups", DEFAULT_BACKUPS),
        )

    # ----------------- internal file handler -----------------
    def _configure_file_handler(self, max_bytes: int, backups: int) -> None:
        target = str(self.log_path.resolve())
        for h in list(self._pylogger.handlers):
            if isinstance(h, RotatingFileHandler):
                if h.baseFilename == target:
                    return
                # a logger of the same module pointed at another base dir
                self._pylogger.removeHandler(h)
                h.close()
        handler = RotatingFileHandler(target, mode="a", maxBytes=max_bytes, backupCount=backups, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        self._pylogger.addHandler(handler)

    @property
    def console(self) -> Console:
        return self._console

    # ----------------- emit helpers -----------------
    def _format_json(self, level: str, event: str, message: str, meta: Dict[str, Any]) -> str:
        payload = {"ts": _now_iso(), "level": level.upper(), "module": self.module, "event": event, "msg": message, "meta": meta}
        return json.dumps(payload, ensure_ascii=False, default=str)

    def _emit(self, level: str, event: str, message: str = "", **meta) -> None:
        exc_text = meta.pop("traceback", None)
        with self._lock:
            # quiet still lets errors through
            if (not self.quiet or level == "error") and (level != "debug" or self.json_out):
                if self.json_out:
                    self._console.print(self._format_json(level, event, message, meta), markup=False, soft_wrap=True)
                else:
                    tag, style = LEVEL_STYLES.get(level, LEVEL_STYLES["info"])
                    self._console.print(f"[{style}]{tag}[/{style}] {escape(message or event)}", soft_wrap=True)

            line = f"{event}: {message}"
            if meta:
                line += " " + json.dumps(meta, ensure_ascii=False, default=str)
            self._pylogger.log(PY_LEVELS.get(level, logging.INFO), line)
            if exc_text:
                self._pylogger.log(logging.ERROR, f"{event}: traceback\n{exc_text}")

    # ------------- public API -------------
    def debug(self, event: str, message: str = "", **meta) -> None:
        self._emit("debug", event, message, **meta)

    def info(self, event: str, message: str = "", **meta) -> None:
        self._emit("info", event, message, **meta)

    def ok(self, event: str, message: str = "", **meta) -> None:
        self._emit("ok", event, message, **meta)

    def warning(self, event: str, message: str = "", **meta) -> None:
        self._emit("warning", event, message, **meta)

    def error(self, event: str, message: str = "", exc: Optional[BaseException] = None, **meta) -> None:
        if exc is not None:
            meta["traceback"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        self._emit("error", event, message, **meta)

    # ---------------- perf timer decorator ----------------
    def perf_timer(self, name: Optional[str] = None):
        """
        Decorator to time a stage and log its duration.
        Usage:
            @logger.perf_timer("core.build")
            def build(...): ...
        """
        def deco(fn: Callable):
            fname = name or f"{fn.__module__}.{fn.__name__}"

            @functools.wraps(fn)
            def wrapper(*args, **kwargs):
                start = time.time()
                try:
                    return fn(*args, **kwargs)
                finally:
                    duration = time.time() - start
                    with self._lock:
                        m = self._metrics.setdefault(fname, {"count": 0, "total": 0.0})
                        m["count"] += 1
                        m["total"] += duration
                    self.debug(f"perf.{fname}", f"{fname} took {duration:.3f}s", duration=round(duration, 3))
            return wrapper
        return deco

    def get_metrics(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            return {k: dict(v) for k, v in self._metrics.items()}

    # ---------------- progress ----------------
    def spinner(self, text: str) -> Spinner:
        return Spinner(self._console, text, enabled=self.progress_enabled)

    def flush(self) -> None:
        for h in self._pylogger.handlers:
            h.flush()
