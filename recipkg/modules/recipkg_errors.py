#!/usr/bin/env python3
# recipkg_errors.py
"""
recipkg_errors.py — exception taxonomy shared by every recipkg module

Each error carries the process exit code the CLI reports for it, plus the
pipeline stage that raised it. Codes are stable:

  0   success
  1   usage error / recipe not found
  2   unknown command / missing required recipe field
  3   checksum mismatch
  4   nothing to extract
  5   work tree missing before patch
  6   patch source not found
  7   work tree missing before build
  100 uncaught internal failure

ExternalToolError reports the exit status of the tool that failed.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_RECIPE_NOT_FOUND = 1
EXIT_UNKNOWN_COMMAND = 2
EXIT_MISSING_FIELD = 2
EXIT_CHECKSUM = 3
EXIT_NOTHING_TO_EXTRACT = 4
EXIT_NO_WORK_BEFORE_PATCH = 5
EXIT_PATCH_NOT_FOUND = 6
EXIT_NO_WORK_BEFORE_BUILD = 7
EXIT_INTERNAL = 100


class RecipkgError(Exception):
    exit_code = EXIT_INTERNAL

    def __init__(self, message: str, *, exit_code: Optional[int] = None, stage: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code
        self.stage = stage
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "stage": self.stage,
            "exit_code": self.exit_code,
            "context": {k: str(v) for k, v in self.context.items()},
        }


class ConfigError(RecipkgError):
    """Malformed or missing recipe/config field."""
    exit_code = EXIT_MISSING_FIELD


class UsageError(RecipkgError):
    exit_code = EXIT_USAGE


class NotFoundError(RecipkgError):
    """Missing recipe, artifact, work tree or patch source."""
    exit_code = EXIT_RECIPE_NOT_FOUND


class IntegrityError(RecipkgError):
    exit_code = EXIT_CHECKSUM

    def __init__(self, path: str, expected: str, actual: str, *, stage: Optional[str] = "fetch"):
        super().__init__(f"sha256 mismatch for {path}: expected {expected}, got {actual}", stage=stage, path=path)
        self.path = path
        self.expected = expected
        self.actual = actual


class StateError(RecipkgError):
    """Operation invoked before its required predecessor stage."""
    exit_code = EXIT_NO_WORK_BEFORE_BUILD


class ExternalToolError(RecipkgError):
    """An invoked external tool returned nonzero (or could not be started)."""

    def __init__(self, cmd: Union[str, List[str]], returncode: int, *, stage: Optional[str] = None, output: str = "", message: Optional[str] = None):
        self.cmd = cmd if isinstance(cmd, str) else " ".join(str(c) for c in cmd)
        self.returncode = returncode
        self.output = output or ""
        where = f"[{stage}] " if stage else ""
        super().__init__(message or f"{where}command failed (rc={returncode}): {self.cmd}", stage=stage, cmd=self.cmd, rc=returncode)
        # the tool's status becomes the process exit status
        self.exit_code = returncode if 0 < returncode < 256 else EXIT_USAGE

    def output_tail(self, lines: int = 20) -> str:
        return "\n".join(self.output.splitlines()[-lines:])
