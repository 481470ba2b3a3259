#!/usr/bin/env python3
# recipkg_exec.py
"""
recipkg_exec.py — synchronous external command execution

Every external capability recipkg relies on (curl, git, tar, unzip, xz, gzip,
patch, strip, ldd, fakeroot) goes through CommandExecutor.run(), which blocks
until the process exits and captures its output. There is no timeout: a hung
tool hangs the pipeline.

Stages declare the tools they need and validate them up front with require(),
so a missing tool fails before any state is touched. Tests replace the
executor with a recording fake.
"""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from recipkg_errors import ExternalToolError

Command = Union[str, List[str]]

# tools each stage needs; audit/strip/fakeroot are checked where used
STAGE_TOOLS: Dict[str, List[str]] = {
    "fetch": ["curl"],
    "fetch.vcs": ["git"],
    "extract": ["tar"],
    "patch": ["git", "patch"],
    "install.strip": ["strip"],
    "audit": ["ldd"],
    "sync": ["git"],
}


@dataclass
class CommandResult:
    cmd: str
    rc: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.rc == 0

    @property
    def output(self) -> str:
        return (self.stdout or "") + (self.stderr or "")


def render(cmd: Command) -> str:
    if isinstance(cmd, str):
        return cmd
    return " ".join(shlex.quote(str(c)) for c in cmd)


class CommandExecutor:
    def __init__(self, logger: Any = None, env: Optional[Dict[str, str]] = None):
        self.logger = logger
        self.base_env = dict(env) if env is not None else None

    def _env(self, extra: Optional[Dict[str, str]]) -> Dict[str, str]:
        env = dict(os.environ if self.base_env is None else self.base_env)
        if extra:
            env.update({k: str(v) for k, v in extra.items()})
        return env

    def run(self, cmd: Command, cwd: Optional[Union[str, Path]] = None, env: Optional[Dict[str, str]] = None, stage: Optional[str] = None, check: bool = False) -> CommandResult:
        """
        Run a command. Strings go through the shell, lists are executed directly.
        Returns CommandResult; with check=True a nonzero status raises ExternalToolError.
        """
        text = render(cmd)
        if self.logger:
            self.logger.info("exec.start", f"$ {text}", cwd=str(cwd) if cwd else None, stage=stage)
        if isinstance(cmd, (list, tuple)):
            args: Command = [str(x) for x in cmd]
            shell = False
        else:
            args = cmd
            shell = True
        try:
            proc = subprocess.run(args, cwd=str(cwd) if cwd else None, env=self._env(env), shell=shell,
                                  stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, errors="replace")
            result = CommandResult(cmd=text, rc=proc.returncode, stdout=proc.stdout or "", stderr=proc.stderr or "")
        except OSError as e:
            # binary missing or cwd gone
            result = CommandResult(cmd=text, rc=127, stdout="", stderr=str(e))

        if self.logger:
            if result.ok:
                self.logger.debug("exec.ok", f"rc=0: {text}")
            else:
                tail = "\n".join(result.output.splitlines()[-20:])
                self.logger.warning("exec.fail", f"rc={result.rc}: {text}", stage=stage, output=tail)
        if check and not result.ok:
            raise ExternalToolError(text, result.rc, stage=stage, output=result.output)
        return result

    def which(self, tool: str) -> Optional[str]:
        return shutil.which(tool)

    def require(self, tools: Iterable[str], stage: Optional[str] = None) -> None:
        missing = [t for t in tools if not self.which(t)]
        if missing:
            raise ExternalToolError(" ".join(missing), 127, stage=stage,
                                    message=f"required tool(s) not found in PATH: {', '.join(missing)}")
