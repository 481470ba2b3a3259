"""
Shared test fixtures: temporary layout, quiet logger, recording executor,
in-memory checkpoint store.
"""

import textwrap
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

import pytest

from recipkg_api import RecipkgAPI
from recipkg_config import ConfigStore, Layout
from recipkg_errors import ExternalToolError
from recipkg_exec import CommandResult, render
from recipkg_logger import RecipkgLogger
from recipkg_snapshot import CheckpointManager, MemorySnapshotStore

Handler = Union[int, CommandResult, Callable[..., Union[int, CommandResult, None]]]


class FakeExecutor:
    """
    Records every command instead of running it.

    on(substring, handler) programs the outcome of matching commands: an int
    return code, a CommandResult, or a callable(cmd, cwd, env) that may touch
    the filesystem and returns either of those (None means rc 0). The most
    recently registered matching handler wins. Unmatched commands succeed.
    """

    def __init__(self):
        self.calls: List[Tuple[str, Optional[Path], dict, Optional[str]]] = []
        self.handlers: List[Tuple[str, Handler]] = []
        self.missing: set = set()

    def on(self, substring: str, handler: Handler) -> "FakeExecutor":
        self.handlers.append((substring, handler))
        return self

    def run(self, cmd, cwd=None, env=None, stage=None, check=False) -> CommandResult:
        text = render(cmd)
        self.calls.append((text, Path(cwd) if cwd else None, dict(env or {}), stage))
        outcome: Union[int, CommandResult, None] = 0
        for substring, handler in reversed(self.handlers):
            if substring in text:
                outcome = handler(text, cwd, env or {}) if callable(handler) else handler
                break
        if isinstance(outcome, CommandResult):
            result = outcome
        else:
            result = CommandResult(cmd=text, rc=int(outcome or 0))
        if check and not result.ok:
            raise ExternalToolError(text, result.rc, stage=stage, output=result.output)
        return result

    def which(self, tool: str) -> Optional[str]:
        return None if tool in self.missing else f"/usr/bin/{tool}"

    def require(self, tools, stage=None) -> None:
        missing = [t for t in tools if t in self.missing]
        if missing:
            raise ExternalToolError(" ".join(missing), 127, stage=stage)

    def ran(self, substring: str) -> List[str]:
        return [c[0] for c in self.calls if substring in c[0]]


@pytest.fixture
def base_dir(tmp_path_factory: pytest.TempPathFactory) -> Path:
    # Use a neutral directory name so the per-test tmp path (which embeds the
    # test name) never collides with FakeExecutor's substring matching.
    return tmp_path_factory.mktemp("case", numbered=True) / "base"


@pytest.fixture
def cfg(base_dir: Path) -> ConfigStore:
    return ConfigStore.load(read_system=False, env={},
                            overrides={"paths.base": str(base_dir), "install.fakeroot": "never"})


@pytest.fixture
def layout(cfg: ConfigStore) -> Layout:
    lay = Layout.from_config(cfg)
    lay.ensure()
    return lay


@pytest.fixture
def logger(layout: Layout) -> RecipkgLogger:
    return RecipkgLogger(module="tests", log_dir=layout.logs, quiet=True, progress=False)


@pytest.fixture
def fake() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def store() -> MemorySnapshotStore:
    return MemorySnapshotStore()


@pytest.fixture
def checkpoints(store: MemorySnapshotStore, logger: RecipkgLogger) -> CheckpointManager:
    return CheckpointManager(store, logger)


@pytest.fixture
def api(cfg, logger, fake, store) -> RecipkgAPI:
    return RecipkgAPI(cfg, logger=logger, executor=fake, store=store)


@pytest.fixture
def write_recipe(layout: Layout) -> Callable[..., Path]:
    """Write recipes/<name>/recipe.toml from dedented text."""

    def _write(name: str, text: str, fname: str = "recipe.toml") -> Path:
        path = layout.recipe_dir(name) / fname
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text), encoding="utf-8")
        return path

    return _write


def tree(root: Path) -> dict:
    """Map of relative path -> bytes for every regular file under root."""
    return {p.relative_to(root).as_posix(): p.read_bytes()
            for p in sorted(root.rglob("*")) if p.is_file()}
