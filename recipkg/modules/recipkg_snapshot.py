#!/usr/bin/env python3
# recipkg_snapshot.py
"""
recipkg_snapshot.py — directory checkpoints for install rollback

A checkpoint is the full content of a directory archived into a per-key blob.
capture() returns a token naming the blob, or None when there was nothing to
save; restore(None, dir) does nothing, so callers can always pair the two.

Backends are swappable: TarSnapshotStore (default, gzip'd tarball under
snapshots/<key>.tar.gz) or anything implementing SnapshotStore.
"""

from __future__ import annotations

import io
import os
import shutil
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Checkpoint:
    key: str
    location: str


def is_empty_dir(path: Path) -> bool:
    return not path.is_dir() or not any(path.iterdir())


def clear_dir(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)


class SnapshotStore:
    """Storage backend: save a directory under a key, unpack it back."""

    def save(self, key: str, directory: Path) -> str:
        raise NotImplementedError

    def load(self, location: str, directory: Path) -> None:
        raise NotImplementedError


class TarSnapshotStore(SnapshotStore):
    def __init__(self, layout: Any):
        self.layout = layout

    def save(self, key: str, directory: Path) -> str:
        dest = self.layout.snapshot(key)
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp = dest.with_name(dest.name + ".tmp")
        with tarfile.open(tmp, "w:gz") as tar:
            tar.add(str(directory), arcname=".")
        os.replace(tmp, dest)
        return str(dest)

    def load(self, location: str, directory: Path) -> None:
        with tarfile.open(location, "r:gz") as tar:
            tar.extractall(str(directory), filter="tar")


class MemorySnapshotStore(SnapshotStore):
    """Keeps blobs in memory; no files under snapshots/ are written."""

    def __init__(self):
        self.blobs: Dict[str, bytes] = {}

    def save(self, key: str, directory: Path) -> str:
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w") as tar:
            tar.add(str(directory), arcname=".")
        self.blobs[key] = buf.getvalue()
        return key

    def load(self, location: str, directory: Path) -> None:
        with tarfile.open(fileobj=io.BytesIO(self.blobs[location]), mode="r") as tar:
            tar.extractall(str(directory), filter="tar")


class CheckpointManager:
    def __init__(self, store: SnapshotStore, logger: Any = None):
        self.store = store
        self.logger = logger

    def capture(self, key: str, directory: Path) -> Optional[Checkpoint]:
        directory = Path(directory)
        if is_empty_dir(directory):
            if self.logger:
                self.logger.debug("checkpoint.skip", f"nothing to checkpoint in {directory}")
            return None
        location = self.store.save(key, directory)
        if self.logger:
            self.logger.info("checkpoint.saved", f"checkpoint of {directory.name} saved", key=key, location=location)
        return Checkpoint(key=key, location=location)

    def restore(self, token: Optional[Checkpoint], directory: Path) -> None:
        if token is None:
            return
        directory = Path(directory)
        clear_dir(directory)
        self.store.load(token.location, directory)
        if self.logger:
            self.logger.warning("checkpoint.restored", f"restored {directory} from checkpoint", key=token.key)
