"""Advisory workspace locking built on ``fcntl.flock``."""
from __future__ import annotations

import fcntl
import json
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

POLL_INTERVAL = 0.05
WORKSPACE_LOCK_NAME = "lregctl.lock"


class LockTimeoutError(RuntimeError):
    """Raised when a lock cannot be acquired within the timeout."""


@dataclass(frozen=True, slots=True)
class LockHandle:
    """Information about an acquired lock."""

    path: Path
    wait_ms: int


class LockManager:
    """Serialise mutating commands that share one workspace."""

    def __init__(self, runtime_dir: Path, default_timeout: float = 30.0) -> None:
        """Store the lock directory and the default acquisition timeout."""
        self.runtime_dir = runtime_dir
        self.default_timeout = default_timeout

    @property
    def workspace_lock_path(self) -> Path:
        """Return the path of the workspace-wide lock file."""
        return self.runtime_dir / WORKSPACE_LOCK_NAME

    @contextmanager
    def workspace_lock(self, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold the exclusive workspace lock for the duration of the block."""
        with self._acquire(self.workspace_lock_path, timeout) as handle:
            yield handle

    @contextmanager
    def _acquire(self, path: Path, timeout: float | None) -> Iterator[LockHandle]:
        limit = self.default_timeout if timeout is None else timeout
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
        started = time.monotonic()
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError as exc:
                    if time.monotonic() - started >= limit:
                        raise LockTimeoutError(
                            f"Timed out after {limit:.1f}s waiting for lock {path}; "
                            "another lregctl run may be in progress."
                        ) from exc
                    time.sleep(POLL_INTERVAL)
            wait_ms = int((time.monotonic() - started) * 1000)
            metadata = {
                "pid": os.getpid(),
                "path": str(path),
                "acquired_at": datetime.now(UTC).isoformat(),
            }
            os.ftruncate(fd, 0)
            os.pwrite(fd, json.dumps(metadata).encode("utf-8"), 0)
            try:
                yield LockHandle(path=path, wait_ms=wait_ms)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)


__all__ = ["LockHandle", "LockManager", "LockTimeoutError"]
