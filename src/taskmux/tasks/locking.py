"""Filesystem merge lock shared by independent CLI processes of one project."""

from __future__ import annotations

import json
import logging
import os
import shutil
import socket
import time
from collections.abc import Callable
from pathlib import Path
from types import TracebackType

from taskmux.tasks.contracts import utc_now

logger = logging.getLogger(__name__)

OWNER_FILE_NAME = "owner.json"


class MergeLockBusyError(RuntimeError):
    """Lock still held after the retry budget was spent."""

    def __init__(self, lock_path: Path, attempts: int) -> None:
        super().__init__(
            f"Merge lock {lock_path} is busy after {attempts} attempts; try again later.",
        )
        self.lock_path = lock_path
        self.attempts = attempts


class MergeLock:
    """Exclusive lock backed by an atomically created directory.

    ``os.mkdir`` either creates the directory or fails for every other
    contender, so at most one holder exists per lock path across processes.
    """

    def __init__(
        self,
        path: Path,
        *,
        max_retries: int = 30,
        retry_interval_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_retries <= 0:
            raise ValueError("max_retries must be > 0")
        self.path = path
        self.max_retries = max_retries
        self.retry_interval_seconds = retry_interval_seconds
        self._sleep = sleep
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def try_acquire(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.path.mkdir()
        except FileExistsError:
            return False
        self._held = True
        owner = {
            "pid": os.getpid(),
            "host": socket.gethostname(),
            "acquired_at": utc_now().isoformat(),
        }
        try:
            (self.path / OWNER_FILE_NAME).write_text(json.dumps(owner), "utf-8")
        except OSError as error:
            logger.warning("Merge lock: could not record owner in %s: %s", self.path, error)
        return True

    def acquire(self) -> None:
        """Acquire within the retry budget or raise ``MergeLockBusyError``."""

        for attempt in range(1, self.max_retries + 1):
            if self.try_acquire():
                logger.debug("Merge lock acquired path=%s attempt=%d", self.path, attempt)
                return
            if attempt < self.max_retries:
                logger.debug(
                    "Merge lock busy path=%s attempt=%d/%d",
                    self.path,
                    attempt,
                    self.max_retries,
                )
                self._sleep(self.retry_interval_seconds)
        raise MergeLockBusyError(self.path, self.max_retries)

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        shutil.rmtree(self.path, ignore_errors=True)
        logger.debug("Merge lock released path=%s", self.path)

    def __enter__(self) -> MergeLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


def read_lock_owner(path: Path) -> dict[str, object] | None:
    """Owner details of a held lock, or ``None`` when not held or unreadable."""

    owner_path = path / OWNER_FILE_NAME
    if not owner_path.exists():
        return None
    try:
        payload = json.loads(owner_path.read_text("utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


def force_release(path: Path) -> bool:
    """Remove a left-over lock directory; returns whether one existed."""

    if not path.exists():
        return False
    shutil.rmtree(path)
    logger.warning("Merge lock force-released path=%s", path)
    return True


def is_stale_owner(owner: dict[str, object]) -> bool:
    """True when the recorded owner is a dead process on this host."""

    pid = owner.get("pid")
    if owner.get("host") != socket.gethostname() or not isinstance(pid, int) or pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    except PermissionError:
        return False
    return False
