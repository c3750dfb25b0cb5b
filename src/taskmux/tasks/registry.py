"""On-disk task registry: one directory per task under the control directory."""

from __future__ import annotations

import logging
import re
import shutil
from datetime import UTC, datetime
from pathlib import Path

from taskmux.tasks.contracts import (
    CorruptFileError,
    backup_corrupt_file,
    load_json,
    task_record_from_payload,
    task_record_to_payload,
    write_json,
)
from taskmux.tasks.models import TaskRecord, TaskStatus
from taskmux.tasks.window_token import DEFAULT_WINDOW_NAME_LIMIT, window_token

logger = logging.getLogger(__name__)

TASK_FILE_NAME = "task.json"
HOOKS_DIR_NAME = "hooks"
MAX_TASK_NAME_LEN = 64
UNKNOWN_CREATED_AT = datetime(1970, 1, 1, tzinfo=UTC)

_TASK_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def validate_task_name(name: str) -> str:
    """Return the normalized task name or raise ``ValueError``.

    Names become directory names and git branch names, so they are limited
    to a filesystem- and ref-safe alphabet.
    """

    normalized = name.strip()
    if not normalized:
        raise ValueError("Task name must not be empty.")
    if len(normalized) > MAX_TASK_NAME_LEN:
        raise ValueError(f"Task name must be at most {MAX_TASK_NAME_LEN} characters: {name!r}")
    if not _TASK_NAME_PATTERN.match(normalized):
        raise ValueError(
            f"Invalid task name {name!r}: use letters, digits, '.', '_' or '-', "
            "starting with a letter or digit.",
        )
    if ".." in normalized or normalized.endswith((".", ".lock")):
        raise ValueError(f"Invalid task name {name!r}: not usable as a git branch name.")
    return normalized


class TaskRegistry:
    """Creates and reads the deterministic per-task directory layout."""

    def __init__(self, agents_dir: Path, *, window_name_limit: int = DEFAULT_WINDOW_NAME_LIMIT) -> None:
        self.agents_dir = agents_dir
        self.window_name_limit = window_name_limit

    def task_dir(self, name: str) -> Path:
        return self.agents_dir / name

    def record_path(self, name: str) -> Path:
        return self.task_dir(name) / TASK_FILE_NAME

    def hooks_dir(self, name: str) -> Path:
        return self.task_dir(name) / HOOKS_DIR_NAME

    def exists(self, name: str) -> bool:
        return self.task_dir(name).is_dir()

    def names(self) -> list[str]:
        if not self.agents_dir.is_dir():
            return []
        return sorted(path.name for path in self.agents_dir.iterdir() if path.is_dir())

    def get(self, name: str) -> TaskRecord | None:
        """Load one record; unreadable records are backed up and replaced by a default."""

        if not self.exists(name):
            return None
        path = self.record_path(name)
        if not path.exists():
            logger.warning("Task directory %s has no %s", self.task_dir(name), TASK_FILE_NAME)
            return self._default_record(name)
        try:
            return task_record_from_payload(path, load_json(path))
        except CorruptFileError as error:
            logger.warning("Task record unreadable, using defaults: %s", error)
            backup_corrupt_file(path)
            return self._default_record(name)

    def list_tasks(self) -> list[TaskRecord]:
        records: list[TaskRecord] = []
        for name in self.names():
            record = self.get(name)
            if record is not None:
                records.append(record)
        return records

    def save(self, record: TaskRecord) -> None:
        write_json(self.record_path(record.name), task_record_to_payload(record))

    def delete(self, name: str) -> None:
        task_dir = self.task_dir(name)
        if task_dir.is_dir():
            shutil.rmtree(task_dir)

    def _default_record(self, name: str) -> TaskRecord:
        return TaskRecord(
            name=name,
            window_token=window_token(name, limit=self.window_name_limit),
            status=TaskStatus.PENDING,
            created_at=UNKNOWN_CREATED_AT,
        )
