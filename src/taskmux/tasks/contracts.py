"""File-based persistence contracts: atomic JSON writes, corrupt-file recovery, task records."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from taskmux.tasks.models import TaskRecord, TaskStatus

logger = logging.getLogger(__name__)

CORRUPT_SUFFIX = ".corrupt"


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class CorruptFileError(ValueError):
    """Persisted file exists but cannot be parsed."""

    def __init__(self, path: Path, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


def write_text_atomic(path: Path, content: str, *, mode: int = 0o644) -> None:
    """Write ``content`` through a sibling temp file renamed into place.

    The parent directory must exist.  On any failure the temp file is removed
    and the error propagates with the original exception chained.
    """

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f"{path.name}.tmp-")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        tmp_path.chmod(mode)
        tmp_path.replace(path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload atomically using deterministic formatting."""

    path.parent.mkdir(parents=True, exist_ok=True)
    write_text_atomic(
        path,
        json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True) + "\n",
    )


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    try:
        payload = json.loads(path.read_text("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as error:
        raise CorruptFileError(path, f"invalid JSON ({error})") from error
    if not isinstance(payload, dict):
        raise CorruptFileError(path, "expected JSON object")
    return payload


def backup_corrupt_file(path: Path) -> Path | None:
    """Rename ``path`` aside as ``.corrupt`` (timestamped if that exists)."""

    if not path.exists():
        return None
    backup_path = path.with_name(path.name + CORRUPT_SUFFIX)
    if backup_path.exists():
        backup_path = path.with_name(f"{path.name}.{time.time_ns()}{CORRUPT_SUFFIX}")
    path.rename(backup_path)
    logger.warning("Backed up corrupt file %s to %s", path, backup_path)
    return backup_path


def load_json_or_reset(path: Path) -> dict[str, Any]:
    """Load a JSON object; a missing file is empty, a corrupt one is backed up and empty."""

    if not path.exists():
        return {}
    try:
        return load_json(path)
    except CorruptFileError as error:
        logger.warning("Resetting unreadable file: %s", error)
        backup_corrupt_file(path)
        return {}


def task_record_to_payload(record: TaskRecord) -> dict[str, Any]:
    return {
        "name": record.name,
        "window_token": record.window_token,
        "status": record.status.value,
        "created_at": record.created_at.isoformat(),
        "last_observed_at": (
            record.last_observed_at.isoformat() if record.last_observed_at is not None else None
        ),
        "worktree_path": record.worktree_path,
        "branch_name": record.branch_name,
        "base_branch": record.base_branch,
        "window_id": record.window_id,
    }


def task_record_from_payload(path: Path, raw: dict[str, Any]) -> TaskRecord:
    """Deserialize and validate one task record."""

    name = raw.get("name")
    token = raw.get("window_token")
    if not isinstance(name, str) or not name.strip():
        raise CorruptFileError(path, "task.name must be a non-empty string")
    if not isinstance(token, str):
        raise CorruptFileError(path, "task.window_token must be a string")
    try:
        status = TaskStatus(raw.get("status"))
    except ValueError as error:
        raise CorruptFileError(path, f"unknown task.status {raw.get('status')!r}") from error

    optional_str_fields = ("worktree_path", "branch_name", "base_branch", "window_id")
    optional_values: dict[str, str] = {}
    for field_name in optional_str_fields:
        field_value = raw.get(field_name, "")
        if field_value is None:
            field_value = ""
        if not isinstance(field_value, str):
            raise CorruptFileError(path, f"task.{field_name} must be a string")
        optional_values[field_name] = field_value

    try:
        created_at = datetime.fromisoformat(str(raw["created_at"]))
        last_observed_raw = raw.get("last_observed_at")
        last_observed_at = (
            datetime.fromisoformat(str(last_observed_raw)) if last_observed_raw else None
        )
    except (KeyError, ValueError) as error:
        raise CorruptFileError(path, "task timestamps are invalid") from error

    return TaskRecord(
        name=name,
        window_token=token,
        status=status,
        created_at=created_at,
        last_observed_at=last_observed_at,
        **optional_values,
    )
