"""Window naming rules: status glyph prefix plus a stable, length-bounded token."""

from __future__ import annotations

import hashlib

from taskmux.tasks.models import TASK_EMOJIS, TaskStatus

WINDOW_TOKEN_SEP = "~"
WINDOW_ID_LEN = 4
DEFAULT_WINDOW_NAME_LIMIT = 12


def short_task_id(name: str) -> str:
    """Stable short id: leading hex digits of the SHA-1 of the full task name."""

    return hashlib.sha1(name.encode("utf-8")).hexdigest()[:WINDOW_ID_LEN]  # noqa: S324


def window_token(name: str, *, limit: int = DEFAULT_WINDOW_NAME_LIMIT) -> str:
    """Build ``base~id`` with ``len(token) <= limit``; the base may be truncated."""

    suffix = WINDOW_TOKEN_SEP + short_task_id(name)
    max_base = max(1, limit - len(suffix))
    return name[:max_base] + suffix


def legacy_window_token(name: str, *, limit: int = DEFAULT_WINDOW_NAME_LIMIT) -> str:
    """Suffix-less truncation used by windows opened before tokens carried an id."""

    return name[:limit]


def window_name(status: TaskStatus, name: str, *, limit: int = DEFAULT_WINDOW_NAME_LIMIT) -> str:
    return status.emoji + window_token(name, limit=limit)


def is_task_window(window_name_value: str) -> bool:
    return any(window_name_value.startswith(emoji) for emoji in TASK_EMOJIS)


def extract_task_name(window_name_value: str) -> str | None:
    """Strip a task status glyph; ``None`` when the window is not a task window."""

    for emoji in TASK_EMOJIS:
        if window_name_value.startswith(emoji):
            return window_name_value[len(emoji) :]
    return None


def matches_window_token(
    extracted: str,
    task_name: str,
    *,
    limit: int = DEFAULT_WINDOW_NAME_LIMIT,
) -> bool:
    return extracted in (
        window_token(task_name, limit=limit),
        legacy_window_token(task_name, limit=limit),
    )
