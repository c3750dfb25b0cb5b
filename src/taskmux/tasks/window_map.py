"""Persisted window-token to task-name map."""

from __future__ import annotations

import logging
from pathlib import Path

from taskmux.tasks.contracts import load_json_or_reset, write_json
from taskmux.tasks.window_token import DEFAULT_WINDOW_NAME_LIMIT, window_token

logger = logging.getLogger(__name__)


class WindowMap:
    """Reverse lookup for window tokens, whose base part may be truncated.

    Entries are added or overwritten, never removed.
    """

    def __init__(self, path: Path, *, limit: int = DEFAULT_WINDOW_NAME_LIMIT) -> None:
        self.path = path
        self.limit = limit

    def load(self) -> dict[str, str]:
        raw = load_json_or_reset(self.path)
        mapping: dict[str, str] = {}
        for token, task_name in raw.items():
            if isinstance(task_name, str):
                mapping[token] = task_name
            else:
                logger.warning("Ignoring non-string window map entry %r in %s", token, self.path)
        return mapping

    def update(self, task_name: str) -> str:
        """Record the token for ``task_name`` and return it."""

        token = window_token(task_name, limit=self.limit)
        mapping = self.load()
        if mapping.get(token) == task_name:
            return token
        mapping[token] = task_name
        write_json(self.path, dict(mapping))
        logger.debug("Window map: %s -> %s", token, task_name)
        return token

    def lookup(self, token: str) -> str | None:
        return self.load().get(token)
