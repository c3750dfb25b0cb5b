"""Domain models for task lifecycle and reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

EMOJI_WORKING = "🤖"
EMOJI_WAITING = "💬"
EMOJI_DONE = "✅"
EMOJI_WARNING = "⚠️"
EMOJI_NEW = "⭐️"

# Order matters for prefix stripping: every glyph a task window may carry.
TASK_EMOJIS: tuple[str, ...] = (EMOJI_WORKING, EMOJI_WAITING, EMOJI_DONE, EMOJI_WARNING)

NEW_WINDOW_NAME = EMOJI_NEW + "main"


class TaskStatus(str, Enum):
    """Observable task lifecycle states."""

    PENDING = "pending"
    WORKING = "working"
    WAITING = "waiting"
    DONE = "done"
    CORRUPTED = "corrupted"

    @property
    def emoji(self) -> str:
        return _STATUS_EMOJI[self]


_STATUS_EMOJI: dict[TaskStatus, str] = {
    TaskStatus.PENDING: EMOJI_WORKING,
    TaskStatus.WORKING: EMOJI_WORKING,
    TaskStatus.WAITING: EMOJI_WAITING,
    TaskStatus.DONE: EMOJI_DONE,
    TaskStatus.CORRUPTED: EMOJI_WARNING,
}

ACTIVE_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.WORKING, TaskStatus.WAITING})


@dataclass(slots=True)
class TaskRecord:
    """Persisted task state; the registry copy is the source of truth."""

    name: str
    window_token: str
    status: TaskStatus
    created_at: datetime
    last_observed_at: datetime | None = None
    worktree_path: str = ""
    branch_name: str = ""
    base_branch: str = ""
    window_id: str = ""


@dataclass(slots=True, frozen=True)
class WindowInfo:
    """One live tmux window."""

    id: str
    name: str


@dataclass(slots=True, frozen=True)
class OrphanedWindow:
    """Live task window without a healthy task behind it."""

    window: WindowInfo
    token: str
    task_name: str | None
    reason: str


@dataclass(slots=True, frozen=True)
class StoppedTask:
    """Task whose window survives but whose agent process is gone."""

    task: TaskRecord
    window: WindowInfo
    pane_command: str

    @property
    def exited_after_done(self) -> bool:
        return self.task.status == TaskStatus.DONE

    @property
    def kind(self) -> str:
        return "exited_after_done" if self.exited_after_done else "crashed"


@dataclass(slots=True, frozen=True)
class IncompleteTask:
    """Active task with no window bound in the session."""

    task: TaskRecord
    session_name: str
    session_running: bool


@dataclass(slots=True, frozen=True)
class CorruptedTask:
    """Task (or managed worktree) that violates worktree-mode invariants."""

    task_name: str
    worktree_path: str
    branch_name: str
    reasons: tuple[str, ...]
    registered: bool = True


@dataclass(slots=True)
class ReconciliationReport:
    """All reconciliation findings gathered in one pass."""

    orphaned: list[OrphanedWindow] = field(default_factory=list)
    stopped: list[StoppedTask] = field(default_factory=list)
    incomplete: list[IncompleteTask] = field(default_factory=list)
    corrupted: list[CorruptedTask] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not (self.orphaned or self.stopped or self.incomplete or self.corrupted)
