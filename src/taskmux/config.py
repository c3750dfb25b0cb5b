"""Runtime configuration for task orchestration."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

WORK_MODE_WORKTREE = "worktree"
WORK_MODE_SHARED = "shared"
SUPPORTED_WORK_MODES = (WORK_MODE_WORKTREE, WORK_MODE_SHARED)

CONTROL_DIR_NAME = ".taskmux"
AGENTS_DIR_NAME = "agents"
WORKTREES_DIR_NAME = "worktrees"
WINDOW_MAP_FILE_NAME = "window-map.json"
MERGE_LOCK_NAME = "merge.lock"
LOG_FILE_NAME = "log"

_SESSION_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9_-]+")


@dataclass(slots=True)
class ClassifierSettings:
    """Marker tokens and bounds used by the pane status classifier."""

    done_marker: str = "TASKMUX_DONE"
    waiting_marker: str = "TASKMUX_WAITING"
    turn_marker: str = "⏺"
    done_marker_max_distance: int = 20
    prompt_hint_max_distance: int = 8
    prompt_options_window: int = 24
    capture_lines: int = 200


@dataclass(slots=True)
class SessionSettings:
    """tmux session settings."""

    window_name_limit: int = 12
    command_timeout_seconds: float = 10.0
    graceful_shutdown_seconds: float = 15.0
    shutdown_poll_interval_seconds: float = 0.5


@dataclass(slots=True)
class MergeSettings:
    """Merge lock and post-merge hook settings."""

    lock_max_retries: int = 30
    lock_retry_interval_seconds: float = 1.0
    post_merge_hook: str = ""
    hook_timeout_seconds: float = 300.0
    cleanup_after_merge: bool = True


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    project_dir: Path = field(default_factory=Path.cwd)
    control_dir_name: str = CONTROL_DIR_NAME
    work_mode: str = WORK_MODE_WORKTREE
    main_branch: str = "main"
    session_name: str = ""
    agent_command: str = "claude"
    debug: bool = False
    classifier: ClassifierSettings = field(default_factory=ClassifierSettings)
    session: SessionSettings = field(default_factory=SessionSettings)
    merge: MergeSettings = field(default_factory=MergeSettings)

    def __post_init__(self) -> None:
        # git and tmux get paths derived from this with a different cwd.
        self.project_dir = Path(self.project_dir).resolve()

    @property
    def control_dir(self) -> Path:
        return self.project_dir / self.control_dir_name

    @property
    def agents_dir(self) -> Path:
        return self.control_dir / AGENTS_DIR_NAME

    @property
    def worktrees_dir(self) -> Path:
        return self.control_dir / WORKTREES_DIR_NAME

    @property
    def window_map_path(self) -> Path:
        return self.control_dir / WINDOW_MAP_FILE_NAME

    @property
    def merge_lock_path(self) -> Path:
        return self.control_dir / MERGE_LOCK_NAME

    @property
    def log_path(self) -> Path:
        return self.control_dir / LOG_FILE_NAME

    @property
    def resolved_session_name(self) -> str:
        """Session name, derived from the project directory when not configured."""

        if self.session_name:
            return self.session_name
        return default_session_name(self.project_dir)

    @property
    def worktree_mode(self) -> bool:
        return self.work_mode == WORK_MODE_WORKTREE

    @classmethod
    def from_env(cls, project_dir: Path | None = None) -> Settings:
        """Load settings from environment with defaults suited to a local checkout."""

        env_project_dir = os.getenv("TASKMUX_PROJECT_DIR", "").strip()
        resolved_project_dir = project_dir or (
            Path(env_project_dir) if env_project_dir else Path.cwd()
        )
        return cls(
            project_dir=resolved_project_dir,
            control_dir_name=os.getenv("TASKMUX_CONTROL_DIR", CONTROL_DIR_NAME),
            work_mode=os.getenv("TASKMUX_WORK_MODE", WORK_MODE_WORKTREE).strip().lower(),
            main_branch=os.getenv("TASKMUX_MAIN_BRANCH", "main"),
            session_name=os.getenv("TASKMUX_SESSION_NAME", ""),
            agent_command=os.getenv("TASKMUX_AGENT_COMMAND", "claude"),
            debug=_env_bool("TASKMUX_DEBUG", default=False),
            classifier=ClassifierSettings(
                done_marker=os.getenv("TASKMUX_DONE_MARKER", "TASKMUX_DONE"),
                waiting_marker=os.getenv("TASKMUX_WAITING_MARKER", "TASKMUX_WAITING"),
                turn_marker=os.getenv("TASKMUX_TURN_MARKER", "⏺"),
                done_marker_max_distance=int(
                    os.getenv("TASKMUX_DONE_MARKER_MAX_DISTANCE", "20"),
                ),
                capture_lines=int(os.getenv("TASKMUX_CAPTURE_LINES", "200")),
            ),
            session=SessionSettings(
                window_name_limit=int(os.getenv("TASKMUX_WINDOW_NAME_LIMIT", "12")),
                command_timeout_seconds=float(
                    os.getenv("TASKMUX_COMMAND_TIMEOUT_SECONDS", "10.0"),
                ),
                graceful_shutdown_seconds=float(
                    os.getenv("TASKMUX_GRACEFUL_SHUTDOWN_SECONDS", "15.0"),
                ),
                shutdown_poll_interval_seconds=float(
                    os.getenv("TASKMUX_SHUTDOWN_POLL_INTERVAL_SECONDS", "0.5"),
                ),
            ),
            merge=MergeSettings(
                lock_max_retries=int(os.getenv("TASKMUX_MERGE_LOCK_MAX_RETRIES", "30")),
                lock_retry_interval_seconds=float(
                    os.getenv("TASKMUX_MERGE_LOCK_RETRY_INTERVAL_SECONDS", "1.0"),
                ),
                post_merge_hook=os.getenv("TASKMUX_POST_MERGE_HOOK", ""),
                hook_timeout_seconds=float(os.getenv("TASKMUX_HOOK_TIMEOUT_SECONDS", "300")),
                cleanup_after_merge=_env_bool("TASKMUX_CLEANUP_AFTER_MERGE", default=True),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the task engine cannot work with."""

        if self.work_mode not in SUPPORTED_WORK_MODES:
            raise ValueError(
                f"TASKMUX_WORK_MODE must be one of {', '.join(SUPPORTED_WORK_MODES)}; "
                f"got {self.work_mode!r}.",
            )
        if not self.control_dir_name.strip() or "/" in self.control_dir_name:
            raise ValueError("TASKMUX_CONTROL_DIR must be a plain directory name.")
        if not self.main_branch.strip():
            raise ValueError("TASKMUX_MAIN_BRANCH must not be empty.")
        if not self.classifier.done_marker.strip() or not self.classifier.waiting_marker.strip():
            raise ValueError("TASKMUX_DONE_MARKER and TASKMUX_WAITING_MARKER must not be empty.")
        if self.classifier.done_marker.strip() == self.classifier.waiting_marker.strip():
            raise ValueError("TASKMUX_DONE_MARKER and TASKMUX_WAITING_MARKER must differ.")
        if self.classifier.done_marker_max_distance < 0:
            raise ValueError("TASKMUX_DONE_MARKER_MAX_DISTANCE must be >= 0.")
        if self.classifier.capture_lines <= 0:
            raise ValueError("TASKMUX_CAPTURE_LINES must be > 0.")
        # "~" plus a 4-char id leaves at least one character for the name.
        if self.session.window_name_limit < 6:
            raise ValueError("TASKMUX_WINDOW_NAME_LIMIT must be >= 6.")
        if self.session.command_timeout_seconds <= 0:
            raise ValueError("TASKMUX_COMMAND_TIMEOUT_SECONDS must be > 0.")
        if self.session.graceful_shutdown_seconds < 0:
            raise ValueError("TASKMUX_GRACEFUL_SHUTDOWN_SECONDS must be >= 0.")
        if self.session.shutdown_poll_interval_seconds <= 0:
            raise ValueError("TASKMUX_SHUTDOWN_POLL_INTERVAL_SECONDS must be > 0.")
        if self.merge.lock_max_retries <= 0:
            raise ValueError("TASKMUX_MERGE_LOCK_MAX_RETRIES must be > 0.")
        if self.merge.lock_retry_interval_seconds < 0:
            raise ValueError("TASKMUX_MERGE_LOCK_RETRY_INTERVAL_SECONDS must be >= 0.")
        if self.merge.hook_timeout_seconds <= 0:
            raise ValueError("TASKMUX_HOOK_TIMEOUT_SECONDS must be > 0.")


def default_session_name(project_dir: Path) -> str:
    """Derive a tmux-safe session name from the project directory name."""

    raw = project_dir.resolve().name or "project"
    normalized = _SESSION_NAME_UNSAFE.sub("-", raw).strip("-")
    return normalized or "project"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
