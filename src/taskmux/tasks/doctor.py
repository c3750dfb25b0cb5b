"""Project and session health checks with optional safe fixes."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from taskmux.tasks.contracts import CorruptFileError, backup_corrupt_file, load_json
from taskmux.tasks.git import GitError
from taskmux.tasks.locking import force_release, is_stale_owner, read_lock_owner
from taskmux.tasks.manager import TaskManager
from taskmux.tasks.models import ReconciliationReport
from taskmux.tasks.session.base import SessionError

logger = logging.getLogger(__name__)

FIX_APPLIED = "applied"


@dataclass(slots=True)
class DoctorCheck:
    """One health check result; ``fix`` is offered only for failed checks."""

    name: str
    ok: bool
    message: str
    required: bool = False
    fix: Callable[[], object] | None = None


def run_doctor_checks(manager: TaskManager) -> list[DoctorCheck]:
    settings = manager.settings
    control_exists = settings.control_dir.is_dir()
    checks = [
        DoctorCheck(
            name="control directory",
            ok=control_exists,
            required=True,
            message=str(settings.control_dir) if control_exists else "missing (run taskmux new to initialize)",
            fix=lambda: _initialize_control_dir(manager),
        ),
    ]
    if not control_exists:
        return checks

    agents_exists = settings.agents_dir.is_dir()
    checks.append(
        DoctorCheck(
            name="agents directory",
            ok=agents_exists,
            message=str(settings.agents_dir) if agents_exists else "missing",
            fix=lambda: settings.agents_dir.mkdir(parents=True, exist_ok=True),
        ),
    )
    checks.append(_config_check(manager))
    checks.append(_window_map_check(manager))
    checks.append(_merge_lock_check(manager))
    checks.extend(_worktree_checks(manager))
    checks.extend(_session_checks(manager))
    return checks


def apply_doctor_fixes(checks: list[DoctorCheck]) -> list[DoctorCheck]:
    """Run the fix of every failed check; each attempt becomes a check result."""

    fixes: list[DoctorCheck] = []
    for check in checks:
        if check.ok or check.fix is None:
            continue
        try:
            check.fix()
        except (OSError, ValueError, SessionError, GitError) as error:
            logger.warning("Doctor fix failed check=%s error=%s", check.name, error)
            fixes.append(DoctorCheck(name=f"{check.name} fix", ok=False, message=str(error)))
        else:
            fixes.append(DoctorCheck(name=f"{check.name} fix", ok=True, message=FIX_APPLIED))
    return fixes


def has_required_failures(checks: list[DoctorCheck]) -> bool:
    return any(check.required and not check.ok for check in checks)


def render_check(check: DoctorCheck) -> str:
    if check.ok:
        icon = "[OK]"
    elif check.required:
        icon = "[ERR]"
    else:
        icon = "[WARN]"
    suffix = " (optional)" if not check.required and not check.ok else ""
    return f"{icon} {check.name}: {check.message}{suffix}"


def render_checks(checks: list[DoctorCheck]) -> list[str]:
    return [render_check(check) for check in checks]


def _initialize_control_dir(manager: TaskManager) -> None:
    manager.settings.control_dir.mkdir(parents=True, exist_ok=True)
    manager.settings.agents_dir.mkdir(parents=True, exist_ok=True)


def _config_check(manager: TaskManager) -> DoctorCheck:
    try:
        manager.settings.validate()
    except ValueError as error:
        return DoctorCheck(name="config values", ok=False, required=True, message=str(error))
    return DoctorCheck(name="config values", ok=True, required=True, message="ok")


def _window_map_check(manager: TaskManager) -> DoctorCheck:
    path = manager.settings.window_map_path
    if not path.exists():
        return DoctorCheck(name="window map", ok=True, message="not created yet")
    try:
        entries = load_json(path)
    except CorruptFileError as error:
        return DoctorCheck(
            name="window map",
            ok=False,
            message=f"unreadable: {error}",
            fix=lambda: backup_corrupt_file(path),
        )
    return DoctorCheck(name="window map", ok=True, message=f"{len(entries)} entries")


def _merge_lock_check(manager: TaskManager) -> DoctorCheck:
    path = manager.settings.merge_lock_path
    if not path.exists():
        return DoctorCheck(name="merge lock", ok=True, message="free")
    owner = read_lock_owner(path) or {}
    holder = " ".join(f"{key}={owner[key]}" for key in ("pid", "host", "acquired_at") if key in owner)
    state = "stale, owner process gone" if is_stale_owner(owner) else "held"
    return DoctorCheck(
        name="merge lock",
        ok=False,
        message=f"{state} ({holder or 'owner unknown'})",
        fix=lambda: force_release(path),
    )


def _worktree_checks(manager: TaskManager) -> list[DoctorCheck]:
    if not manager.settings.worktree_mode or not manager.is_git_repo:
        return []
    try:
        corrupted = manager.find_corrupted_tasks()
    except GitError as error:
        return [DoctorCheck(name="worktree health", ok=False, message=f"error: {error}")]
    if not corrupted:
        return [DoctorCheck(name="worktree health", ok=True, message="ok")]
    return [
        DoctorCheck(
            name="worktree health",
            ok=False,
            message=f"corrupted worktrees: {len(corrupted)}",
            fix=lambda: manager.repair(ReconciliationReport(corrupted=corrupted)),
        ),
    ]


def _session_checks(manager: TaskManager) -> list[DoctorCheck]:
    session = manager.session
    if session is None:
        return []
    session_name = session.session_name
    try:
        running = session.has_session(session_name)
    except SessionError as error:
        logger.debug("Session checks skipped: %s", error)
        return []
    if not running:
        return [DoctorCheck(name="tmux session", ok=False, message="not running")]

    try:
        report = ReconciliationReport(
            orphaned=manager.find_orphaned_windows(),
            stopped=manager.find_stopped_tasks(),
            incomplete=manager.find_incomplete_tasks(session_name),
        )
    except SessionError as error:
        return [DoctorCheck(name="tmux session", ok=False, message=f"session check failed: {error}")]

    message = (
        f"orphaned={len(report.orphaned)} stopped={len(report.stopped)} "
        f"incomplete={len(report.incomplete)}"
    )
    return [
        DoctorCheck(
            name="tmux session",
            ok=report.clean,
            message=message,
            fix=None if report.clean else lambda: manager.repair(report),
        ),
    ]
