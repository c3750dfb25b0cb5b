from __future__ import annotations

import json
import shutil
import socket
import subprocess

import allure

from taskmux.config import Settings
from taskmux.tasks.doctor import (
    DoctorCheck,
    apply_doctor_fixes,
    has_required_failures,
    render_check,
    run_doctor_checks,
)
from taskmux.tasks.locking import MergeLock
from taskmux.tasks.manager import TaskManager
from taskmux.tasks.models import EMOJI_WORKING, TaskStatus

from conftest import FakeSessionClient

pytestmark = [
    allure.epic("Operations"),
    allure.feature("Doctor"),
]


def _by_name(checks: list[DoctorCheck]) -> dict[str, DoctorCheck]:
    return {check.name: check for check in checks}


def test_missing_control_directory_is_required_failure(manager: TaskManager) -> None:
    checks = run_doctor_checks(manager)

    assert [check.name for check in checks] == ["control directory"]
    assert has_required_failures(checks)
    assert render_check(checks[0]) == "[ERR] control directory: missing (run taskmux new to initialize)"


def test_fix_initializes_control_directory(manager: TaskManager, settings: Settings) -> None:
    fixes = apply_doctor_fixes(run_doctor_checks(manager))

    assert [(fix.name, fix.ok, fix.message) for fix in fixes] == [("control directory fix", True, "applied")]
    assert settings.agents_dir.is_dir()
    recheck = run_doctor_checks(manager)
    assert not has_required_failures(recheck)
    assert all(check.ok for check in recheck)
    assert _by_name(recheck)["window map"].message == "not created yet"
    assert _by_name(recheck)["tmux session"].message == "orphaned=0 stopped=0 incomplete=0"


def test_invalid_config_is_required_failure(manager: TaskManager, settings: Settings) -> None:
    settings.agents_dir.mkdir(parents=True)
    settings.work_mode = "solo"

    checks = _by_name(run_doctor_checks(manager))

    assert not checks["config values"].ok
    assert checks["config values"].required
    assert "TASKMUX_WORK_MODE" in checks["config values"].message


def test_held_merge_lock_is_reported_and_released(manager: TaskManager, settings: Settings) -> None:
    settings.agents_dir.mkdir(parents=True)
    MergeLock(settings.merge_lock_path).try_acquire()

    checks = run_doctor_checks(manager)
    lock_check = _by_name(checks)["merge lock"]

    assert not lock_check.ok
    assert lock_check.message.startswith("held (pid=")
    assert render_check(lock_check).startswith("[WARN] merge lock: held")
    assert render_check(lock_check).endswith("(optional)")
    assert not has_required_failures(checks)
    apply_doctor_fixes(checks)
    assert not settings.merge_lock_path.exists()


def test_corrupt_window_map_is_backed_up(manager: TaskManager, settings: Settings) -> None:
    settings.agents_dir.mkdir(parents=True)
    settings.window_map_path.write_text("{oops", "utf-8")

    checks = run_doctor_checks(manager)

    assert _by_name(checks)["window map"].message.startswith("unreadable")
    apply_doctor_fixes(checks)
    assert not settings.window_map_path.exists()
    assert settings.window_map_path.with_name("window-map.json.corrupt").exists()


def test_session_findings_are_repaired(
    manager: TaskManager,
    fake_session: FakeSessionClient,
) -> None:
    crashed = manager.create_task("crashed")
    fake_session.pane_commands[crashed.window_id] = "zsh"
    ghost = fake_session.add_window(EMOJI_WORKING + "ghost~abcd")

    checks = run_doctor_checks(manager)
    session_check = _by_name(checks)["tmux session"]

    assert session_check.message == "orphaned=1 stopped=1 incomplete=0"
    assert render_check(session_check).startswith("[WARN]")
    fixes = apply_doctor_fixes(checks)
    assert ("tmux session fix", True) in {(fix.name, fix.ok) for fix in fixes}
    assert ghost.id not in fake_session.windows
    assert manager.get_task("crashed").status == TaskStatus.CORRUPTED
    assert _by_name(run_doctor_checks(manager))["tmux session"].message.startswith("orphaned=0 ")


def test_corrupted_worktree_is_reported(manager: TaskManager) -> None:
    broken = manager.create_task("broken")
    shutil.rmtree(broken.worktree_path)

    worktree_check = _by_name(run_doctor_checks(manager))["worktree health"]

    assert not worktree_check.ok
    assert worktree_check.message == "corrupted worktrees: 1"


def test_session_not_running_is_optional(manager: TaskManager, fake_session: FakeSessionClient) -> None:
    manager.settings.agents_dir.mkdir(parents=True)
    fake_session.sessions.clear()

    session_check = _by_name(run_doctor_checks(manager))["tmux session"]

    assert render_check(session_check) == "[WARN] tmux session: not running (optional)"


def test_lock_of_dead_process_is_reported_stale(manager: TaskManager, settings: Settings) -> None:
    settings.agents_dir.mkdir(parents=True)
    finished = subprocess.Popen(["true"])  # noqa: S607
    finished.wait()
    settings.merge_lock_path.mkdir()
    owner = {"pid": finished.pid, "host": socket.gethostname(), "acquired_at": "2026-01-01T00:00:00+00:00"}
    (settings.merge_lock_path / "owner.json").write_text(json.dumps(owner), "utf-8")

    checks = run_doctor_checks(manager)

    assert _by_name(checks)["merge lock"].message.startswith(f"stale, owner process gone (pid={finished.pid} ")
    apply_doctor_fixes(checks)
    assert not settings.merge_lock_path.exists()
