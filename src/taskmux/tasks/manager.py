"""Task lifecycle and reconciliation between the registry, window map and live session."""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from taskmux.config import Settings
from taskmux.tasks.classifier import (
    PaneClassification,
    classify_hook_output,
    classify_pane,
)
from taskmux.tasks.commit_message import generate_merge_commit_message
from taskmux.tasks.contracts import utc_now, write_text_atomic
from taskmux.tasks.git import GitClient, GitError
from taskmux.tasks.hooks import HookMetadata, run_hook
from taskmux.tasks.locking import MergeLock
from taskmux.tasks.models import (
    ACTIVE_STATUSES,
    NEW_WINDOW_NAME,
    CorruptedTask,
    IncompleteTask,
    OrphanedWindow,
    ReconciliationReport,
    StoppedTask,
    TaskRecord,
    TaskStatus,
    WindowInfo,
)
from taskmux.tasks.registry import TaskRegistry, validate_task_name
from taskmux.tasks.session.base import SessionClient, SessionError
from taskmux.tasks.window_map import WindowMap
from taskmux.tasks.window_token import (
    extract_task_name,
    matches_window_token,
    window_name,
)

logger = logging.getLogger(__name__)

PROMPT_FILE_NAME = "prompt.md"
POST_MERGE_HOOK_NAME = "post-merge"
AUTO_COMMIT_MESSAGE = "chore: auto-commit before merge\n\nTask: {name}"

SHELL_COMMANDS = frozenset(
    {"sh", "bash", "zsh", "fish", "dash", "ksh", "tcsh", "csh", "nu", "login"},
)


class TaskNotFoundError(LookupError):
    """No registry entry for the requested task."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Task not found: {name}")
        self.name = name


class TaskExistsError(ValueError):
    """Registry already has a task with this name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Task already exists: {name}")
        self.name = name


@dataclass(slots=True)
class MergeResult:
    """Outcome of a task merge; non-fatal problems are listed in ``warnings``."""

    task: TaskRecord
    commit_message: str
    commits: int
    hook: HookMetadata | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CancelResult:
    """Outcome of a task cancellation."""

    task_name: str
    window_killed: bool
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class RepairAction:
    """One corrective action applied by ``TaskManager.repair``."""

    target: str
    action: str
    ok: bool
    message: str


def is_shell_command(command: str) -> bool:
    name = os.path.basename(command.strip()).lstrip("-")
    return name in SHELL_COMMANDS


class TaskManager:
    """Reconciles on-disk task records with the live tmux session.

    The ``find_*`` queries are read-only and idempotent; corrective changes
    happen only through ``repair`` and the explicit lifecycle operations.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: Settings,
        session: SessionClient | None = None,
        git: GitClient | None = None,
        is_git_repo: bool | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.session = session
        self.git = git or GitClient()
        self.is_git_repo = (
            is_git_repo if is_git_repo is not None else self.git.is_git_repo(settings.project_dir)
        )
        self.registry = TaskRegistry(
            settings.agents_dir,
            window_name_limit=settings.session.window_name_limit,
        )
        self.window_map = WindowMap(
            settings.window_map_path,
            limit=settings.session.window_name_limit,
        )
        self._clock = clock
        self._sleep = sleep

    @property
    def project_dir(self) -> Path:
        return self.settings.project_dir

    @property
    def window_name_limit(self) -> int:
        return self.settings.session.window_name_limit

    # -- queries -----------------------------------------------------------------

    def list_tasks(self) -> list[TaskRecord]:
        return self.registry.list_tasks()

    def get_task(self, name: str) -> TaskRecord:
        record = self.registry.get(name)
        if record is None:
            raise TaskNotFoundError(name)
        return record

    def find_orphaned_windows(self) -> list[OrphanedWindow]:
        """Task windows whose record is missing or whose worktree/branch is gone."""

        session = self._require_session()
        windows = session.list_windows()
        tasks = self._tasks_by_name()
        token_map = self.window_map.load()

        orphaned: list[OrphanedWindow] = []
        for window in windows:
            token = extract_task_name(window.name)
            if token is None:
                continue
            task_name = self._resolve_task_name(window, token, tasks, token_map)
            if task_name is None or task_name not in tasks:
                orphaned.append(
                    OrphanedWindow(
                        window=window,
                        token=token,
                        task_name=task_name,
                        reason="task record missing",
                    ),
                )
                continue
            problem = self._worktree_problem(tasks[task_name])
            if problem is not None:
                orphaned.append(
                    OrphanedWindow(window=window, token=token, task_name=task_name, reason=problem),
                )
        return orphaned

    def find_stopped_tasks(self) -> list[StoppedTask]:
        """Tasks whose window is alive but whose pane has fallen back to a shell."""

        session = self._require_session()
        windows = session.list_windows()
        tasks = self._tasks_by_name()
        bindings = self._bind_windows(windows, tasks, self.window_map.load())

        stopped: list[StoppedTask] = []
        for name, task in tasks.items():
            window = bindings.get(name)
            if window is None:
                continue
            try:
                command = session.pane_current_command(window.id)
            except SessionError as error:
                logger.debug("Pane of %s vanished during check: %s", name, error)
                continue
            if is_shell_command(command):
                stopped.append(StoppedTask(task=task, window=window, pane_command=command))
        return stopped

    def find_incomplete_tasks(self, session_name: str) -> list[IncompleteTask]:
        """Active tasks with no window bound in ``session_name``."""

        session = self._require_session()
        if session_name != session.session_name:
            raise ValueError(
                f"Session client is bound to {session.session_name!r}, not {session_name!r}.",
            )
        running = session.has_session(session_name)
        windows = session.list_windows() if running else []
        tasks = self._tasks_by_name()
        bindings = self._bind_windows(windows, tasks, self.window_map.load())

        return [
            IncompleteTask(task=task, session_name=session_name, session_running=running)
            for name, task in tasks.items()
            if task.status in ACTIVE_STATUSES and name not in bindings
        ]

    def find_corrupted_tasks(self) -> list[CorruptedTask]:
        """Worktree-mode invariant violations.

        Returns an empty list when the project is not in worktree mode or is
        not a git repository, since the invariants do not apply there.
        """

        if not self.settings.worktree_mode or not self.is_git_repo:
            return []

        tasks = self.registry.list_tasks()
        corrupted: list[CorruptedTask] = []
        registered_paths: set[Path] = set()
        for task in tasks:
            if not task.worktree_path:
                continue
            path = Path(task.worktree_path)
            registered_paths.add(path.resolve())
            reasons = self._worktree_reasons(task, path)
            if reasons:
                corrupted.append(
                    CorruptedTask(
                        task_name=task.name,
                        worktree_path=task.worktree_path,
                        branch_name=task.branch_name,
                        reasons=tuple(reasons),
                    ),
                )

        managed_root = self.settings.worktrees_dir.resolve()
        for worktree in self.git.list_worktrees(self.project_dir):
            path = Path(worktree.path).resolve()
            if not path.is_relative_to(managed_root) or path in registered_paths:
                continue
            corrupted.append(
                CorruptedTask(
                    task_name=path.name,
                    worktree_path=str(path),
                    branch_name=worktree.branch,
                    reasons=("registry entry missing",),
                    registered=False,
                ),
            )
        return corrupted

    def reconcile(self, session_name: str | None = None) -> ReconciliationReport:
        """Run every reconciliation query once."""

        session = self._require_session()
        effective_session = session_name or session.session_name
        report = ReconciliationReport(corrupted=self.find_corrupted_tasks())
        if not session.has_session(effective_session):
            report.incomplete = self.find_incomplete_tasks(effective_session)
            return report
        report.orphaned = self.find_orphaned_windows()
        report.stopped = self.find_stopped_tasks()
        report.incomplete = self.find_incomplete_tasks(effective_session)
        return report

    # -- lifecycle ---------------------------------------------------------------

    def create_task(self, name: str, *, prompt: str = "", command: str | None = None) -> TaskRecord:
        """Create worktree, branch, window and record for a new task.

        A failing worktree/branch step leaves no window and no record; a
        failing window or record step rolls the worktree back.
        """

        name = validate_task_name(name)
        if self.registry.exists(name):
            raise TaskExistsError(name)
        if self.settings.worktree_mode and not self.is_git_repo:
            raise ValueError("Worktree mode requires a git repository; set TASKMUX_WORK_MODE=shared.")
        session = self._require_session()
        if not session.has_session(session.session_name):
            session.new_session(
                session.session_name,
                cwd=str(self.project_dir),
                window_name=NEW_WINDOW_NAME,
            )
            # Agents must not overwrite the status glyph via terminal title escapes.
            session.set_option("allow-rename", "off", global_=True)
        token = self.window_map.update(name)

        worktree_path: Path | None = None
        branch_name = ""
        base_branch = ""
        if self.settings.worktree_mode:
            branch_name = name
            base_branch = self.settings.main_branch
            worktree_path = self.settings.worktrees_dir / name
            self.git.add_worktree(
                self.project_dir,
                path=worktree_path,
                branch=branch_name,
                base=base_branch,
            )

        work_dir = worktree_path or self.project_dir
        try:
            window_id = session.new_window(
                name=window_name(TaskStatus.PENDING, name, limit=self.window_name_limit),
                cwd=str(work_dir),
                command=command if command is not None else self.settings.agent_command,
            )
        except SessionError:
            self._rollback_worktree(worktree_path, branch_name)
            raise

        record = TaskRecord(
            name=name,
            window_token=token,
            status=TaskStatus.PENDING,
            created_at=self._clock(),
            worktree_path=str(worktree_path) if worktree_path is not None else "",
            branch_name=branch_name,
            base_branch=base_branch,
            window_id=window_id,
        )
        try:
            self.registry.save(record)
            if prompt:
                write_text_atomic(self.registry.task_dir(name) / PROMPT_FILE_NAME, prompt)
        except OSError:
            self._kill_window_quietly(window_id)
            self.registry.delete(name)
            self._rollback_worktree(worktree_path, branch_name)
            raise

        logger.info("Task created name=%s window=%s worktree=%s", name, window_id, work_dir)
        return record

    def apply_status(self, name: str, status: TaskStatus) -> TaskRecord:
        """Persist a status observation and re-glyph the window when it changes."""

        record = self.get_task(name)
        previous = record.status
        record.status = status
        record.last_observed_at = self._clock()
        self.registry.save(record)
        if previous != status:
            logger.info("Task status name=%s %s -> %s", name, previous.value, status.value)
            self._rename_window(record)
        return record

    def observe_task(self, name: str) -> PaneClassification:
        """Capture the task pane, classify it and apply any verdict."""

        record = self.get_task(name)
        session = self._require_session()
        window = self._window_for(record)
        if window is None:
            return PaneClassification(status=None, reason="no_window", matched_rule="window_missing")

        content = session.capture_pane(window.id, lines=self.settings.classifier.capture_lines)
        result = classify_pane(content, settings=self.settings.classifier)
        if result.status is not None:
            self.apply_status(name, result.status)
        else:
            record.last_observed_at = self._clock()
            self.registry.save(record)
        logger.debug("Observed name=%s details=%s", name, result.to_event_details())
        return result

    def apply_hook_output(self, name: str, output: str) -> TaskStatus | None:
        """Apply a stop-hook signal; unrecognized output changes nothing."""

        status = classify_hook_output(output)
        if status is None:
            logger.debug("Hook output for %s not recognized: %r", name, output[:80])
            return None
        self.apply_status(name, status)
        return status

    def merge_task(self, name: str) -> MergeResult:
        """Merge the task branch into the main branch under the project merge lock.

        Raises ``MergeLockBusyError`` when the lock cannot be acquired and
        ``GitError`` when the merge fails (the merge is aborted first).
        """

        record = self.get_task(name)
        if not (self.is_git_repo and record.branch_name):
            raise ValueError(f"Task {name} has no branch to merge.")

        lock = MergeLock(
            self.settings.merge_lock_path,
            max_retries=self.settings.merge.lock_max_retries,
            retry_interval_seconds=self.settings.merge.lock_retry_interval_seconds,
            sleep=self._sleep,
        )
        with lock:
            result = self._merge_locked(record)
        self._rename_window(result.task)
        return result

    def cancel_task(self, name: str) -> CancelResult:
        """Kill the window, drop the worktree and branch, and delete the record."""

        record = self.get_task(name)
        result = CancelResult(task_name=name, window_killed=False)

        if self.session is not None:
            try:
                window = self._window_for(record)
                if window is not None:
                    self.session.kill_window(window.id)
                    result.window_killed = True
            except SessionError as error:
                result.warnings.append(f"window not killed: {error}")

        if record.worktree_path and self.is_git_repo:
            result.warnings.extend(self._remove_worktree_and_branch(record))

        self.registry.delete(name)
        logger.info("Task canceled name=%s warnings=%d", name, len(result.warnings))
        return result

    def repair(self, report: ReconciliationReport) -> list[RepairAction]:
        """Apply corrective actions for reconciliation findings."""

        actions: list[RepairAction] = []
        for orphan in report.orphaned:
            actions.append(self._repair_orphan(orphan))
        for stopped in report.stopped:
            if stopped.exited_after_done:
                continue
            actions.append(self._mark_corrupted(stopped.task.name, "agent process exited"))
        for incomplete in report.incomplete:
            actions.append(self._mark_corrupted(incomplete.task.name, "window missing"))
        for corrupted in report.corrupted:
            if not corrupted.registered:
                actions.append(
                    RepairAction(
                        target=corrupted.worktree_path,
                        action="skip",
                        ok=False,
                        message="no registry entry; remove manually with git worktree remove",
                    ),
                )
                continue
            actions.append(self._mark_corrupted(corrupted.task_name, ", ".join(corrupted.reasons)))
        return actions

    # -- internals ---------------------------------------------------------------

    def _merge_locked(self, record: TaskRecord) -> MergeResult:
        current = self.git.current_branch(self.project_dir)
        if current != self.settings.main_branch:
            raise GitError(
                f"{self.project_dir} has {current!r} checked out; "
                f"expected {self.settings.main_branch!r} for merging.",
            )

        worktree = Path(record.worktree_path) if record.worktree_path else None
        if worktree is not None and worktree.is_dir() and self.git.has_changes(worktree):
            self.git.commit_all(worktree, AUTO_COMMIT_MESSAGE.format(name=record.name))

        commits = self.git.branch_commits(
            self.project_dir,
            base=self.settings.main_branch,
            branch=record.branch_name,
        )
        message = generate_merge_commit_message(record.name, commits)
        try:
            self.git.merge(self.project_dir, branch=record.branch_name, message=message)
        except GitError:
            try:
                self.git.merge_abort(self.project_dir)
            except GitError as abort_error:
                logger.warning("Merge abort failed for %s: %s", record.name, abort_error)
            raise

        result = MergeResult(task=record, commit_message=message, commits=len(commits))
        logger.info("Merged task=%s branch=%s commits=%d", record.name, record.branch_name, len(commits))

        if self.settings.merge.post_merge_hook:
            result.hook = self._run_post_merge_hook(record)
            if not result.hook.ok:
                result.warnings.append(
                    f"post-merge hook {result.hook.status} (exit {result.hook.exit_code})",
                )

        record.status = TaskStatus.DONE
        record.last_observed_at = self._clock()
        if self.settings.merge.cleanup_after_merge and record.worktree_path:
            result.warnings.extend(self._remove_worktree_and_branch(record))
        try:
            self.registry.save(record)
        except OSError as error:
            result.warnings.append(f"task record not updated: {error}")
        return result

    def _run_post_merge_hook(self, record: TaskRecord) -> HookMetadata:
        env = {
            **os.environ,
            "TASKMUX_TASK_NAME": record.name,
            "TASKMUX_BRANCH": record.branch_name,
            "TASKMUX_PROJECT_DIR": str(self.project_dir),
        }
        hooks_dir = self.registry.hooks_dir(record.name)
        return run_hook(
            POST_MERGE_HOOK_NAME,
            self.settings.merge.post_merge_hook,
            work_dir=self.project_dir,
            env=env,
            timeout_seconds=self.settings.merge.hook_timeout_seconds,
            output_path=hooks_dir / f"{POST_MERGE_HOOK_NAME}.log",
            meta_path=hooks_dir / f"{POST_MERGE_HOOK_NAME}.json",
        )

    def _remove_worktree_and_branch(self, record: TaskRecord) -> list[str]:
        warnings: list[str] = []
        worktree = Path(record.worktree_path)
        if worktree.exists():
            try:
                self.git.remove_worktree(self.project_dir, worktree)
            except GitError as error:
                warnings.append(f"worktree not removed: {error}")
            else:
                record.worktree_path = ""
        else:
            try:
                self.git.prune_worktrees(self.project_dir)
            except GitError as error:
                warnings.append(f"worktree prune failed: {error}")
            record.worktree_path = ""
        if record.branch_name and self.git.branch_exists(self.project_dir, record.branch_name):
            try:
                self.git.delete_branch(self.project_dir, record.branch_name)
            except GitError as error:
                warnings.append(f"branch not deleted: {error}")
        return warnings

    def _rollback_worktree(self, worktree_path: Path | None, branch_name: str) -> None:
        if worktree_path is None:
            return
        try:
            self.git.remove_worktree(self.project_dir, worktree_path)
        except GitError as error:
            logger.warning("Rollback: worktree %s not removed: %s", worktree_path, error)
        if branch_name:
            try:
                self.git.delete_branch(self.project_dir, branch_name)
            except GitError as error:
                logger.warning("Rollback: branch %s not deleted: %s", branch_name, error)

    def _kill_window_quietly(self, window_id: str) -> None:
        if self.session is None:
            return
        try:
            self.session.kill_window(window_id)
        except SessionError as error:
            logger.warning("Rollback: window %s not killed: %s", window_id, error)

    def _repair_orphan(self, orphan: OrphanedWindow) -> RepairAction:
        session = self._require_session()
        try:
            session.kill_window(orphan.window.id)
        except SessionError as error:
            return RepairAction(
                target=orphan.window.name,
                action="kill_window",
                ok=False,
                message=str(error),
            )
        return RepairAction(
            target=orphan.window.name,
            action="kill_window",
            ok=True,
            message=orphan.reason,
        )

    def _mark_corrupted(self, name: str, reason: str) -> RepairAction:
        try:
            self.apply_status(name, TaskStatus.CORRUPTED)
        except (TaskNotFoundError, OSError) as error:
            return RepairAction(target=name, action="mark_corrupted", ok=False, message=str(error))
        return RepairAction(target=name, action="mark_corrupted", ok=True, message=reason)

    def _rename_window(self, record: TaskRecord) -> None:
        if self.session is None:
            return
        try:
            window = self._window_for(record)
            if window is None:
                return
            self.session.rename_window(
                window.id,
                window_name(record.status, record.name, limit=self.window_name_limit),
            )
        except SessionError as error:
            logger.warning("Window rename for %s failed: %s", record.name, error)

    def _window_for(self, record: TaskRecord) -> WindowInfo | None:
        session = self._require_session()
        windows = session.list_windows()
        bindings = self._bind_windows(
            windows,
            {record.name: record},
            self.window_map.load(),
        )
        return bindings.get(record.name)

    def _tasks_by_name(self) -> dict[str, TaskRecord]:
        return {task.name: task for task in self.registry.list_tasks()}

    def _bind_windows(
        self,
        windows: list[WindowInfo],
        tasks: dict[str, TaskRecord],
        token_map: dict[str, str],
    ) -> dict[str, WindowInfo]:
        bindings: dict[str, WindowInfo] = {}
        for window in windows:
            token = extract_task_name(window.name)
            if token is None:
                continue
            name = self._resolve_task_name(window, token, tasks, token_map)
            if name is not None and name in tasks and name not in bindings:
                bindings[name] = window
        return bindings

    def _resolve_task_name(
        self,
        window: WindowInfo,
        token: str,
        tasks: dict[str, TaskRecord],
        token_map: dict[str, str],
    ) -> str | None:
        mapped = token_map.get(token)
        if mapped is not None:
            return mapped
        for name in tasks:
            if matches_window_token(token, name, limit=self.window_name_limit):
                return name
        for name, task in tasks.items():
            if task.window_id and task.window_id == window.id:
                return name
        return None

    def _worktree_problem(self, task: TaskRecord) -> str | None:
        if not task.worktree_path:
            return None
        if not Path(task.worktree_path).is_dir():
            return "worktree missing"
        if (
            self.is_git_repo
            and task.branch_name
            and not self.git.branch_exists(self.project_dir, task.branch_name)
        ):
            return "branch missing"
        return None

    def _worktree_reasons(self, task: TaskRecord, path: Path) -> list[str]:
        reasons: list[str] = []
        exists = path.is_dir()
        if not exists:
            reasons.append("worktree directory missing")
        if task.branch_name and not self.git.branch_exists(self.project_dir, task.branch_name):
            reasons.append("branch missing")
        elif exists and task.branch_name:
            try:
                current = self.git.current_branch(path)
            except GitError:
                reasons.append("worktree is not a git checkout")
            else:
                if current != task.branch_name:
                    reasons.append(f"worktree has {current!r} checked out, expected {task.branch_name!r}")
        return reasons

    def _require_session(self) -> SessionClient:
        if self.session is None:
            raise SessionError("No session client attached.", transient=False)
        return self.session
