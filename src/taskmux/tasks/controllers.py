"""Controllers for task CLI commands."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from taskmux.config import Settings
from taskmux.tasks.classifier import classify_pane
from taskmux.tasks.doctor import (
    apply_doctor_fixes,
    has_required_failures,
    render_checks,
    run_doctor_checks,
)
from taskmux.tasks.git import GitClient
from taskmux.tasks.manager import TaskManager
from taskmux.tasks.models import ACTIVE_STATUSES
from taskmux.tasks.session import SessionClient, TmuxClient, discover_sessions
from taskmux.tasks.shutdown import (
    OUTCOME_NOT_RUNNING,
    SessionMatchError,
    resolve_session_name,
    terminate_session,
)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

SessionFactory = Callable[[str, float], SessionClient]


@dataclass(slots=True)
class DoctorCommand:
    """CLI input for health checks."""

    project_dir: Path | None
    fix: bool


@dataclass(slots=True)
class KillCommand:
    """CLI input for session shutdown."""

    project_dir: Path | None
    session: str | None


@dataclass(slots=True)
class NewTaskCommand:
    """CLI input for task creation."""

    project_dir: Path | None
    name: str
    prompt: str
    agent_command: str | None


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    project_dir: Path | None


@dataclass(slots=True)
class ObserveCommand:
    """CLI input for pane observation; no name observes every active task."""

    project_dir: Path | None
    name: str | None


@dataclass(slots=True)
class HookStatusCommand:
    """CLI input for applying a stop-hook signal."""

    project_dir: Path | None
    name: str
    output: str


@dataclass(slots=True)
class MutateTaskCommand:
    """CLI input for merge/cancel operations."""

    project_dir: Path | None
    name: str


@dataclass(slots=True)
class ClassifyCommand:
    """CLI input for classifying captured pane text."""

    content: str


@dataclass(slots=True)
class CommandResult:
    """Lines to render plus overall success."""

    lines: list[str]
    success: bool


def tmux_session_factory(session_name: str, timeout_seconds: float) -> SessionClient:
    return TmuxClient(session_name, timeout_seconds=timeout_seconds)


def configure_file_logging(settings: Settings) -> None:
    """Attach one file handler for ``<control dir>/log`` to the package logger."""

    if not settings.control_dir.is_dir():
        return
    package_logger = logging.getLogger("taskmux")
    log_path = str(settings.log_path.resolve())
    for handler in package_logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == log_path:
            return
    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if settings.debug else logging.INFO)


class TaskCliController:
    """Coordinates task lifecycle, reconciliation and session CLI operations."""

    def __init__(
        self,
        *,
        session_factory: SessionFactory = tmux_session_factory,
        git: GitClient | None = None,
        socket_dir: Path | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.git = git or GitClient()
        self.socket_dir = socket_dir

    def doctor(self, command: DoctorCommand) -> CommandResult:
        manager = self._manager(self._settings(command.project_dir, validate=False))
        checks = run_doctor_checks(manager)
        lines = render_checks(checks)

        if command.fix:
            fixes = apply_doctor_fixes(checks)
            if fixes:
                lines += ["", "Fixes:", *render_checks(fixes)]
            checks = run_doctor_checks(manager)
            lines += ["", "Recheck:", *render_checks(checks)]

        return CommandResult(lines=lines, success=not has_required_failures(checks))

    def kill(self, command: KillCommand) -> CommandResult:
        settings = self._settings(command.project_dir)
        timeout = settings.session.command_timeout_seconds
        live = [
            name
            for name in discover_sessions(socket_dir=self.socket_dir)
            if self.session_factory(name, timeout).has_session(name)
        ]
        if not live:
            return CommandResult(lines=["No running taskmux sessions found."], success=True)

        if command.session:
            try:
                target = resolve_session_name(live, command.session)
            except SessionMatchError as error:
                return CommandResult(
                    lines=[str(error), *(f"  - {name}" for name in error.candidates)],
                    success=False,
                )
        elif settings.resolved_session_name in live:
            target = settings.resolved_session_name
        elif len(live) == 1:
            target = live[0]
        else:
            return CommandResult(
                lines=[
                    "Running taskmux sessions:",
                    *(f"  - {name}" for name in live),
                    "Specify the session to kill.",
                ],
                success=False,
            )

        client = self.session_factory(target, timeout)
        lines = [f"Killing session '{target}'..."]
        result = terminate_session(
            client,
            target,
            graceful_seconds=settings.session.graceful_shutdown_seconds,
            poll_interval_seconds=settings.session.shutdown_poll_interval_seconds,
        )
        if result.outcome == OUTCOME_NOT_RUNNING:
            lines.append(f"Session '{target}' is no longer running.")
            return CommandResult(lines=lines, success=True)
        lines.append(f"  Interrupted {result.interrupted_windows} window(s).")
        lines.append(f"Killed: {target} ({result.outcome})")
        return CommandResult(lines=lines, success=True)

    def new_task(self, command: NewTaskCommand) -> list[str]:
        settings = self._settings(command.project_dir)
        settings.agents_dir.mkdir(parents=True, exist_ok=True)
        configure_file_logging(settings)
        manager = self._manager(settings)
        record = manager.create_task(
            command.name,
            prompt=command.prompt,
            command=command.agent_command,
        )
        lines = [
            "Task created: "
            f"name={record.name} status={record.status.value} window={record.window_token}",
        ]
        if record.worktree_path:
            lines.append(f"worktree={record.worktree_path} branch={record.branch_name}")
        return lines

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        manager = self._manager(self._settings(command.project_dir), attach_session=False)
        tasks = manager.list_tasks()
        if not tasks:
            return ["No tasks."]
        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            observed = task.last_observed_at.isoformat() if task.last_observed_at else "-"
            line = f"{task.status.emoji} {task.name} status={task.status.value} observed={observed}"
            if task.branch_name:
                line += f" branch={task.branch_name}"
            lines.append(line)
        return lines

    def observe(self, command: ObserveCommand) -> list[str]:
        manager = self._manager(self._settings(command.project_dir))
        if command.name:
            names = [command.name]
        else:
            names = [task.name for task in manager.list_tasks() if task.status in ACTIVE_STATUSES]
        if not names:
            return ["No active tasks."]
        lines: list[str] = []
        for name in names:
            result = manager.observe_task(name)
            status = result.status.value if result.status is not None else "unchanged"
            lines.append(f"{name}: status={status} reason={result.reason} rule={result.matched_rule}")
        return lines

    def hook_status(self, command: HookStatusCommand) -> list[str]:
        manager = self._manager(self._settings(command.project_dir))
        status = manager.apply_hook_output(command.name, command.output)
        if status is None:
            return [f"{command.name}: hook output not recognized, status unchanged"]
        return [f"{command.name}: status={status.value}"]

    def merge(self, command: MutateTaskCommand) -> list[str]:
        manager = self._manager(self._settings(command.project_dir))
        result = manager.merge_task(command.name)
        subject = result.commit_message.splitlines()[0]
        lines = [
            f"Merged: {command.name} commits={result.commits}",
            f"message={subject}",
        ]
        lines += [f"warning: {warning}" for warning in result.warnings]
        return lines

    def cancel(self, command: MutateTaskCommand) -> list[str]:
        manager = self._manager(self._settings(command.project_dir))
        result = manager.cancel_task(command.name)
        lines = [
            f"Task canceled: {result.task_name} window_killed={'yes' if result.window_killed else 'no'}",
        ]
        lines += [f"warning: {warning}" for warning in result.warnings]
        return lines

    def classify(self, command: ClassifyCommand) -> list[str]:
        settings = Settings.from_env()
        result = classify_pane(command.content, settings=settings.classifier)
        status = result.status.value if result.status is not None else "none"
        line_index = result.line_index if result.line_index is not None else "-"
        return [
            f"status={status} reason={result.reason} rule={result.matched_rule} line={line_index}",
        ]

    def _settings(self, project_dir: Path | None, *, validate: bool = True) -> Settings:
        settings = Settings.from_env(project_dir=project_dir)
        if project_dir is None and self.git.is_git_repo(settings.project_dir):
            settings.project_dir = self.git.repo_root(settings.project_dir)
        if validate:
            settings.validate()
        configure_file_logging(settings)
        return settings

    def _manager(self, settings: Settings, *, attach_session: bool = True) -> TaskManager:
        session = (
            self.session_factory(
                settings.resolved_session_name,
                settings.session.command_timeout_seconds,
            )
            if attach_session
            else None
        )
        return TaskManager(settings=settings, session=session, git=self.git)
