"""CLI entrypoint for taskmux."""

from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from taskmux import __version__
from taskmux.tasks.controllers import (
    ClassifyCommand,
    DoctorCommand,
    HookStatusCommand,
    KillCommand,
    ListTasksCommand,
    MutateTaskCommand,
    NewTaskCommand,
    ObserveCommand,
    TaskCliController,
)
from taskmux.tasks.git import GitError
from taskmux.tasks.locking import MergeLockBusyError
from taskmux.tasks.session import SessionError

click.rich_click.USE_MARKDOWN = True
TASK_CONTROLLER = TaskCliController()

T = TypeVar("T")

_USER_ERRORS = (ValueError, LookupError, SessionError, GitError, MergeLockBusyError)

project_dir_option = click.option(
    "--project-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Project directory; defaults to TASKMUX_PROJECT_DIR or the enclosing git repository.",
)


@click.group()
@click.version_option(version=__version__, prog_name="taskmux")
def taskmux() -> None:
    """Parallel agent tasks in tmux windows and git worktrees."""


@taskmux.command("doctor")
@project_dir_option
@click.option("--fix", is_flag=True, default=False, help="Attempt safe fixes where possible.")
def doctor(project_dir: Path | None, fix: bool) -> None:
    """Diagnose project and session health."""

    result = _run(lambda: TASK_CONTROLLER.doctor(DoctorCommand(project_dir=project_dir, fix=fix)))
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("doctor found required issues")


@taskmux.command("kill")
@project_dir_option
@click.argument("session", required=False)
def kill(project_dir: Path | None, session: str | None) -> None:
    """Gracefully stop a taskmux session (C-c, wait, then force kill).

    Worktrees, branches and the control directory are kept.
    """

    result = _run(
        lambda: TASK_CONTROLLER.kill(KillCommand(project_dir=project_dir, session=session)),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("session not killed")


@taskmux.command("new")
@project_dir_option
@click.argument("name")
@click.option("--prompt", default="", help="Task prompt stored next to the task record.")
@click.option(
    "--agent-command",
    default=None,
    help="Command to run in the task window; defaults to TASKMUX_AGENT_COMMAND.",
)
def new(project_dir: Path | None, name: str, prompt: str, agent_command: str | None) -> None:
    """Create a task: worktree and branch, tmux window, task record."""

    _emit_lines(
        _run(
            lambda: TASK_CONTROLLER.new_task(
                NewTaskCommand(
                    project_dir=project_dir,
                    name=name,
                    prompt=prompt,
                    agent_command=agent_command,
                ),
            ),
        ),
    )


@taskmux.command("list")
@project_dir_option
def list_tasks(project_dir: Path | None) -> None:
    """List task records with their last known status."""

    _emit_lines(_run(lambda: TASK_CONTROLLER.list_tasks(ListTasksCommand(project_dir=project_dir))))


@taskmux.command("observe")
@project_dir_option
@click.argument("name", required=False)
def observe(project_dir: Path | None, name: str | None) -> None:
    """Classify task panes and apply the observed status."""

    _emit_lines(
        _run(lambda: TASK_CONTROLLER.observe(ObserveCommand(project_dir=project_dir, name=name))),
    )


@taskmux.command("hook-status")
@project_dir_option
@click.argument("name")
@click.argument("output", required=False)
def hook_status(project_dir: Path | None, name: str, output: str | None) -> None:
    """Apply a stop-hook status line (argument or stdin) to a task."""

    text = output if output is not None else click.get_text_stream("stdin").read()
    _emit_lines(
        _run(
            lambda: TASK_CONTROLLER.hook_status(
                HookStatusCommand(project_dir=project_dir, name=name, output=text),
            ),
        ),
    )


@taskmux.command("merge")
@project_dir_option
@click.argument("name")
def merge(project_dir: Path | None, name: str) -> None:
    """Merge a task branch into the main branch under the merge lock."""

    _emit_lines(
        _run(lambda: TASK_CONTROLLER.merge(MutateTaskCommand(project_dir=project_dir, name=name))),
    )


@taskmux.command("cancel")
@project_dir_option
@click.argument("name")
def cancel(project_dir: Path | None, name: str) -> None:
    """Kill the task window and remove its worktree, branch and record."""

    _emit_lines(
        _run(lambda: TASK_CONTROLLER.cancel(MutateTaskCommand(project_dir=project_dir, name=name))),
    )


@taskmux.command("classify")
@click.argument("source", type=click.File("r", encoding="utf-8"), default="-")
def classify(source) -> None:  # noqa: ANN001
    """Classify captured pane text from a file or stdin."""

    _emit_lines(TASK_CONTROLLER.classify(ClassifyCommand(content=source.read())))


def _run(action: Callable[[], T]) -> T:
    try:
        return action()
    except _USER_ERRORS as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    taskmux()
