"""Shared test fixtures."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

import pytest

from taskmux.config import Settings
from taskmux.tasks.commit_message import CommitInfo
from taskmux.tasks.git import GitError, WorktreeInfo
from taskmux.tasks.manager import TaskManager
from taskmux.tasks.models import WindowInfo
from taskmux.tasks.session.base import SessionError

SESSION_NAME = "proj"


class FakeSessionClient:
    """In-memory stand-in for one tmux session."""

    def __init__(self, session_name: str = SESSION_NAME, *, running: bool = True) -> None:
        self.session_name = session_name
        self.sessions: set[str] = {session_name} if running else set()
        self.windows: dict[str, WindowInfo] = {}
        self.window_cwds: dict[str, str] = {}
        self.pane_commands: dict[str, str] = {}
        self.pane_contents: dict[str, str] = {}
        self.sent_keys: list[tuple[str, str]] = []
        self.killed_windows: list[str] = []
        self.options: dict[str, str] = {}
        self.fail_list = False
        self.fail_new_window = False
        self.exit_on_interrupt = False
        self._next_id = 1

    def add_window(self, name: str, *, command: str = "claude", content: str = "") -> WindowInfo:
        window = WindowInfo(id=f"@{self._next_id}", name=name)
        self._next_id += 1
        self.windows[window.id] = window
        self.pane_commands[window.id] = command
        self.pane_contents[window.id] = content
        return window

    def window_names(self) -> list[str]:
        return [window.name for window in self.windows.values()]

    def list_windows(self) -> list[WindowInfo]:
        if self.fail_list:
            raise SessionError("server exited unexpectedly")
        if self.session_name not in self.sessions:
            raise SessionError(f"can't find session: {self.session_name}")
        return list(self.windows.values())

    def send_keys(self, target: str, keys: str) -> None:
        self.sent_keys.append((target, keys))
        if self.exit_on_interrupt and keys == "C-c":
            self.sessions.discard(target.split(":", 1)[0])

    def has_session(self, name: str) -> bool:
        return name in self.sessions

    def has_pane(self, pane_id: str) -> bool:
        return pane_id in self.windows

    def new_session(self, name: str, *, cwd: str, window_name: str) -> None:
        self.sessions.add(name)
        self.add_window(window_name, command="zsh")

    def kill_session(self, name: str) -> None:
        self.sessions.discard(name)

    def set_option(self, key: str, value: str, *, global_: bool = False) -> None:
        self.options[key] = value

    def capture_pane(self, target: str, *, lines: int) -> str:
        return self.pane_contents.get(target, "")

    def new_window(self, *, name: str, cwd: str, command: str) -> str:
        if self.fail_new_window:
            raise SessionError("create window failed: index in use")
        window = self.add_window(name, command=os.path.basename(command.split()[0]) if command else "zsh")
        self.window_cwds[window.id] = cwd
        return window.id

    def rename_window(self, target: str, name: str) -> None:
        if target not in self.windows:
            raise SessionError(f"can't find window: {target}")
        self.windows[target] = WindowInfo(id=target, name=name)

    def kill_window(self, target: str) -> None:
        if self.windows.pop(target, None) is None:
            raise SessionError(f"can't find window: {target}")
        self.killed_windows.append(target)

    def pane_current_command(self, target: str) -> str:
        if target not in self.windows:
            raise SessionError(f"can't find pane: {target}")
        return self.pane_commands[target]


class FakeGitClient:
    """In-memory git repository: branches, worktrees, commits and merges."""

    def __init__(self, *, main_branch: str = "main") -> None:
        self.main_branch = main_branch
        self.head = main_branch
        self.branches: set[str] = {main_branch}
        self.worktrees: dict[str, str] = {}
        self.dirty: set[str] = set()
        self.commits: dict[str, list[CommitInfo]] = {}
        self.auto_commits: list[tuple[str, str]] = []
        self.merged: list[tuple[str, str]] = []
        self.merge_aborts = 0
        self.fail_add_worktree = False
        self.fail_merge = False
        self.fail_remove_worktree = False

    def is_git_repo(self, path: Path) -> bool:
        return True

    def repo_root(self, path: Path) -> Path:
        return path

    def branch_exists(self, repo: Path, branch: str) -> bool:
        return branch in self.branches

    def current_branch(self, path: Path) -> str:
        return self.worktrees.get(str(path), self.head)

    def add_worktree(self, repo: Path, *, path: Path, branch: str, base: str) -> None:
        if self.fail_add_worktree:
            raise GitError(f"fatal: invalid reference: {base}", args=("worktree", "add"))
        if branch in self.branches:
            raise GitError(f"fatal: a branch named '{branch}' already exists")
        path.mkdir(parents=True)
        self.branches.add(branch)
        self.worktrees[str(path)] = branch

    def remove_worktree(self, repo: Path, path: Path, *, force: bool = True) -> None:
        if self.fail_remove_worktree:
            raise GitError("fatal: worktree is locked")
        self.worktrees.pop(str(path), None)
        shutil.rmtree(path, ignore_errors=True)

    def prune_worktrees(self, repo: Path) -> None:
        for path in [path for path in self.worktrees if not Path(path).exists()]:
            del self.worktrees[path]

    def delete_branch(self, repo: Path, branch: str, *, force: bool = True) -> None:
        self.branches.discard(branch)

    def list_worktrees(self, repo: Path) -> list[WorktreeInfo]:
        return [
            WorktreeInfo(path=str(repo), branch=self.head),
            *(WorktreeInfo(path=path, branch=branch) for path, branch in self.worktrees.items()),
        ]

    def has_changes(self, path: Path) -> bool:
        return str(path) in self.dirty

    def commit_all(self, path: Path, message: str) -> None:
        self.dirty.discard(str(path))
        self.auto_commits.append((str(path), message))
        branch = self.worktrees.get(str(path), self.head)
        self.commits.setdefault(branch, []).append(
            CommitInfo(hash=f"auto{len(self.auto_commits)}", subject=message.splitlines()[0]),
        )

    def branch_commits(self, repo: Path, *, base: str, branch: str) -> list[CommitInfo]:
        return list(self.commits.get(branch, []))

    def merge(self, repo: Path, *, branch: str, message: str) -> None:
        if self.fail_merge:
            raise GitError("CONFLICT (content): Merge conflict in app.py", args=("merge",))
        self.merged.append((branch, message))

    def merge_abort(self, repo: Path) -> None:
        self.merge_aborts += 1


@pytest.fixture(autouse=True)
def _isolated_taskmux_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("TASKMUX_"):
            monkeypatch.delenv(name, raising=False)
    yield
    package_logger = logging.getLogger("taskmux")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()


@pytest.fixture()
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture()
def settings(project_dir: Path) -> Settings:
    return Settings(project_dir=project_dir, session_name=SESSION_NAME)


@pytest.fixture()
def fake_session() -> FakeSessionClient:
    return FakeSessionClient()


@pytest.fixture()
def fake_git() -> FakeGitClient:
    return FakeGitClient()


@pytest.fixture()
def manager(settings: Settings, fake_session: FakeSessionClient, fake_git: FakeGitClient) -> TaskManager:
    return TaskManager(
        settings=settings,
        session=fake_session,
        git=fake_git,
        is_git_repo=True,
        sleep=lambda _seconds: None,
    )
