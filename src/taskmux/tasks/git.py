"""Thin git command wrapper used for worktree lifecycle and merges."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from taskmux.tasks.commit_message import CommitInfo

logger = logging.getLogger(__name__)

_LOG_FIELD_SEP = "\x1f"


class GitError(RuntimeError):
    """git command failure with the command line and stderr attached."""

    def __init__(self, message: str, *, args: tuple[str, ...] = (), stderr: str = "") -> None:
        super().__init__(message)
        self.git_args = args
        self.stderr = stderr


@dataclass(slots=True, frozen=True)
class WorktreeInfo:
    """One entry of ``git worktree list``."""

    path: str
    branch: str


class GitClient:
    """Run git commands with a timeout; raises ``GitError`` on failure."""

    def __init__(self, *, timeout_seconds: float = 30.0, binary: str = "git") -> None:
        self.timeout_seconds = timeout_seconds
        self.binary = binary

    def is_git_repo(self, path: Path) -> bool:
        try:
            output = self._run(path, "rev-parse", "--is-inside-work-tree")
        except GitError:
            return False
        return output.strip() == "true"

    def repo_root(self, path: Path) -> Path:
        return Path(self._run(path, "rev-parse", "--show-toplevel").strip())

    def branch_exists(self, repo: Path, branch: str) -> bool:
        try:
            self._run(repo, "show-ref", "--verify", "--quiet", f"refs/heads/{branch}")
        except GitError:
            return False
        return True

    def current_branch(self, path: Path) -> str:
        return self._run(path, "rev-parse", "--abbrev-ref", "HEAD").strip()

    def add_worktree(self, repo: Path, *, path: Path, branch: str, base: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self._run(repo, "worktree", "add", "-b", branch, str(path), base)

    def remove_worktree(self, repo: Path, path: Path, *, force: bool = True) -> None:
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        self._run(repo, *args, str(path))

    def prune_worktrees(self, repo: Path) -> None:
        self._run(repo, "worktree", "prune")

    def delete_branch(self, repo: Path, branch: str, *, force: bool = True) -> None:
        self._run(repo, "branch", "-D" if force else "-d", branch)

    def list_worktrees(self, repo: Path) -> list[WorktreeInfo]:
        output = self._run(repo, "worktree", "list", "--porcelain")
        worktrees: list[WorktreeInfo] = []
        path = ""
        branch = ""
        for line in [*output.splitlines(), ""]:
            if line.startswith("worktree "):
                path = line[len("worktree ") :]
            elif line.startswith("branch "):
                branch = line[len("branch ") :].removeprefix("refs/heads/")
            elif not line.strip() and path:
                worktrees.append(WorktreeInfo(path=path, branch=branch))
                path = ""
                branch = ""
        return worktrees

    def has_changes(self, path: Path) -> bool:
        return bool(self._run(path, "status", "--porcelain").strip())

    def commit_all(self, path: Path, message: str) -> None:
        self._run(path, "add", "-A")
        self._run(path, "commit", "-m", message)

    def branch_commits(self, repo: Path, *, base: str, branch: str) -> list[CommitInfo]:
        output = self._run(
            repo,
            "log",
            "--reverse",
            f"--format=%H{_LOG_FIELD_SEP}%s",
            f"{base}..{branch}",
        )
        commits: list[CommitInfo] = []
        for line in output.splitlines():
            commit_hash, _, subject = line.partition(_LOG_FIELD_SEP)
            if commit_hash:
                commits.append(CommitInfo(hash=commit_hash, subject=subject))
        return commits

    def merge(self, repo: Path, *, branch: str, message: str) -> None:
        self._run(repo, "merge", "--no-ff", "-m", message, branch)

    def merge_abort(self, repo: Path) -> None:
        self._run(repo, "merge", "--abort")

    def _run(self, cwd: Path, *args: str) -> str:
        if not cwd.is_dir():
            raise GitError(f"git working directory does not exist: {cwd}", args=args)
        argv = [self.binary, *args]
        try:
            completed = subprocess.run(  # noqa: S603
                argv,
                cwd=str(cwd),
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError as error:
            raise GitError(f"git binary not found: {self.binary}", args=args) from error
        except subprocess.TimeoutExpired as error:
            raise GitError(
                f"git {args[0]} timed out after {self.timeout_seconds}s",
                args=args,
            ) from error
        if completed.returncode != 0:
            stderr = completed.stderr.strip()
            logger.debug("git %s failed in %s: %s", " ".join(args), cwd, stderr)
            raise GitError(
                f"git {args[0]} failed: {stderr or completed.returncode}",
                args=args,
                stderr=stderr,
            )
        return completed.stdout
