"""Subprocess-based tmux session client."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from taskmux.tasks.models import WindowInfo
from taskmux.tasks.session.base import SessionError

logger = logging.getLogger(__name__)

TMUX_SOCKET_PREFIX = "taskmux-"
_FIELD_SEP = "\t"


def default_socket_dir() -> Path:
    return Path(os.getenv("TMUX_TMPDIR") or "/tmp") / f"tmux-{os.getuid()}"  # noqa: S108


def discover_sessions(*, socket_dir: Path | None = None) -> list[str]:
    """Names of sessions that have a taskmux socket, live or stale."""

    directory = socket_dir or default_socket_dir()
    if not directory.is_dir():
        return []
    return sorted(
        path.name.removeprefix(TMUX_SOCKET_PREFIX)
        for path in directory.iterdir()
        if path.name.startswith(TMUX_SOCKET_PREFIX) and len(path.name) > len(TMUX_SOCKET_PREFIX)
    )


class TmuxClient:
    """Run tmux commands against a per-project socket."""

    def __init__(
        self,
        session_name: str,
        *,
        socket_name: str | None = None,
        timeout_seconds: float = 10.0,
        binary: str = "tmux",
    ) -> None:
        self.session_name = session_name
        self.socket_name = socket_name or TMUX_SOCKET_PREFIX + session_name
        self.timeout_seconds = timeout_seconds
        self.binary = binary

    def list_windows(self) -> list[WindowInfo]:
        output = self._run(
            "list-windows",
            "-t",
            self.session_name,
            "-F",
            f"#{{window_id}}{_FIELD_SEP}#{{window_name}}",
        )
        windows: list[WindowInfo] = []
        for line in output.splitlines():
            if not line.strip():
                continue
            window_id, _, name = line.partition(_FIELD_SEP)
            windows.append(WindowInfo(id=window_id, name=name))
        return windows

    def send_keys(self, target: str, keys: str) -> None:
        self._run("send-keys", "-t", target, keys)

    def has_session(self, name: str) -> bool:
        return self._succeeds("has-session", "-t", name)

    def has_pane(self, pane_id: str) -> bool:
        return self._succeeds("display-message", "-p", "-t", pane_id, "#{pane_id}")

    def new_session(self, name: str, *, cwd: str, window_name: str) -> None:
        self._run("new-session", "-d", "-s", name, "-n", window_name, "-c", cwd)

    def kill_session(self, name: str) -> None:
        self._run("kill-session", "-t", name)

    def set_option(self, key: str, value: str, *, global_: bool = False) -> None:
        if global_:
            self._run("set-option", "-g", key, value)
        else:
            self._run("set-option", "-t", self.session_name, key, value)

    def capture_pane(self, target: str, *, lines: int) -> str:
        return self._run("capture-pane", "-p", "-J", "-t", target, "-S", f"-{max(1, lines)}")

    def new_window(self, *, name: str, cwd: str, command: str) -> str:
        args = ["new-window", "-d", "-P", "-F", "#{window_id}", "-t", f"{self.session_name}:"]
        args += ["-n", name, "-c", cwd]
        if command:
            args.append(command)
        return self._run(*args).strip()

    def rename_window(self, target: str, name: str) -> None:
        self._run("rename-window", "-t", target, name)

    def kill_window(self, target: str) -> None:
        self._run("kill-window", "-t", target)

    def pane_current_command(self, target: str) -> str:
        return self._run("display-message", "-p", "-t", target, "#{pane_current_command}").strip()

    def _succeeds(self, *args: str) -> bool:
        try:
            self._run(*args)
        except SessionError as error:
            if not error.transient:
                raise
            return False
        return True

    def _run(self, *args: str) -> str:
        argv = [self.binary, "-L", self.socket_name, *args]
        try:
            completed = subprocess.run(  # noqa: S603
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError as error:
            raise SessionError(f"tmux binary not found: {self.binary}", transient=False) from error
        except subprocess.TimeoutExpired as error:
            raise SessionError(
                f"tmux {args[0]} timed out after {self.timeout_seconds}s",
            ) from error
        if completed.returncode != 0:
            stderr = completed.stderr.strip()
            logger.debug("tmux %s failed: %s", " ".join(args), stderr)
            raise SessionError(f"tmux {args[0]} failed: {stderr or completed.returncode}")
        return completed.stdout
