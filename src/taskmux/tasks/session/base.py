"""Session client interface consumed by the task engine."""

from __future__ import annotations

from typing import Protocol

from taskmux.tasks.models import WindowInfo


class SessionError(RuntimeError):
    """Session backend failure with retryability hint."""

    def __init__(self, message: str, *, transient: bool = True) -> None:
        super().__init__(message)
        self.transient = transient


class SessionClient(Protocol):
    """Narrow contract over one terminal-multiplexer session."""

    session_name: str

    def list_windows(self) -> list[WindowInfo]:
        """Return every window of the session; raise ``SessionError`` if unreachable."""

    def send_keys(self, target: str, keys: str) -> None:
        """Send a key sequence (tmux key names, e.g. ``C-c``) to ``target``."""

    def has_session(self, name: str) -> bool: ...

    def has_pane(self, pane_id: str) -> bool: ...

    def new_session(self, name: str, *, cwd: str, window_name: str) -> None:
        """Start a detached session whose first window is named ``window_name``."""

    def kill_session(self, name: str) -> None: ...

    def set_option(self, key: str, value: str, *, global_: bool = False) -> None: ...

    def capture_pane(self, target: str, *, lines: int) -> str:
        """Return the last ``lines`` lines of scrollback for ``target``."""

    def new_window(self, *, name: str, cwd: str, command: str) -> str:
        """Open a window and return its window id (``@N``)."""

    def rename_window(self, target: str, name: str) -> None: ...

    def kill_window(self, target: str) -> None: ...

    def pane_current_command(self, target: str) -> str:
        """Foreground command of the target's active pane."""
