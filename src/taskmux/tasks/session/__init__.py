"""Session client implementations."""

from taskmux.tasks.session.base import SessionClient, SessionError
from taskmux.tasks.session.tmux import TmuxClient, discover_sessions

__all__ = [
    "SessionClient",
    "SessionError",
    "TmuxClient",
    "discover_sessions",
]
