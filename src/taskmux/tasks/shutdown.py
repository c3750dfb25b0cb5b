"""Graceful-then-forced termination of a task session."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from taskmux.tasks.session.base import SessionClient, SessionError

logger = logging.getLogger(__name__)

OUTCOME_GRACEFUL = "graceful"
OUTCOME_FORCED = "forced"
OUTCOME_NOT_RUNNING = "not_running"

INTERRUPT_KEYS = "C-c"


@dataclass(slots=True)
class TerminationResult:
    """How a session ended."""

    session_name: str
    outcome: str
    interrupted_windows: int
    waited_seconds: float


def send_interrupt_to_all_windows(client: SessionClient, session_name: str) -> int:
    """Send ``C-c`` to the active pane of every window; returns windows reached."""

    try:
        windows = client.list_windows()
    except SessionError as error:
        logger.warning("Interrupt skipped, cannot list windows of %s: %s", session_name, error)
        return 0

    reached = 0
    for window in windows:
        try:
            client.send_keys(f"{session_name}:{window.id}", INTERRUPT_KEYS)
        except SessionError as error:
            logger.warning("Interrupt to %s:%s failed: %s", session_name, window.id, error)
            continue
        reached += 1
    return reached


def terminate_session(  # noqa: PLR0913
    client: SessionClient,
    session_name: str,
    *,
    graceful_seconds: float = 15.0,
    poll_interval_seconds: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> TerminationResult:
    """Interrupt every pane, wait for the session to exit, then force kill.

    Raises ``SessionError`` only if the forced kill itself fails.
    """

    if not client.has_session(session_name):
        return TerminationResult(
            session_name=session_name,
            outcome=OUTCOME_NOT_RUNNING,
            interrupted_windows=0,
            waited_seconds=0.0,
        )

    interrupted = send_interrupt_to_all_windows(client, session_name)
    started = clock()
    deadline = started + max(0.0, graceful_seconds)

    while clock() < deadline:
        if not client.has_session(session_name):
            waited = clock() - started
            logger.info("Session %s exited gracefully after %.1fs", session_name, waited)
            return TerminationResult(
                session_name=session_name,
                outcome=OUTCOME_GRACEFUL,
                interrupted_windows=interrupted,
                waited_seconds=waited,
            )
        sleep(poll_interval_seconds)

    if not client.has_session(session_name):
        return TerminationResult(
            session_name=session_name,
            outcome=OUTCOME_GRACEFUL,
            interrupted_windows=interrupted,
            waited_seconds=clock() - started,
        )

    logger.warning("Session %s still alive after %.1fs, force killing", session_name, graceful_seconds)
    client.kill_session(session_name)
    return TerminationResult(
        session_name=session_name,
        outcome=OUTCOME_FORCED,
        interrupted_windows=interrupted,
        waited_seconds=clock() - started,
    )


class SessionMatchError(ValueError):
    """Session query matched nothing or more than one session."""

    def __init__(self, message: str, candidates: list[str]) -> None:
        super().__init__(message)
        self.candidates = candidates


def resolve_session_name(sessions: list[str], query: str) -> str:
    """Exact name first, then a unique substring match."""

    if query in sessions:
        return query
    matches = [name for name in sessions if query in name]
    if len(matches) == 1:
        return matches[0]
    if matches:
        raise SessionMatchError(f"Multiple sessions match {query!r}.", matches)
    raise SessionMatchError(f"Session {query!r} not found.", sessions)
