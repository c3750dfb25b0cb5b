"""Shell command runner for project-defined hooks, with timeout and metadata capture."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from dataclasses import asdict, dataclass
from pathlib import Path

from taskmux.tasks.contracts import write_json, write_text_atomic

logger = logging.getLogger(__name__)

HOOK_STATUS_SUCCESS = "success"
HOOK_STATUS_FAILED = "failed"
HOOK_STATUS_TIMEOUT = "timeout"


@dataclass(slots=True)
class CommandResult:
    """Outcome of one shell command."""

    command: str
    success: bool
    exit_code: int
    duration_ms: int
    output: str
    timed_out: bool


@dataclass(slots=True)
class HookMetadata:
    """Persisted summary of a hook run."""

    name: str
    command: str
    status: str
    exit_code: int
    duration_ms: int
    output_file: str

    @property
    def ok(self) -> bool:
        return self.status == HOOK_STATUS_SUCCESS


def run_command(
    command: str,
    *,
    work_dir: Path | None = None,
    env: dict[str, str] | None = None,
    timeout_seconds: float | None = None,
) -> CommandResult:
    """Run ``sh -c command`` and capture combined output.

    On timeout the whole process group is killed and the result is marked
    ``timed_out`` with exit code -1.  A command that cannot be started yields
    exit code -1 and the error text as output.
    """

    started = time.monotonic()
    try:
        process = subprocess.Popen(  # noqa: S603
            ["sh", "-c", command],  # noqa: S607
            cwd=str(work_dir) if work_dir is not None else None,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            start_new_session=True,
        )
    except OSError as error:
        return CommandResult(
            command=command,
            success=False,
            exit_code=-1,
            duration_ms=_elapsed_ms(started),
            output=str(error),
            timed_out=False,
        )

    try:
        output, _ = process.communicate(timeout=timeout_seconds)
    except subprocess.TimeoutExpired:
        _terminate_process_group(process)
        output, _ = process.communicate()
        return CommandResult(
            command=command,
            success=False,
            exit_code=-1,
            duration_ms=_elapsed_ms(started),
            output=output or "",
            timed_out=True,
        )

    return CommandResult(
        command=command,
        success=process.returncode == 0,
        exit_code=process.returncode,
        duration_ms=_elapsed_ms(started),
        output=output or "",
        timed_out=False,
    )


def run_hook(  # noqa: PLR0913
    name: str,
    command: str,
    *,
    work_dir: Path | None,
    env: dict[str, str] | None,
    timeout_seconds: float,
    output_path: Path | None = None,
    meta_path: Path | None = None,
) -> HookMetadata:
    """Run a named hook; failures are reported in the metadata, never raised."""

    logger.debug("Hook: start name=%s cmd=%s", name, command)
    result = run_command(command, work_dir=work_dir, env=env, timeout_seconds=timeout_seconds)

    if result.timed_out:
        status = HOOK_STATUS_TIMEOUT
    elif not result.success:
        status = HOOK_STATUS_FAILED
    else:
        status = HOOK_STATUS_SUCCESS

    meta = HookMetadata(
        name=name,
        command=command,
        status=status,
        exit_code=result.exit_code,
        duration_ms=result.duration_ms,
        output_file=str(output_path) if output_path is not None else "",
    )

    if output_path is not None:
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            write_text_atomic(output_path, result.output)
        except OSError as error:
            logger.warning("Hook: failed to write output name=%s err=%s", name, error)
    if meta_path is not None:
        try:
            write_json(meta_path, asdict(meta))
        except OSError as error:
            logger.warning("Hook: failed to write metadata name=%s err=%s", name, error)

    if meta.ok:
        logger.debug("Hook: success name=%s duration_ms=%d", name, meta.duration_ms)
    else:
        logger.warning(
            "Hook: %s name=%s exit=%d duration_ms=%d",
            status,
            name,
            meta.exit_code,
            meta.duration_ms,
        )
    return meta


def _terminate_process_group(process: subprocess.Popen[str]) -> None:
    try:
        os.killpg(process.pid, signal.SIGTERM)
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except OSError:
            return
        process.wait(timeout=2)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
