"""Build runner for executing build commands.

This module handles:
- Executing a command sequence in a working tree
- Appending stdout/stderr to a build log
- Enforcing a hard wall-clock timeout across the whole sequence
- Stopping at the first failing command
- Cooperative cancellation of stale builds
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

# How often a running command checks for cancellation (seconds)
CANCEL_POLL_INTERVAL = 0.2

# Declared compute profiles for build environments
COMPUTE_PROFILES: dict[str, dict[str, int]] = {
    "small": {"memory_mib": 3072, "vcpus": 2},
    "medium": {"memory_mib": 7168, "vcpus": 4},
    "large": {"memory_mib": 15360, "vcpus": 8},
}

# Host variables passed through to build commands
PASSTHROUGH_ENV = ("PATH", "HOME", "LANG", "LC_ALL", "TMPDIR")


class BuildExecutionError(Exception):
    """Raised when build execution fails."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "build_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


@dataclass
class ExecutionResult:
    """Result of a command sequence execution.

    Attributes:
        success: Whether every command exited with status 0.
        exit_code: Exit code of the last command run.
        log_path: Path to the build log file.
        started_at: Execution start time.
        finished_at: Execution finish time.
        commands_run: Number of commands started.
        failed_command: The command that failed, if any.
        error_message: Error message if execution failed.
    """

    success: bool
    exit_code: int
    log_path: Path
    started_at: datetime
    finished_at: datetime
    commands_run: int
    failed_command: str | None = None
    error_message: str | None = None


def compose_environment(
    variables: dict[str, str] | None = None,
    compute_type: str = "small",
    base_env: dict[str, str] | None = None,
) -> dict[str, str]:
    """Compose the environment for build commands.

    Only a small set of host variables leaks into the build; everything
    else must be declared.

    Args:
        variables: Declared variables (build spec, revision metadata).
        compute_type: Compute profile name.
        base_env: Host environment (defaults to os.environ).

    Returns:
        Environment mapping for subprocess.
    """
    if compute_type not in COMPUTE_PROFILES:
        raise ValueError(f"Unknown compute type: {compute_type}")
    if base_env is None:
        base_env = dict(os.environ)

    env = {k: base_env[k] for k in PASSTHROUGH_ENV if k in base_env}
    profile = COMPUTE_PROFILES[compute_type]
    env.update(
        {
            "CI": "true",
            "SITEPIPE_COMPUTE_TYPE": compute_type,
            "SITEPIPE_MEMORY_MIB": str(profile["memory_mib"]),
            "SITEPIPE_VCPUS": str(profile["vcpus"]),
        }
    )
    if variables:
        env.update(variables)
    return env


def _kill_process_group(proc: subprocess.Popen[bytes]) -> None:
    """Kill a command and everything it spawned."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        proc.kill()
    proc.wait()


class LocalBuildEnvironment:
    """Runs build commands as local subprocesses.

    Each command runs through the shell in its own process group with stdin
    closed, so builds are non-interactive and a timeout or cancellation
    kills the whole command tree.
    """

    def execute(
        self,
        commands: list[tuple[str, str]],
        env: dict[str, str],
        working_tree: Path,
        timeout: float,
        log_path: Path,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionResult:
        """Execute a command sequence.

        Args:
            commands: Ordered (phase, command) pairs.
            env: Environment for every command.
            working_tree: Directory the commands run in.
            timeout: Wall-clock budget for the whole sequence, in seconds.
            log_path: Log file; output is appended.
            cancel_event: Optional event that aborts the sequence when set.

        Returns:
            ExecutionResult; success is False if a command exited non-zero.

        Raises:
            BuildExecutionError: On timeout, cancellation, or if a command
                cannot be started.
        """
        log_path.parent.mkdir(parents=True, exist_ok=True)
        started_at = datetime.now(timezone.utc)
        deadline = time.monotonic() + timeout
        exit_code = 0
        commands_run = 0
        failed_command: str | None = None
        error_message: str | None = None

        logger.info("Executing %d build commands in %s", len(commands), working_tree)

        with log_path.open("a") as log_file:
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write(f"# CWD: {working_tree}\n")
            log_file.write(f"# Timeout: {timeout}s\n")
            log_file.write("# " + "=" * 70 + "\n")
            log_file.flush()

            for phase, command in commands:
                if cancel_event is not None and cancel_event.is_set():
                    log_file.write("\n# CANCELLED before next command\n")
                    raise BuildExecutionError(
                        "Build cancelled: a newer revision is queued",
                        code="build_cancelled",
                    )

                log_file.write(f"\n# [{phase}] $ {command}\n")
                log_file.flush()
                logger.debug("[%s] %s", phase, command)

                try:
                    proc = subprocess.Popen(
                        command,
                        shell=True,
                        cwd=working_tree,
                        stdin=subprocess.DEVNULL,
                        stdout=log_file,
                        stderr=subprocess.STDOUT,
                        env=env,
                        start_new_session=True,
                    )
                except OSError as e:
                    error_message = f"Failed to execute build command: {e}"
                    logger.error(error_message)
                    raise BuildExecutionError(
                        error_message, code="execution_error"
                    ) from e
                commands_run += 1

                while True:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        _kill_process_group(proc)
                        error_message = f"Build timed out after {timeout} seconds"
                        logger.error("%s. See log: %s", error_message, log_path)
                        log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
                        raise BuildExecutionError(
                            error_message, exit_code=-1, code="build_timeout"
                        )
                    if cancel_event is not None and cancel_event.is_set():
                        _kill_process_group(proc)
                        log_file.write("\n# CANCELLED\n")
                        raise BuildExecutionError(
                            "Build cancelled: a newer revision is queued",
                            exit_code=-1,
                            code="build_cancelled",
                        )
                    try:
                        exit_code = proc.wait(
                            timeout=min(CANCEL_POLL_INTERVAL, remaining)
                        )
                        break
                    except subprocess.TimeoutExpired:
                        continue

                if exit_code != 0:
                    failed_command = command
                    error_message = (
                        f"Build command failed with exit code {exit_code} "
                        f"in phase {phase}: {command}"
                    )
                    logger.error("%s. See log: %s", error_message, log_path)
                    break

            finished_at = datetime.now(timezone.utc)
            duration = (finished_at - started_at).total_seconds()
            log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
            log_file.write(f"# Exit code: {exit_code}\n")
            log_file.write(f"# Duration: {duration:.1f}s\n")

        return ExecutionResult(
            success=exit_code == 0,
            exit_code=exit_code,
            log_path=log_path,
            started_at=started_at,
            finished_at=finished_at,
            commands_run=commands_run,
            failed_command=failed_command,
            error_message=error_message,
        )


__all__ = [
    "COMPUTE_PROFILES",
    "BuildExecutionError",
    "ExecutionResult",
    "LocalBuildEnvironment",
    "compose_environment",
]
