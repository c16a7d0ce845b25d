"""
repo_batch.executor - Bounded execution of one job

Runs the pipeline's tool for a single job under a hard wall-clock timeout,
tees its output to the console and the per-job log, and classifies the
result. Success removes the log and the tool's artifacts; failure keeps the
log and adds a block to the error report.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess  # nosec: B404 - runs the configured build/install tool
import sys
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import IO, Optional

from .config import (
    COMMAND_NOT_FOUND_EXIT_CODE,
    DEFAULT_JOB_TIMEOUT_SECONDS,
    TERMINATE_GRACE_SECONDS,
    TIMEOUT_EXIT_CODE,
)
from .error_report import ErrorReport
from .models import Job, JobResult, Outcome
from .pipelines import Invocation, Pipeline, PipelinePaths
from .state_files import remove_file

logger = logging.getLogger("repo_batch.executor")

TIMEOUT_MARKER = "[TIMEOUT]"
DRAIN_JOIN_TIMEOUT_SEC = 5.0
KILL_WAIT_TIMEOUT_SEC = 5


def format_duration(seconds: float) -> str:
    """Formats duration in seconds into H:MM:SS or M:SS format."""
    secs = int(seconds)
    mins, secs = divmod(secs, 60)
    hours, mins = divmod(mins, 60)
    if hours > 0:
        return f"{hours}:{mins:02d}:{secs:02d}"
    return f"{mins}:{secs:02d}"


def _signal_group(process: subprocess.Popen, sig: int) -> None:
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        return
    except OSError:
        # Not a group leader (or no killpg on this platform): signal the child.
        if sig == signal.SIGKILL:
            process.kill()
        else:
            process.terminate()


def terminate_process_group(process: subprocess.Popen, *, grace_seconds: float) -> None:
    """
    Stop the child and everything it spawned.

    The child runs in its own session, so its pid is also its process group
    id. SIGTERM first, SIGKILL after ``grace_seconds``.
    """
    if process.poll() is not None:
        return
    logger.warning("Terminating process group %s...", process.pid)
    _signal_group(process, signal.SIGTERM)
    try:
        process.wait(timeout=grace_seconds)
        logger.info("Process group %s terminated.", process.pid)
        return
    except subprocess.TimeoutExpired:
        logger.warning("Process group %s ignored SIGTERM; sending SIGKILL.", process.pid)
    _signal_group(process, signal.SIGKILL)
    try:
        process.wait(timeout=KILL_WAIT_TIMEOUT_SEC)
    except subprocess.TimeoutExpired:
        logger.error("Process %s did not exit after SIGKILL.", process.pid)


def _start_log_drain(
    stream: Optional[IO[str]], log_file: IO[str], *, tee_to_stdout: bool, name: str
) -> Optional[threading.Thread]:
    """
    Drain the child's stdout so it can never block on a full pipe, copying
    every line to the log (and the console when streaming).
    """
    if stream is None:
        return None

    def _drain() -> None:
        for line in stream:
            if tee_to_stdout:
                try:
                    sys.stdout.write(line)
                    sys.stdout.flush()
                except (OSError, ValueError):
                    pass
            try:
                log_file.write(line)
                log_file.flush()
            except (OSError, ValueError):
                pass

    t = threading.Thread(target=_drain, name=f"LogDrain[{name}]", daemon=True)
    t.start()
    return t


class ExecutorAdapter:
    def __init__(
        self,
        pipeline: Pipeline,
        paths: PipelinePaths,
        *,
        timeout_seconds: int = DEFAULT_JOB_TIMEOUT_SECONDS,
        stream_output: bool = True,
        error_report: Optional[ErrorReport] = None,
        terminate_grace_seconds: float = TERMINATE_GRACE_SECONDS,
        repos_dir: Optional[Path] = None,
    ):
        self.pipeline = pipeline
        self.paths = paths
        self.repos_dir = repos_dir
        self.timeout_seconds = timeout_seconds
        self.stream_output = stream_output
        self.terminate_grace_seconds = terminate_grace_seconds
        self.error_report = error_report or ErrorReport(
            paths.errors_file,
            title=pipeline.error_title,
            target_label=pipeline.grammar.target_label,
            log_kind=pipeline.log_kind,
        )

    def run(self, job: Job) -> JobResult:
        invocation = self.pipeline.build_invocation(job)
        log_path = self.pipeline.log_path_for(job, self.paths.log_dir, self.repos_dir)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Running %s for %s (%s)", self.pipeline.name, job.identity, job.target_path)
        logger.info(
            "Command: %s (cwd=%s, timeout %ss)",
            " ".join(invocation.command),
            invocation.cwd,
            self.timeout_seconds,
        )

        started = time.monotonic()
        with open(log_path, "w", encoding="utf-8") as log_file:
            for line in self.pipeline.grammar.render(
                job, started_at=datetime.now(), details=invocation.details
            ):
                log_file.write(line + "\n")
            log_file.flush()
            exit_code, timed_out = self._execute(invocation, log_file, job)
            if timed_out:
                message = (
                    f"{TIMEOUT_MARKER} {self.pipeline.tool_label} timed out after "
                    f"{self.timeout_seconds} seconds"
                )
                log_file.write(message + "\n")
                logger.error(message)
            log_file.write(f"\nExit code: {exit_code}\n")
        duration = time.monotonic() - started

        if exit_code == 0:
            remove_file(log_path)
            self.pipeline.cleanup(invocation)
            logger.info(
                "Succeeded: %s -> %s in %s",
                job.identity,
                job.target_name,
                format_duration(duration),
            )
            return JobResult(
                job=job,
                outcome=Outcome.SUCCEEDED,
                exit_code=0,
                duration_seconds=duration,
            )

        result = JobResult(
            job=job,
            outcome=Outcome.FAILED,
            exit_code=exit_code,
            timed_out=timed_out,
            log_path=log_path,
            duration_seconds=duration,
        )
        self.error_report.append(result)
        logger.error(
            "Failed: %s -> %s (exit code %s%s). Log kept at %s",
            job.identity,
            job.target_name,
            exit_code,
            ", timed out" if timed_out else "",
            log_path,
        )
        return result

    def _execute(self, invocation: Invocation, log_file: IO[str], job: Job) -> tuple[int, bool]:
        try:
            process = subprocess.Popen(  # nosec: B603
                invocation.command,
                cwd=str(invocation.cwd),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                start_new_session=True,
            )
        except (FileNotFoundError, NotADirectoryError, PermissionError) as exc:
            log_file.write(f"Failed to start {invocation.command[0]}: {exc}\n")
            logger.error("Could not start %s for %s: %s", invocation.command[0], job.identity, exc)
            return COMMAND_NOT_FOUND_EXIT_CODE, False

        drain = _start_log_drain(
            process.stdout, log_file, tee_to_stdout=self.stream_output, name=job.identity
        )
        timed_out = False
        try:
            process.wait(timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired:
            timed_out = True
            terminate_process_group(process, grace_seconds=self.terminate_grace_seconds)
        except KeyboardInterrupt:
            terminate_process_group(process, grace_seconds=self.terminate_grace_seconds)
            raise
        finally:
            if drain is not None:
                drain.join(timeout=DRAIN_JOIN_TIMEOUT_SEC)

        if timed_out:
            return TIMEOUT_EXIT_CODE, True
        return process.returncode, False
