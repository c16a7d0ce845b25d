from __future__ import annotations

import contextlib
import logging
import signal
import threading
from pathlib import Path
from typing import Iterator, Optional

from repo_batch.admin import open_store
from repo_batch.config import BatchConfig
from repo_batch.discovery import discover_jobs
from repo_batch.executor import ExecutorAdapter
from repo_batch.models import RunSummary
from repo_batch.pipelines import EnvironmentCheckError, Pipeline

"""
repo_batch.worker.main - Run Driver

Drains a pipeline's queue one job at a time: resume or initialise the queue,
then dequeue -> execute -> record until nothing is left or a stop is
requested. The loop is the only place where queue state changes during a run.

Job lifecycle:
    queued -> running -> succeeded | failed (including timeout)
    queued -> skipped (target vanished before its turn; not recorded)

A crash between dequeue and the ledger append loses that one job (neither
re-run nor recorded). This window is accepted to keep the on-disk format a
plain line file; see DESIGN.md.
"""

logger = logging.getLogger("repo_batch.worker")


@contextlib.contextmanager
def _stop_on_signals(stop_event: threading.Event) -> Iterator[None]:
    """
    Turn SIGINT/SIGTERM into a stop request for the duration of the loop.

    The job already running is allowed to finish (or time out); the loop then
    exits with the queue in a resumable state. Handlers can only be installed
    from the main thread; elsewhere this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, frame):  # noqa: ARG001
        name = signal.Signals(signum).name
        if stop_event.is_set():
            logger.warning("%s received again; still waiting for the current job.", name)
            return
        logger.warning(
            "%s received. Finishing the current job, then stopping; "
            "re-run to resume the remaining queue.",
            name,
        )
        stop_event.set()

    previous = {
        signal.SIGINT: signal.signal(signal.SIGINT, _handler),
        signal.SIGTERM: signal.signal(signal.SIGTERM, _handler),
    }
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def _check_prerequisites(pipeline: Pipeline, config: BatchConfig) -> None:
    pipeline.check_environment()
    if not config.repos_dir.is_dir():
        raise EnvironmentCheckError(
            f"Repositories directory '{config.repos_dir}' not found. "
            "Run 'repo-batch clone' first."
        )
    try:
        config.ensure_state_dir()
    except RuntimeError as exc:
        raise EnvironmentCheckError(str(exc)) from exc


def run_batch(
    pipeline: Pipeline,
    config: BatchConfig,
    *,
    stop_event: Optional[threading.Event] = None,
    executor: Optional[ExecutorAdapter] = None,
    stream_output: bool = True,
    handle_signals: bool = True,
) -> RunSummary:
    """
    Run (or resume) a whole batch for ``pipeline``.

    Raises EnvironmentCheckError before touching any state when a required
    tool or directory is missing. Per-job failures never raise.
    """
    _check_prerequisites(pipeline, config)

    stop_event = stop_event or threading.Event()
    paths = pipeline.paths(config.state_dir)
    paths.log_dir.mkdir(parents=True, exist_ok=True)
    store = open_store(paths)
    if executor is None:
        executor = ExecutorAdapter(
            pipeline,
            paths,
            timeout_seconds=config.job_timeout_seconds,
            stream_output=stream_output,
            repos_dir=config.repos_dir,
        )
    executor.error_report.initialize()

    summary = RunSummary(pipeline=pipeline.name)
    if store.exists():
        init = store.initialize_or_resume([])
    else:
        discovery = discover_jobs(config.repos_dir, pipeline)
        summary.discovered = len(discovery.jobs)
        summary.repositories_checked = discovery.repositories_checked
        summary.repositories_with_targets = discovery.repositories_with_targets
        if not discovery.jobs:
            logger.warning("No %s targets found under %s.", pipeline.name, config.repos_dir)
            return summary
        init = store.initialize_or_resume(discovery.jobs)
    summary.resumed = init.resumed

    logger.info(
        "Worker starting %s batch (%d queued, timeout %ss).",
        pipeline.name,
        init.remaining,
        config.job_timeout_seconds,
    )

    guard = _stop_on_signals(stop_event) if handle_signals else contextlib.nullcontext()
    with guard:
        while True:
            if stop_event.is_set():
                summary.interrupted = True
                logger.warning("Stop requested; leaving remaining jobs queued.")
                break

            job = store.dequeue_next()
            if job is None:
                break

            if not Path(job.target_path).is_file():
                summary.skipped += 1
                logger.warning(
                    "Skipping %s: target %s no longer exists.", job.identity, job.target_path
                )
                continue

            result = executor.run(job)
            store.ledger.record(job, result.outcome)
            summary.add_result(result)
            logger.info(
                "Progress: %d attempted this run (%d ok, %d failed, %d skipped), %d remaining.",
                summary.attempted,
                summary.succeeded,
                summary.failed,
                summary.skipped,
                store.remaining_count(),
            )

    summary.remaining = store.remaining_count()
    if summary.remaining == 0:
        store.remove()
    return summary
