"""
repo_batch.requeue - Rebuild a queue from failed-job logs

Only failed attempts keep their per-job log, so the log directory is the
evidence of what still needs doing. Each log header is parsed back into a
job, the job's repository and target are re-checked on disk, and the
surviving jobs become a fresh queue. Prior queue/progress files are backed up
before being replaced.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from .ledger import ProgressLedger
from .log_header import parse_header_file
from .models import Job, RequeueResult
from .pipelines import Pipeline, PipelinePaths
from .queue_store import QueueStore
from .state_files import backup_file, remove_file

logger = logging.getLogger("repo_batch.requeue")

DEFAULT_PREVIEW_LIMIT = 10
DUPLICATE_REASON = "duplicate of an already-queued job"


class MissingLogDirectoryError(FileNotFoundError):
    """The pipeline's log directory does not exist, so nothing was ever run."""


def list_log_files(log_dir: Path) -> List[Path]:
    return sorted(p for p in log_dir.glob("*.log") if p.is_file())


def verify_target(job: Job, repos_dir: Path) -> Optional[str]:
    """Return None when the job is still runnable, else the reason it is stale."""
    repo_dir = repos_dir / job.identity
    if not repo_dir.is_dir():
        return f"repository directory not found: {repo_dir}"
    if not Path(job.target_path).is_file():
        return f"target not found: {job.target_path}"
    return None


def rebuild_queue_from_logs(
    pipeline: Pipeline,
    paths: PipelinePaths,
    repos_dir: Path,
) -> RequeueResult:
    """
    Recreate the pipeline's queue from its retained per-job logs.

    Raises MissingLogDirectoryError when the log directory is absent. With no
    log files the existing state is left untouched.
    """
    if not paths.log_dir.is_dir():
        raise MissingLogDirectoryError(
            f"Log directory '{paths.log_dir}' not found; no {pipeline.name} jobs have run yet."
        )

    result = RequeueResult()
    log_files = list_log_files(paths.log_dir)
    if not log_files:
        logger.info("No log files in %s; nothing to requeue.", paths.log_dir)
        return result

    logger.info("Found %d failed %s log file(s)", len(log_files), pipeline.log_kind)
    seen: set[Tuple[str, str]] = set()
    for index, log_file in enumerate(log_files, start=1):
        result.processed += 1
        parsed = parse_header_file(log_file, pipeline.grammar)
        if not parsed.ok or parsed.job is None:
            reason = f"unparseable header: {parsed.error}"
            result.invalid.append((log_file, reason))
            logger.error("[%d/%d] %s: %s", index, len(log_files), log_file.name, reason)
            continue

        job = parsed.job
        stale = verify_target(job, repos_dir)
        if stale is not None:
            result.invalid.append((log_file, stale))
            logger.warning(
                "[%d/%d] Skipped (missing files): %s -> %s (%s)",
                index,
                len(log_files),
                job.identity,
                job.target_name,
                stale,
            )
            continue

        key = (job.identity, job.target_path)
        if key in seen:
            result.invalid.append((log_file, DUPLICATE_REASON))
            logger.info(
                "[%d/%d] %s already queued; skipping duplicate log.",
                index,
                len(log_files),
                job.identity,
            )
            continue
        seen.add(key)
        result.jobs.append(job)
        logger.info(
            "[%d/%d] Added to queue: %s -> %s",
            index,
            len(log_files),
            job.identity,
            job.target_name,
        )

    for path in (paths.queue_file, paths.progress_file):
        copy = backup_file(path)
        if copy is not None:
            result.backups.append(copy)

    if result.jobs:
        store = QueueStore(paths.queue_file, ProgressLedger(paths.progress_file))
        store.write(result.jobs)
        store.ledger.reset()
        logger.info(
            "Requeued %d %s job(s) into %s", result.valid_count, pipeline.name, paths.queue_file
        )
    else:
        remove_file(paths.queue_file)
        remove_file(paths.progress_file)
        logger.warning("No valid %s targets found to requeue.", pipeline.name)

    return result
