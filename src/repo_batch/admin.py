from __future__ import annotations

from pathlib import Path
from typing import List

from .ledger import ProgressLedger
from .models import QueueStatus
from .pipelines import Pipeline, PipelinePaths
from .queue_store import QueueStore

DEFAULT_STATUS_PREVIEW = 5


def open_store(paths: PipelinePaths) -> QueueStore:
    return QueueStore(paths.queue_file, ProgressLedger(paths.progress_file))


def queue_status(store: QueueStore, preview: int = DEFAULT_STATUS_PREVIEW) -> QueueStatus:
    """
    Read-only snapshot of a pipeline's queue and ledger.
    """
    return QueueStatus(
        queue_exists=store.exists(),
        remaining=store.remaining_count(),
        completed=store.ledger.completed_count(),
        next_up=store.peek(preview),
        recent=store.ledger.tail(preview),
    )


def clear_state(store: QueueStore) -> List[Path]:
    """
    Back up and remove the queue and progress files.

    Callers at a CLI boundary must obtain confirmation first.
    """
    return store.clear(with_backup=True)


def describe_pipeline_state(pipeline: Pipeline, paths: PipelinePaths) -> List[str]:
    return [
        f"Pipeline:      {pipeline.name}",
        f"Queue file:    {paths.queue_file}",
        f"Progress file: {paths.progress_file}",
        f"Log directory: {paths.log_dir}",
        f"Error report:  {paths.errors_file}",
    ]
