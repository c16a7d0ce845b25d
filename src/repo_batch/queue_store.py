from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from .ledger import ProgressLedger
from .models import Job, QueueFormatError
from .state_files import backup_file, read_lines, remove_file, write_lines_atomic

logger = logging.getLogger("repo_batch.queue")


@dataclass
class InitResult:
    resumed: bool
    remaining: int
    completed: int


class QueueStore:
    """
    Durable FIFO of pending jobs, one ``identity|target_path`` line each.

    Single writer only: the Run Driver (or the requeue tool) owns mutation and
    concurrent invocations against the same files are not supported.
    """

    def __init__(self, queue_path: Path, ledger: ProgressLedger):
        self.queue_path = queue_path
        self.ledger = ledger

    def exists(self) -> bool:
        return self.queue_path.is_file()

    def initialize_or_resume(self, candidates: Iterable[Job]) -> InitResult:
        """
        Resume an existing queue or start a fresh one from ``candidates``.

        An existing queue file always wins, so re-running after a crash
        continues the previous batch instead of duplicating it. On a fresh
        start any non-empty ledger from an earlier batch is backed up before
        being reset.
        """
        if self.exists():
            result = InitResult(
                resumed=True,
                remaining=self.remaining_count(),
                completed=self.ledger.completed_count(),
            )
            logger.info(
                "Resuming existing queue %s: %d remaining, %d already completed.",
                self.queue_path,
                result.remaining,
                result.completed,
            )
            return result

        jobs = list(candidates)
        if self.ledger.exists() and not self.ledger.is_empty():
            backup_file(self.ledger.path)
        self.write(jobs)
        self.ledger.reset()
        logger.info("Initialized fresh queue %s with %d job(s).", self.queue_path, len(jobs))
        return InitResult(resumed=False, remaining=len(jobs), completed=0)

    def write(self, jobs: Iterable[Job]) -> None:
        write_lines_atomic(self.queue_path, (job.to_line() for job in jobs))

    def dequeue_next(self) -> Optional[Job]:
        """
        Pop the head job, or return None when the queue is empty.

        The shortened queue is persisted before the job is returned. A crash
        after this call and before the ledger append loses that job: it is
        neither re-run nor recorded.
        """
        lines = read_lines(self.queue_path)
        while lines:
            head, lines = lines[0], lines[1:]
            try:
                job = Job.from_line(head)
            except QueueFormatError as exc:
                logger.warning("Dropping malformed queue entry in %s: %s", self.queue_path, exc)
                write_lines_atomic(self.queue_path, lines)
                continue
            write_lines_atomic(self.queue_path, lines)
            return job
        return None

    def peek(self, n: int) -> List[Job]:
        jobs: List[Job] = []
        for line in read_lines(self.queue_path):
            if len(jobs) >= n:
                break
            try:
                jobs.append(Job.from_line(line))
            except QueueFormatError:
                continue
        return jobs

    def remaining_count(self) -> int:
        return len(read_lines(self.queue_path))

    def is_empty(self) -> bool:
        return self.remaining_count() == 0

    def remove(self) -> None:
        """Delete the queue file once it has been drained."""
        if remove_file(self.queue_path):
            logger.info("Queue %s drained and removed.", self.queue_path)

    def clear(self, with_backup: bool = True) -> List[Path]:
        """
        Destructive reset of queue and ledger.

        With ``with_backup`` both files are first copied to
        ``<file>.cleared.<epoch>``. Returns the backup paths written.
        """
        backups: List[Path] = []
        for path in (self.queue_path, self.ledger.path):
            if with_backup:
                copy = backup_file(path, tag="cleared")
                if copy is not None:
                    backups.append(copy)
            remove_file(path)
        return backups
