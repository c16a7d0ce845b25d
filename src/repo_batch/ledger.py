from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

from .models import Job, Outcome, ProgressRecord, QueueFormatError
from .state_files import append_line_durable, read_lines, write_lines_atomic

logger = logging.getLogger("repo_batch.ledger")


class ProgressLedger:
    """
    Append-only record of completed job attempts.

    Every count is recomputed from the file; there are no cached counters.
    A non-empty ledger means a batch has already made progress.
    """

    def __init__(self, path: Path):
        self.path = path

    def exists(self) -> bool:
        return self.path.is_file()

    def reset(self) -> None:
        """Create an empty ledger, replacing any existing file."""
        write_lines_atomic(self.path, [])

    def record(
        self, job: Job, outcome: Outcome, *, when: Optional[datetime] = None
    ) -> ProgressRecord:
        entry = ProgressRecord.for_job(job, outcome, when=when)
        append_line_durable(self.path, entry.to_line())
        return entry

    def records(self) -> Iterator[ProgressRecord]:
        for lineno, line in enumerate(read_lines(self.path), start=1):
            try:
                yield ProgressRecord.from_line(line)
            except QueueFormatError as exc:
                logger.warning("Skipping %s line %d: %s", self.path, lineno, exc)

    def completed_count(self) -> int:
        return sum(1 for _ in self.records())

    def success_count(self) -> int:
        return sum(1 for r in self.records() if r.outcome is Outcome.SUCCEEDED)

    def failed_count(self) -> int:
        return sum(1 for r in self.records() if r.outcome is Outcome.FAILED)

    def tail(self, n: int) -> List[ProgressRecord]:
        if n <= 0:
            return []
        return list(self.records())[-n:]

    def is_empty(self) -> bool:
        return not read_lines(self.path)
