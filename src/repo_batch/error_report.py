from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from .log_header import HEADER_SEPARATOR
from .models import TIMESTAMP_FORMAT, JobResult

logger = logging.getLogger("repo_batch.errors")


class ErrorReport:
    """
    Flat, append-only file of human-readable failure blocks.

    Each block points at the retained per-job log. The file is never truncated
    by a run, so a resumed batch keeps the evidence of earlier attempts.
    """

    def __init__(self, path: Path, *, title: str, target_label: str, log_kind: str):
        self.path = path
        self.title = title
        self.target_label = target_label
        self.log_kind = log_kind

    def initialize(self) -> None:
        if self.path.exists():
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            f.write(f"{self.title} - {datetime.now():{TIMESTAMP_FORMAT}}\n")
            f.write(f"{HEADER_SEPARATOR}\n\n")

    def append(self, result: JobResult, *, when: Optional[datetime] = None) -> None:
        stamp = (when or datetime.now()).strftime(TIMESTAMP_FORMAT)
        lines = [
            f"Repository: {result.job.identity}",
            f"{self.target_label}: {result.job.target_path}",
            f"Error occurred on: {stamp}",
            f"Exit code: {result.exit_code}",
        ]
        if result.timed_out:
            lines.append("Timed out: yes")
        lines.append(f"Detailed {self.log_kind} log: {result.log_path}")
        lines.extend(["", HEADER_SEPARATOR, ""])

        self.initialize()
        with open(self.path, "a", encoding="utf-8") as f:
            f.write("\n".join(lines))
            f.write("\n")
        logger.debug("Recorded failure of %s in %s", result.job.identity, self.path)
