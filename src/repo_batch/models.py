from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

FIELD_SEPARATOR = "|"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class QueueFormatError(ValueError):
    """Raised when a queue or ledger line does not match its wire format."""


class Outcome(enum.Enum):
    SUCCEEDED = "SUCCESS"
    FAILED = "FAILED"

    @classmethod
    def from_wire(cls, raw: str) -> "Outcome":
        value = raw.strip()
        for member in cls:
            if member.value == value:
                return member
        raise QueueFormatError(f"Unknown outcome {raw!r}")


@dataclass(frozen=True)
class Job:
    """
    One unit of work: a repository identity plus the target file the executor
    is pointed at.

    The same identity may appear several times when a repository holds more
    than one target.
    """

    identity: str
    target_path: str

    def to_line(self) -> str:
        return f"{self.identity}{FIELD_SEPARATOR}{self.target_path}"

    @classmethod
    def from_line(cls, line: str) -> "Job":
        raw = line.rstrip("\r\n")
        identity, sep, target_path = raw.partition(FIELD_SEPARATOR)
        if not sep or not identity.strip() or not target_path.strip():
            raise QueueFormatError(f"Malformed queue line: {raw!r}")
        return cls(identity=identity, target_path=target_path)

    @property
    def target_name(self) -> str:
        return Path(self.target_path).name


@dataclass(frozen=True)
class ProgressRecord:
    timestamp: str
    identity: str
    target_path: str
    outcome: Outcome

    @classmethod
    def for_job(
        cls, job: Job, outcome: Outcome, *, when: Optional[datetime] = None
    ) -> "ProgressRecord":
        stamp = (when or datetime.now()).strftime(TIMESTAMP_FORMAT)
        return cls(
            timestamp=stamp,
            identity=job.identity,
            target_path=job.target_path,
            outcome=outcome,
        )

    @property
    def job(self) -> Job:
        return Job(identity=self.identity, target_path=self.target_path)

    def to_line(self) -> str:
        return FIELD_SEPARATOR.join(
            [self.timestamp, self.identity, self.target_path, self.outcome.value]
        )

    @classmethod
    def from_line(cls, line: str) -> "ProgressRecord":
        raw = line.rstrip("\r\n")
        timestamp, sep, rest = raw.partition(FIELD_SEPARATOR)
        if not sep:
            raise QueueFormatError(f"Malformed ledger line: {raw!r}")
        rest, sep, outcome = rest.rpartition(FIELD_SEPARATOR)
        if not sep:
            raise QueueFormatError(f"Malformed ledger line: {raw!r}")
        # Identity and target path use the same rules as a queue line.
        job = Job.from_line(rest)
        return cls(
            timestamp=timestamp,
            identity=job.identity,
            target_path=job.target_path,
            outcome=Outcome.from_wire(outcome),
        )


@dataclass
class JobResult:
    job: Job
    outcome: Outcome
    exit_code: int
    timed_out: bool = False
    log_path: Optional[Path] = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCEEDED


@dataclass
class RunSummary:
    """
    Aggregate result of one Run Driver invocation.

    Counts cover this invocation only; the ledger remains the authority for
    totals across resumed runs.
    """

    pipeline: str
    resumed: bool = False
    discovered: int = 0
    repositories_checked: int = 0
    repositories_with_targets: int = 0
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    remaining: int = 0
    interrupted: bool = False
    failed_jobs: List[Job] = field(default_factory=list)

    def add_result(self, result: JobResult) -> None:
        self.attempted += 1
        if result.succeeded:
            self.succeeded += 1
        else:
            self.failed += 1
            self.failed_jobs.append(result.job)


@dataclass
class RequeueResult:
    processed: int = 0
    jobs: List[Job] = field(default_factory=list)
    invalid: List[Tuple[Path, str]] = field(default_factory=list)
    backups: List[Path] = field(default_factory=list)

    @property
    def valid_count(self) -> int:
        return len(self.jobs)

    @property
    def invalid_count(self) -> int:
        return len(self.invalid)


@dataclass
class QueueStatus:
    queue_exists: bool
    remaining: int
    completed: int
    next_up: List[Job] = field(default_factory=list)
    recent: List[ProgressRecord] = field(default_factory=list)
