"""
repo_batch.log_header - Per-job log header grammar

The first two lines of every per-job log are the only machine-readable record
of which job produced it. The requeue tool depends on them, so their shape is
a stable interchange format:

    <label> for <identity> - <timestamp>
    <target-label>: <target_path>

Any further lines (image name, working directory, separator, tool output) are
free text. Changing the two-line shape requires bumping HEADER_VERSION and
keeping a parser for older logs.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from .models import TIMESTAMP_FORMAT, Job

HEADER_VERSION = 1
HEADER_SEPARATOR = "=" * 49


@dataclass(frozen=True)
class HeaderGrammar:
    label: str
    target_label: str
    version: int = HEADER_VERSION

    @property
    def identity_pattern(self) -> re.Pattern[str]:
        # Greedy identity: the last " - " on the line starts the timestamp.
        return re.compile(rf"^{re.escape(self.label)} for (.+) - .*$")

    @property
    def target_pattern(self) -> re.Pattern[str]:
        return re.compile(rf"^{re.escape(self.target_label)}: (.+)$")

    def identity_line(self, identity: str, started_at: Optional[datetime] = None) -> str:
        stamp = (started_at or datetime.now()).strftime(TIMESTAMP_FORMAT)
        return f"{self.label} for {identity} - {stamp}"

    def target_line(self, target_path: str) -> str:
        return f"{self.target_label}: {target_path}"

    def render(
        self,
        job: Job,
        *,
        started_at: Optional[datetime] = None,
        details: Iterable[str] = (),
    ) -> List[str]:
        """Return the header lines for ``job``, ending with the separator."""
        lines = [
            self.identity_line(job.identity, started_at),
            self.target_line(job.target_path),
        ]
        lines.extend(details)
        lines.append(HEADER_SEPARATOR)
        return lines


@dataclass(frozen=True)
class HeaderParseResult:
    job: Optional[Job] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.job is not None


def parse_header_lines(lines: Iterable[str], grammar: HeaderGrammar) -> HeaderParseResult:
    """
    Scan ``lines`` until both header fields are found.

    The identity line must come before the target line. A target line seen
    first, or either line missing, is a parse error with a reason suitable
    for the requeue summary.
    """
    identity_re = grammar.identity_pattern
    target_re = grammar.target_pattern
    identity: Optional[str] = None

    for raw in lines:
        line = raw.rstrip("\r\n")
        if identity is None:
            match = identity_re.match(line)
            if match:
                identity = match.group(1).strip()
                continue
            if target_re.match(line):
                return HeaderParseResult(
                    error=f"'{grammar.target_label}:' line appears before the "
                    f"'{grammar.label} for' line"
                )
            continue
        match = target_re.match(line)
        if match:
            target_path = match.group(1).strip()
            if not identity or not target_path:
                return HeaderParseResult(error="empty identity or target path in header")
            return HeaderParseResult(job=Job(identity=identity, target_path=target_path))

    if identity is None:
        return HeaderParseResult(error=f"no '{grammar.label} for <identity> - <time>' line")
    return HeaderParseResult(error=f"no '{grammar.target_label}: <path>' line")


def parse_header_file(path: Path, grammar: HeaderGrammar) -> HeaderParseResult:
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return parse_header_lines(f, grammar)
    except OSError as exc:
        return HeaderParseResult(error=f"unreadable log: {exc}")
