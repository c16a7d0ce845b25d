from __future__ import annotations

from datetime import datetime

from repo_batch.ledger import ProgressLedger
from repo_batch.models import Job, Outcome


def test_record_appends_one_line_per_attempt(tmp_path) -> None:
    ledger = ProgressLedger(tmp_path / "progress.txt")
    ledger.reset()
    job = Job("serviceA", "repos/serviceA/Dockerfile")

    ledger.record(job, Outcome.SUCCEEDED, when=datetime(2024, 5, 1, 12, 0, 0))
    ledger.record(job, Outcome.FAILED, when=datetime(2024, 5, 1, 12, 5, 0))

    assert ledger.path.read_text().splitlines() == [
        "2024-05-01 12:00:00|serviceA|repos/serviceA/Dockerfile|SUCCESS",
        "2024-05-01 12:05:00|serviceA|repos/serviceA/Dockerfile|FAILED",
    ]
    assert ledger.completed_count() == 2
    assert ledger.success_count() == 1
    assert ledger.failed_count() == 1


def test_counts_skip_malformed_lines(tmp_path) -> None:
    path = tmp_path / "progress.txt"
    path.write_text(
        "2024-05-01 12:00:00|a|repos/a/package.json|SUCCESS\n"
        "half a line\n"
        "\n"
        "2024-05-01 12:01:00|b|repos/b/package.json|FAILED\n"
    )
    ledger = ProgressLedger(path)
    assert ledger.completed_count() == 2
    assert [r.identity for r in ledger.tail(1)] == ["b"]


def test_missing_ledger_reads_as_empty(tmp_path) -> None:
    ledger = ProgressLedger(tmp_path / "absent.txt")
    assert not ledger.exists()
    assert ledger.is_empty()
    assert ledger.completed_count() == 0
    assert ledger.tail(5) == []
