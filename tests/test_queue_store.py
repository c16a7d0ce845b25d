from __future__ import annotations

from pathlib import Path

from repo_batch.ledger import ProgressLedger
from repo_batch.models import Job, Outcome
from repo_batch.queue_store import QueueStore


def _store(tmp_path: Path) -> QueueStore:
    return QueueStore(tmp_path / "queue.txt", ProgressLedger(tmp_path / "progress.txt"))


def _jobs(*names: str) -> list[Job]:
    return [Job(name, f"repos/{name}/Dockerfile") for name in names]


def test_fresh_initialize_writes_queue_and_empty_ledger(tmp_path) -> None:
    store = _store(tmp_path)
    init = store.initialize_or_resume(_jobs("a", "b", "c"))

    assert init.resumed is False
    assert init.remaining == 3
    assert store.queue_path.read_text() == (
        "a|repos/a/Dockerfile\nb|repos/b/Dockerfile\nc|repos/c/Dockerfile\n"
    )
    assert store.ledger.exists()
    assert store.ledger.is_empty()


def test_dequeue_is_fifo_and_persists_after_each_pop(tmp_path) -> None:
    store = _store(tmp_path)
    store.initialize_or_resume(_jobs("a", "b", "c"))

    assert store.dequeue_next() == Job("a", "repos/a/Dockerfile")
    # The popped line is gone from disk before the job is handed out.
    assert "a|" not in store.queue_path.read_text()
    assert store.remaining_count() == 2
    assert store.dequeue_next().identity == "b"
    assert store.dequeue_next().identity == "c"
    assert store.dequeue_next() is None
    assert store.is_empty()


def test_resume_leaves_existing_queue_untouched(tmp_path) -> None:
    store = _store(tmp_path)
    store.initialize_or_resume(_jobs("a", "b", "c"))
    job = store.dequeue_next()
    store.ledger.record(job, Outcome.SUCCEEDED)
    before = store.queue_path.read_text()

    # A restart offers a different candidate list; it must be ignored.
    init = store.initialize_or_resume(_jobs("x", "y"))
    assert init.resumed is True
    assert init.remaining == 2
    assert init.completed == 1
    assert store.queue_path.read_text() == before

    # Resuming twice is the same as resuming once.
    again = store.initialize_or_resume(_jobs("z"))
    assert (again.remaining, again.completed) == (2, 1)


def test_fresh_start_backs_up_previous_ledger(tmp_path) -> None:
    store = _store(tmp_path)
    store.ledger.record(Job("old", "repos/old/Dockerfile"), Outcome.FAILED)
    previous = store.ledger.path.read_text()

    store.initialize_or_resume(_jobs("a"))

    backups = list(tmp_path.glob("progress.txt.backup.*"))
    assert len(backups) == 1
    assert backups[0].read_text() == previous
    assert store.ledger.is_empty()


def test_dequeue_drops_malformed_head_lines(tmp_path) -> None:
    store = _store(tmp_path)
    store.queue_path.write_text("garbage-without-separator\nb|repos/b/Dockerfile\n")

    assert store.dequeue_next() == Job("b", "repos/b/Dockerfile")
    assert store.remaining_count() == 0


def test_peek_does_not_mutate(tmp_path) -> None:
    store = _store(tmp_path)
    store.write(_jobs("a", "b", "c"))
    assert [j.identity for j in store.peek(2)] == ["a", "b"]
    assert store.remaining_count() == 3


def test_clear_backs_up_then_removes_both_files(tmp_path) -> None:
    store = _store(tmp_path)
    store.initialize_or_resume(_jobs("a", "b"))
    store.ledger.record(store.dequeue_next(), Outcome.SUCCEEDED)
    queue_before = store.queue_path.read_text()
    ledger_before = store.ledger.path.read_text()

    backups = store.clear(with_backup=True)

    assert not store.queue_path.exists()
    assert not store.ledger.path.exists()
    assert len(backups) == 2
    contents = {p.name.split(".cleared.")[0]: p.read_text() for p in backups}
    assert contents == {"queue.txt": queue_before, "progress.txt": ledger_before}


def test_remove_missing_queue_is_noop(tmp_path) -> None:
    store = _store(tmp_path)
    store.remove()
    assert not store.exists()
