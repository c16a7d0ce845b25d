# repo_batch/state_files.py
import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Iterable, List, Optional

logger = logging.getLogger("repo_batch.state")


def write_lines_atomic(path: Path, lines: Iterable[str]) -> None:
    """
    Replace ``path`` with ``lines`` (one per line) without ever exposing a
    half-written file.

    The content goes to a temp file in the same directory, is fsync'ed, and is
    then renamed over the target. Readers see either the old or the new file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            for line in lines:
                f.write(line)
                f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def append_line_durable(path: Path, line: str) -> None:
    """Append one line and force it to disk before returning."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(line)
        f.write("\n")
        f.flush()
        os.fsync(f.fileno())


def read_lines(path: Path) -> List[str]:
    """Return the non-blank lines of ``path``; a missing file reads as empty."""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return [line.rstrip("\r\n") for line in f if line.strip()]
    except FileNotFoundError:
        return []


def backup_file(path: Path, tag: str = "backup") -> Optional[Path]:
    """
    Copy ``path`` to ``<path>.<tag>.<epoch seconds>`` and return the copy.

    Returns None when there is nothing to back up. A numeric suffix is added
    if a backup with the same timestamp already exists.
    """
    if not path.is_file():
        return None
    stamp = int(time.time())
    candidate = path.with_name(f"{path.name}.{tag}.{stamp}")
    counter = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.name}.{tag}.{stamp}.{counter}")
        counter += 1
    shutil.copy2(path, candidate)
    logger.info("Backed up %s to %s", path, candidate)
    return candidate


def remove_file(path: Path) -> bool:
    """Delete ``path`` if present; return True when a file was removed."""
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    logger.debug("Removed %s", path)
    return True
