from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from .models import Job
from .pipelines import EXCLUDED_DIR_NAMES, Pipeline, log_dir_names

logger = logging.getLogger("repo_batch.discovery")

# Files directly inside a repository are depth 1.
MAX_TARGET_DEPTH = 3


@dataclass
class DiscoveryResult:
    jobs: List[Job] = field(default_factory=list)
    repositories_checked: int = 0
    repositories_with_targets: int = 0


def list_repositories(repos_dir: Path) -> List[Path]:
    """Immediate sub-directories of ``repos_dir``, sorted by name."""
    skip = log_dir_names()
    try:
        entries = [p for p in repos_dir.iterdir() if p.is_dir() and p.name not in skip]
    except FileNotFoundError:
        return []
    return sorted(entries, key=lambda p: p.name)


def find_targets(
    repo_path: Path, pipeline: Pipeline, max_depth: int = MAX_TARGET_DEPTH
) -> List[Path]:
    """
    Find the pipeline's target files inside one repository.

    Walks at most ``max_depth`` levels and never descends into excluded
    directories (dependency caches, VCS metadata, build output).
    """
    found: List[Path] = []
    root_depth = len(repo_path.parts)
    for dirpath, dirnames, filenames in os.walk(repo_path):
        current = Path(dirpath)
        depth = len(current.parts) - root_depth
        # Files in `current` sit at depth + 1.
        if depth + 1 > max_depth:
            dirnames[:] = []
            continue
        dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_DIR_NAMES)
        for name in sorted(filenames):
            if pipeline.matches_target(name) and (current / name).is_file():
                found.append(current / name)
    return found


def discover_jobs(repos_dir: Path, pipeline: Pipeline) -> DiscoveryResult:
    """
    Build the candidate job list for ``pipeline`` from ``repos_dir``.

    No side effects. An empty result is not an error.
    """
    result = DiscoveryResult()
    for repo_path in list_repositories(repos_dir):
        result.repositories_checked += 1
        targets = find_targets(repo_path, pipeline)
        if not targets:
            logger.debug("No %s targets in %s", pipeline.name, repo_path.name)
            continue
        result.repositories_with_targets += 1
        logger.debug("Found %d target(s) in %s", len(targets), repo_path.name)
        for target in targets:
            result.jobs.append(Job(identity=repo_path.name, target_path=str(target)))
    logger.info(
        "Discovered %d %s job(s) in %d of %d repositories under %s.",
        len(result.jobs),
        pipeline.name,
        result.repositories_with_targets,
        result.repositories_checked,
        repos_dir,
    )
    return result
