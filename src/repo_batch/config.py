from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# === Core paths ===

# Directory holding one cloned repository per sub-directory.
DEFAULT_REPOS_DIR = Path("repos")

# Directory where queue, progress, error-report files and per-job log
# directories live. Relative paths resolve against the current directory,
# matching the layout operators get when running from a checkout root.
DEFAULT_STATE_DIR = Path(".")

# === Executor ===

# Hard wall-clock limit for a single build/install attempt.
DEFAULT_JOB_TIMEOUT_SECONDS = 600

# Exit code reported for an attempt killed by the timeout (same value as
# coreutils `timeout`, so logs stay familiar).
TIMEOUT_EXIT_CODE = 124

# Exit code reported when the tool executable could not be started.
COMMAND_NOT_FOUND_EXIT_CODE = 127

# Seconds to wait after SIGTERM before escalating to SIGKILL.
TERMINATE_GRACE_SECONDS = 10

# === Repository cloning ===

DEFAULT_GITHUB_ORG = "DEFRA"
DEFAULT_GITHUB_API_URL = "https://api.github.com"
DEFAULT_GITHUB_PER_PAGE = 100
DEFAULT_CLONE_TIMEOUT_SECONDS = 900


def _read_positive_int(env_var: str, default: int) -> int:
    raw = os.environ.get(env_var, str(default)).strip()
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


@dataclass
class BatchConfig:
    """
    Configuration for the batch Run Driver and the requeue tool.
    """

    repos_dir: Path = DEFAULT_REPOS_DIR
    state_dir: Path = DEFAULT_STATE_DIR
    job_timeout_seconds: int = DEFAULT_JOB_TIMEOUT_SECONDS

    def ensure_state_dir(self) -> None:
        """
        Ensure the state directory exists and is writable.
        """
        self.state_dir.mkdir(parents=True, exist_ok=True)
        try:
            with tempfile.NamedTemporaryFile(
                dir=self.state_dir, prefix=".repo_batch_write_test_", delete=True
            ) as file:
                file.write(b"ok")
                file.flush()
        except OSError as exc:
            raise RuntimeError(f"State directory is not writable: {self.state_dir}") from exc


def get_batch_config(
    *,
    repos_dir: Optional[str] = None,
    state_dir: Optional[str] = None,
    job_timeout_seconds: Optional[int] = None,
) -> BatchConfig:
    """
    Resolve the batch configuration.

    Explicit arguments (usually CLI flags) win over REPO_BATCH_* environment
    variables, which win over the module defaults.
    """
    repos = repos_dir or os.environ.get("REPO_BATCH_REPOS_DIR", "").strip()
    state = state_dir or os.environ.get("REPO_BATCH_STATE_DIR", "").strip()
    if job_timeout_seconds is not None and job_timeout_seconds > 0:
        timeout = job_timeout_seconds
    else:
        timeout = _read_positive_int("REPO_BATCH_JOB_TIMEOUT", DEFAULT_JOB_TIMEOUT_SECONDS)
    return BatchConfig(
        repos_dir=Path(repos) if repos else DEFAULT_REPOS_DIR,
        state_dir=Path(state) if state else DEFAULT_STATE_DIR,
        job_timeout_seconds=timeout,
    )


@dataclass
class GitHubConfig:
    org: str = DEFAULT_GITHUB_ORG
    api_url: str = DEFAULT_GITHUB_API_URL
    token: Optional[str] = None
    per_page: int = DEFAULT_GITHUB_PER_PAGE


def get_github_config(*, org: Optional[str] = None) -> GitHubConfig:
    """
    Resolve GitHub settings for repository enumeration.

    The token is optional; unauthenticated requests work for public
    organisations but hit the API rate limit much sooner.
    """
    resolved_org = org or os.environ.get("REPO_BATCH_GITHUB_ORG", "").strip()
    api_url = os.environ.get("REPO_BATCH_GITHUB_API_URL", DEFAULT_GITHUB_API_URL).strip()
    token = os.environ.get("REPO_BATCH_GITHUB_TOKEN", "").strip() or None
    return GitHubConfig(
        org=resolved_org or DEFAULT_GITHUB_ORG,
        api_url=(api_url or DEFAULT_GITHUB_API_URL).rstrip("/"),
        token=token,
    )
