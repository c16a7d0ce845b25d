from __future__ import annotations

import pytest

_ENV_VARS = (
    "REPO_BATCH_REPOS_DIR",
    "REPO_BATCH_STATE_DIR",
    "REPO_BATCH_JOB_TIMEOUT",
    "REPO_BATCH_LOG_LEVEL",
    "REPO_BATCH_GITHUB_ORG",
    "REPO_BATCH_GITHUB_TOKEN",
    "REPO_BATCH_GITHUB_API_URL",
)


@pytest.fixture(autouse=True)
def _isolate_process_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Make tests deterministic even when run from an operator's shell.

    Operators typically export REPO_BATCH_* settings (timeouts, a GitHub
    token, a shared state directory). If those leak into pytest runs, tests
    can read or write real batch state.
    """
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
