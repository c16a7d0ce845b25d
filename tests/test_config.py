from __future__ import annotations

from pathlib import Path

import pytest

from repo_batch.config import (
    DEFAULT_GITHUB_API_URL,
    DEFAULT_GITHUB_ORG,
    DEFAULT_JOB_TIMEOUT_SECONDS,
    DEFAULT_REPOS_DIR,
    DEFAULT_STATE_DIR,
    BatchConfig,
    get_batch_config,
    get_github_config,
)


def test_batch_config_defaults() -> None:
    """
    With no environment overrides, get_batch_config should use defaults.
    """
    cfg = get_batch_config()
    assert isinstance(cfg, BatchConfig)
    assert cfg.repos_dir == DEFAULT_REPOS_DIR
    assert cfg.state_dir == DEFAULT_STATE_DIR
    assert cfg.job_timeout_seconds == DEFAULT_JOB_TIMEOUT_SECONDS == 600


def test_batch_config_env_overrides(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("REPO_BATCH_REPOS_DIR", str(tmp_path / "repos"))
    monkeypatch.setenv("REPO_BATCH_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("REPO_BATCH_JOB_TIMEOUT", "42")

    cfg = get_batch_config()
    assert cfg.repos_dir == tmp_path / "repos"
    assert cfg.state_dir == tmp_path / "state"
    assert cfg.job_timeout_seconds == 42


def test_explicit_arguments_win_over_env(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("REPO_BATCH_REPOS_DIR", "/from/env")
    monkeypatch.setenv("REPO_BATCH_JOB_TIMEOUT", "42")

    cfg = get_batch_config(repos_dir=str(tmp_path), job_timeout_seconds=5)
    assert cfg.repos_dir == Path(str(tmp_path))
    assert cfg.job_timeout_seconds == 5


@pytest.mark.parametrize("raw", ["abc", "0", "-3", ""])
def test_invalid_timeout_falls_back_to_default(monkeypatch, raw: str) -> None:
    monkeypatch.setenv("REPO_BATCH_JOB_TIMEOUT", raw)
    assert get_batch_config().job_timeout_seconds == DEFAULT_JOB_TIMEOUT_SECONDS


def test_ensure_state_dir_creates_directory(tmp_path) -> None:
    cfg = BatchConfig(state_dir=tmp_path / "nested" / "state")
    cfg.ensure_state_dir()
    assert (tmp_path / "nested" / "state").is_dir()
    assert list((tmp_path / "nested" / "state").iterdir()) == []


def test_github_config_defaults_and_overrides(monkeypatch) -> None:
    cfg = get_github_config()
    assert cfg.org == DEFAULT_GITHUB_ORG
    assert cfg.api_url == DEFAULT_GITHUB_API_URL
    assert cfg.token is None

    monkeypatch.setenv("REPO_BATCH_GITHUB_ORG", "example-org")
    monkeypatch.setenv("REPO_BATCH_GITHUB_TOKEN", "t0ken")
    monkeypatch.setenv("REPO_BATCH_GITHUB_API_URL", "https://ghe.example.org/api/v3/")
    cfg = get_github_config()
    assert cfg.org == "example-org"
    assert cfg.token == "t0ken"
    assert cfg.api_url == "https://ghe.example.org/api/v3"

    assert get_github_config(org="flag-org").org == "flag-org"
