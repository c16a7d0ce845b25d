from __future__ import annotations

import logging

from repo_batch.logging_config import _get_log_level_from_env, configure_logging


def test_configure_logging_sets_debug_level(monkeypatch) -> None:
    monkeypatch.setenv("REPO_BATCH_LOG_LEVEL", "DEBUG")
    configure_logging()
    root = logging.getLogger()
    assert root.level == logging.DEBUG


def test_configure_logging_defaults_to_info(monkeypatch) -> None:
    monkeypatch.delenv("REPO_BATCH_LOG_LEVEL", raising=False)
    configure_logging()
    root = logging.getLogger()
    # Either INFO or lower (NOTSET) is acceptable, but INFO is the default.
    assert root.level in (logging.INFO, logging.NOTSET)


def test_unknown_log_level_falls_back_to_info(monkeypatch) -> None:
    monkeypatch.setenv("REPO_BATCH_LOG_LEVEL", "chatty")
    assert _get_log_level_from_env() == logging.INFO
