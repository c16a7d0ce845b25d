from __future__ import annotations

import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _get_log_level_from_env(env_var: str = "REPO_BATCH_LOG_LEVEL") -> int:
    """
    Resolve the desired log level from an environment variable.

    Defaults to INFO when the variable is unset or invalid.
    """
    value = os.getenv(env_var, "INFO").upper()
    level = getattr(logging, value, logging.INFO)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: Optional[int] = None) -> None:
    """
    Configure basic logging for the batch tools.

    Safe to call more than once: when handlers already exist only the level
    is adjusted.
    """
    if level is None:
        level = _get_log_level_from_env()

    root_logger = logging.getLogger()

    if root_logger.handlers:
        root_logger.setLevel(level)
        return

    logging.basicConfig(level=level, format=LOG_FORMAT)

    # httpx logs every request at INFO; keep that for --log-level DEBUG runs.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


__all__ = ["configure_logging"]
