# streamprobe/common/logging.py
from __future__ import annotations

import logging
import os
from typing import Optional


def get_logger(name: str = "streamprobe", level: Optional[int | str] = None) -> logging.Logger:
    """
    Return a logger for the harness.
    If no handlers are set, we add a basicConfig once. Level falls back to
    STREAMPROBE_LOG_LEVEL, then INFO.
    """
    if level is None:
        level = os.getenv("STREAMPROBE_LOG_LEVEL", "INFO").upper()
    logger = logging.getLogger(name)
    if not logging.getLogger().handlers and not logger.handlers:
        logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s [%(threadName)s]: %(message)s")
    logger.setLevel(level)
    return logger
