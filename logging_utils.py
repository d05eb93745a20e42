"""Tagged console logging for the analysis pipeline.

Every module logs through log_event(level, tag, message, **fields); the tag
names the stage (Spectrum, BEAT, Tempo, Key, Bars, Session, Config, Run) and
fields are appended as key=value pairs, e.g.

    [INFO][Tempo] BPM updated | detected=120.0 limited=120.0 deltas=4
"""
from __future__ import annotations

import logging
from typing import Any

_logger = logging.getLogger("spectrumbeats")
if not _logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("[%(levelname)s][%(tag)s] %(message)s")
    handler.setFormatter(formatter)
    _logger.addHandler(handler)
    _logger.setLevel(logging.INFO)

_LEVEL_ALIASES = {"WARN": "WARNING"}


class _TagAdapter(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: dict[str, Any]):
        tag = kwargs.pop("tag", "Engine")
        kwargs.setdefault("extra", {})["tag"] = tag
        return msg, kwargs


_logger_adapter = _TagAdapter(_logger, {})


def _level_value(level: str | None) -> int:
    level_name = (level or "INFO").upper()
    level_name = _LEVEL_ALIASES.get(level_name, level_name)
    level_val = getattr(logging, level_name, logging.INFO)
    return level_val if isinstance(level_val, int) else logging.INFO


def log_event(level: str, tag: str, message: str, **fields: Any) -> None:
    """Log a message with level+tag, appending key=value fields when provided."""
    level_val = _level_value(level)
    if not _logger.isEnabledFor(level_val):
        return
    if fields:
        extras = " ".join(f"{k}={v}" for k, v in fields.items())
        message = f"{message} | {extras}"
    _logger_adapter.log(level_val, message, tag=tag)


def set_log_level(level: str) -> None:
    """Set global log level (DEBUG/INFO/WARNING/ERROR)."""
    _logger.setLevel(_level_value(level))


def get_log_level() -> str:
    """Return current global log level name."""
    return logging.getLevelName(_logger.level)
