"""Tagged logging helper for cadence.

Every module logs through log_event() on the shared "cadence" logger, tagged
with the component that emitted it: StepDetector, Tempo, RateControl, Session,
Playback, Config, Decoder, and Play/Analyze for the CLI commands. Messages
render as ``[LEVEL][Tag] message | key=value ...`` so a walking session can be
followed from one stream (steps, SPM changes, tempo results, rate updates).

"WARN" is accepted as an alias for WARNING. The CLI sets the level once at
startup from ``--log-level`` or the saved config's ``log_level``.
"""
from __future__ import annotations

import logging
from typing import Any

_logger = logging.getLogger("cadence")
if not _logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("[%(levelname)s][%(tag)s] %(message)s")
    handler.setFormatter(formatter)
    _logger.addHandler(handler)
    _logger.setLevel(logging.INFO)


class _TagAdapter(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: dict[str, Any]):
        tag = kwargs.pop("tag", "Cadence")
        kwargs.setdefault("extra", {})["tag"] = tag
        return msg, kwargs


_logger_adapter = _TagAdapter(_logger, {})

# "WARN" is accepted as an alias so call sites can stay short
_LEVEL_ALIASES = {"WARN": "WARNING"}


def log_event(level: str, tag: str, message: str, **fields: Any) -> None:
    """Log a message with level+tag, appending key=value fields when provided."""
    if fields:
        extras = " ".join(f"{k}={v}" for k, v in fields.items())
        message = f"{message} | {extras}"
    level_name = level.upper()
    level_name = _LEVEL_ALIASES.get(level_name, level_name)
    level_val = getattr(logging, level_name, logging.INFO)
    _logger_adapter.log(level_val, message, tag=tag)


def set_log_level(level: str) -> None:
    """Set global log level (DEBUG/INFO/WARNING/ERROR)."""
    level_name = (level or "INFO").upper()
    level_name = _LEVEL_ALIASES.get(level_name, level_name)
    level_val = getattr(logging, level_name, logging.INFO)
    _logger.setLevel(level_val)


def get_log_level() -> str:
    """Return current global log level name."""
    return logging.getLevelName(_logger.level)
