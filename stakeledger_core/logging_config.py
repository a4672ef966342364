"""
Logging setup for StakeLedger.

Every module logs through ``logging.getLogger("stakeledger_<area>")``
(ledger, params, token, storage, api, runner).  Log calls may attach ledger
context through ``extra=`` using the keys in ``CONTEXT_FIELDS``; both
formatters render them.

Output formats:
  - ``human``: ``12:00:01.250 INFO    ledger | Registered rAlice  op=register``
  - ``json``: one object per line, context fields as top-level keys

Per-area levels come from ``[logging.areas]`` in the config file, e.g.
``areas = { storage = "WARNING", ledger = "DEBUG" }``.

Usage:
    from stakeledger_core.logging_config import setup_logging
    setup_logging(level="DEBUG", fmt="json", log_file="logs/stakeledger.log")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Mapping, Optional

if TYPE_CHECKING:
    from stakeledger_core.config import LoggingConfig

LOGGER_PREFIX = "stakeledger_"

# Attributes a log call may pass through ``extra=``
CONTEXT_FIELDS = ("op", "account", "amount", "code")


def _area(record: logging.LogRecord) -> str:
    return record.name.removeprefix(LOGGER_PREFIX)


def _context(record: logging.LogRecord) -> dict:
    return {k: getattr(record, k) for k in CONTEXT_FIELDS if hasattr(record, k)}


def _parse_level(level: str) -> int:
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


class _JSONFormatter(logging.Formatter):
    """Newline-delimited JSON, one object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "area": _area(record),
            "message": record.getMessage(),
            **_context(record),
        }
        if record.exc_info and record.exc_info[1]:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class _HumanFormatter(logging.Formatter):
    """Single line per record, level optionally coloured for terminals."""

    LEVEL_COLOURS = {
        logging.DEBUG: "\033[2m",        # dim
        logging.INFO: "\033[32m",        # green
        logging.WARNING: "\033[33m",     # yellow
        logging.ERROR: "\033[31m",       # red
        logging.CRITICAL: "\033[1;31m",  # bold red
    }
    RESET = "\033[0m"

    def __init__(self, colour: bool = True):
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        when = datetime.fromtimestamp(record.created)
        stamp = when.strftime("%H:%M:%S.") + f"{when.microsecond // 1000:03d}"
        level = f"{record.levelname:<7}"
        if self.colour:
            level = f"{self.LEVEL_COLOURS.get(record.levelno, '')}{level}{self.RESET}"
        line = f"{stamp} {level} {_area(record)} | {record.getMessage()}"
        ctx = _context(record)
        if ctx:
            line += "  " + " ".join(f"{k}={v}" for k, v in ctx.items())
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
    areas: Optional[Mapping[str, str]] = None,
) -> None:
    """
    Install StakeLedger's handlers on the root logger.

    Parameters
    ----------
    level : str
        Root level name (DEBUG .. CRITICAL).
    fmt : str
        ``"human"`` or ``"json"`` for the stderr handler.
    log_file : str, optional
        Extra JSON-lines file handler; parent directories are created.
    areas : mapping, optional
        ``{"storage": "WARNING"}`` style overrides for ``stakeledger_<area>``.

    Calling it again replaces the previous handlers.
    """
    root = logging.getLogger()
    root.setLevel(_parse_level(level))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    stderr = logging.StreamHandler(sys.stderr)
    stderr.setFormatter(
        _JSONFormatter() if fmt == "json" else _HumanFormatter(colour=sys.stderr.isatty())
    )
    root.addHandler(stderr)

    if log_file:
        target = Path(log_file)
        target.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(target, encoding="utf-8")
        file_handler.setFormatter(_JSONFormatter())
        root.addHandler(file_handler)

    for area, area_level in (areas or {}).items():
        logging.getLogger(f"{LOGGER_PREFIX}{area}").setLevel(_parse_level(area_level))

    # aiohttp logs every request on its access logger
    if root.level > logging.DEBUG:
        logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


def setup_logging_from_config(cfg: LoggingConfig) -> None:
    setup_logging(level=cfg.level, fmt=cfg.format, log_file=cfg.file, areas=cfg.areas)


def set_level(level: str) -> list[str]:
    """Apply *level* to every ``stakeledger_*`` logger created so far; return their names."""
    value = _parse_level(level)
    names = sorted(
        name for name in logging.root.manager.loggerDict
        if name.startswith(LOGGER_PREFIX)
    )
    for name in names:
        logging.getLogger(name).setLevel(value)
    return names
