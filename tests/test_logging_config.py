"""
Tests for the logging setup: formatters, context fields, handler
installation, per-area levels and runtime level changes.
"""

from __future__ import annotations

import json
import logging
import sys

import pytest

from stakeledger_core.config import LoggingConfig
from stakeledger_core.logging_config import (
    _HumanFormatter,
    _JSONFormatter,
    set_level,
    setup_logging,
    setup_logging_from_config,
)


def _record(msg="Registered rAlice", level=logging.INFO, name="stakeledger_ledger", **extra):
    rec = logging.LogRecord(name, level, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(rec, key, value)
    return rec


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    touched = ("stakeledger_storage", "stakeledger_ledger", "aiohttp.access")
    levels = {name: logging.getLogger(name).level for name in touched}
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    for name, lvl in levels.items():
        logging.getLogger(name).setLevel(lvl)


class TestFormatters:
    def test_json_fields(self):
        out = json.loads(_JSONFormatter().format(_record()))
        assert out["level"] == "INFO"
        assert out["area"] == "ledger"
        assert out["message"] == "Registered rAlice"
        assert "time" in out

    def test_json_context(self):
        rec = _record(op="unstake", account="rAlice", amount=980, code="transfer_failed")
        out = json.loads(_JSONFormatter().format(rec))
        assert (out["op"], out["account"], out["amount"], out["code"]) == (
            "unstake", "rAlice", 980, "transfer_failed",
        )

    def test_json_includes_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            rec = logging.LogRecord(
                "stakeledger_api", logging.ERROR, __file__, 1, "failed", None, sys.exc_info(),
            )
        out = json.loads(_JSONFormatter().format(rec))
        assert "ValueError: boom" in out["error"]

    def test_human_line(self):
        line = _HumanFormatter(colour=False).format(_record(op="register"))
        assert "INFO    ledger | Registered rAlice" in line
        assert line.endswith("op=register")
        assert "\033[" not in line

    def test_human_colour(self):
        line = _HumanFormatter(colour=True).format(_record(level=logging.WARNING))
        assert "\033[33mWARNING" in line


class TestSetup:
    def test_handlers_replaced_on_repeat(self):
        setup_logging(level="DEBUG")
        setup_logging(level="DEBUG")
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG

    def test_json_console(self):
        setup_logging(fmt="json")
        assert isinstance(logging.getLogger().handlers[0].formatter, _JSONFormatter)

    def test_file_handler_writes_json(self, tmp_path):
        log_file = tmp_path / "logs" / "ledger.log"
        setup_logging(level="INFO", log_file=str(log_file))
        logging.getLogger("stakeledger_test").info("hello", extra={"op": "stake"})
        for h in logging.getLogger().handlers:
            h.flush()
        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["message"] == "hello"
        assert entry["op"] == "stake"

    def test_area_levels(self):
        setup_logging(level="INFO", areas={"storage": "warning", "ledger": "DEBUG"})
        assert logging.getLogger("stakeledger_storage").level == logging.WARNING
        assert logging.getLogger("stakeledger_ledger").level == logging.DEBUG

    def test_access_log_quiet_above_debug(self):
        setup_logging(level="INFO")
        assert logging.getLogger("aiohttp.access").level == logging.WARNING

    def test_unknown_root_level(self):
        with pytest.raises(ValueError):
            setup_logging(level="LOUD")

    def test_from_config(self):
        setup_logging_from_config(
            LoggingConfig(level="WARNING", format="json", areas={"storage": "ERROR"})
        )
        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, _JSONFormatter)
        assert logging.getLogger("stakeledger_storage").level == logging.ERROR


class TestSetLevel:
    def test_adjusts_family_only(self):
        ours = logging.getLogger("stakeledger_ledger")
        other = logging.getLogger("aiohttp.access")
        before_other = other.level
        names = set_level("error")
        assert "stakeledger_ledger" in names
        assert all(n.startswith("stakeledger_") for n in names)
        assert ours.level == logging.ERROR
        assert other.level == before_other
        set_level("NOTSET")

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            set_level("chatty")
