"""Tests for logging setup and bound log context."""

import logging

import structlog

from recon.logging import log_context, setup_logging


class TestLogContext:
    def test_binds_and_restores(self) -> None:
        structlog.contextvars.clear_contextvars()
        with log_context(scan_id="scan-1"):
            assert structlog.contextvars.get_contextvars() == {"scan_id": "scan-1"}
            with log_context(cycle=2):
                assert structlog.contextvars.get_contextvars() == {
                    "scan_id": "scan-1",
                    "cycle": 2,
                }
            assert structlog.contextvars.get_contextvars() == {"scan_id": "scan-1"}
        assert structlog.contextvars.get_contextvars() == {}


class TestSetupLogging:
    def test_levels_and_noisy_loggers(self) -> None:
        setup_logging("debug", "json")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)
        assert logging.getLogger("aiosqlite").level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self) -> None:
        setup_logging("chatty")
        assert logging.getLogger().level == logging.INFO
