"""Tests for the structlog setup."""

from __future__ import annotations

import logging

from wap3_escrow.logging_config import QUIET_LOGGERS, drop_unset_fields, setup_logging


class TestDropUnsetFields:
    def test_none_values_removed(self) -> None:
        event = {"event": "escrow.request_failed", "escrow_id": None, "caller": None, "code": "X"}
        assert drop_unset_fields(None, "warning", event) == {
            "event": "escrow.request_failed",
            "code": "X",
        }

    def test_falsy_values_kept(self) -> None:
        event = {"event": "escrow.created", "escrow_id": 0, "caller": ""}
        assert drop_unset_fields(None, "info", event) == event


class TestSetupLogging:
    def test_single_root_handler_and_level(self) -> None:
        setup_logging(log_level="warning", json_logs=True)
        setup_logging(log_level="info", json_logs=True)

        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.level == logging.INFO

    def test_unknown_level_falls_back_to_debug(self) -> None:
        setup_logging(log_level="chatty")
        assert logging.getLogger().level == logging.DEBUG

    def test_quiet_loggers_raised_to_warning(self) -> None:
        setup_logging()
        for name in QUIET_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING
