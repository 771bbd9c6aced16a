"""Tests for structured logging setup and context binding."""

from __future__ import annotations

import contextlib
import logging
from pathlib import Path
from typing import Iterator

import pytest
import structlog

from utility_billing.logging.context import bind_context, log_context
from utility_billing.logging.structured import setup_logging


@contextlib.contextmanager
def _preserved_root_logger() -> Iterator[logging.Logger]:
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    try:
        yield root
    finally:
        for handler in root.handlers:
            if handler not in handlers:
                handler.close()
        root.handlers[:] = handlers
        root.setLevel(level)


class TestLogContext:
    def setup_method(self) -> None:
        structlog.contextvars.clear_contextvars()

    def teardown_method(self) -> None:
        structlog.contextvars.clear_contextvars()

    def test_bind_skips_missing_ids(self) -> None:
        bind_context(customer_id="c1", invoice_id=None)
        assert structlog.contextvars.get_contextvars() == {"customer_id": "c1"}

    def test_log_context_restores_previous_values(self) -> None:
        bind_context(customer_id="outer")
        with log_context(customer_id="inner", meter_id="m1"):
            assert structlog.contextvars.get_contextvars() == {
                "customer_id": "inner", "meter_id": "m1",
            }
        assert structlog.contextvars.get_contextvars() == {"customer_id": "outer"}

    def test_log_context_skips_missing_ids(self) -> None:
        with log_context(customer_id="c1", payment_id=None):
            assert structlog.contextvars.get_contextvars() == {"customer_id": "c1"}
        assert structlog.contextvars.get_contextvars() == {}


class TestSetupLogging:
    def test_configures_root_logger(self) -> None:
        with _preserved_root_logger() as root:
            setup_logging(level="DEBUG", fmt="console")
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert logging.getLogger("aiosqlite").level == logging.WARNING

    def test_file_output_includes_bound_context(self, tmp_path: Path) -> None:
        log_file = tmp_path / "billing.log"
        with _preserved_root_logger() as root:
            setup_logging(level="INFO", fmt="json", log_file=str(log_file))
            with log_context(customer_id="c-42"):
                logging.getLogger("utility_billing.test").info("invoice %s issued", "INV-001000")
            for handler in root.handlers:
                handler.flush()
        text = log_file.read_text()
        assert "invoice INV-001000 issued" in text
        assert "c-42" in text

    def test_unknown_level_falls_back_to_info(self) -> None:
        with _preserved_root_logger() as root:
            setup_logging(level="chatty")
            assert root.level == logging.INFO

    def test_unknown_format_rejected(self) -> None:
        with _preserved_root_logger() as root:
            before = list(root.handlers)
            with pytest.raises(ValueError):
                setup_logging(fmt="xml")
            assert root.handlers == before

    def test_log_file_directory_created(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "nested" / "billing.log"
        with _preserved_root_logger():
            setup_logging(log_file=str(log_file))
        assert log_file.parent.is_dir()
