"""Tests for logging configuration and run-scoped log context."""

import logging
from collections.abc import Generator

import pytest
import structlog

from mailtriage.config_schema import LoggingConfig
from mailtriage.core.logging import RUN_ID_FIELD, configure_logging, run_context


@pytest.fixture(autouse=True)
def restore_logging() -> Generator[None, None, None]:
    root_level = logging.getLogger().level
    yield
    logging.getLogger().setLevel(root_level)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


class TestConfigureLogging:
    def test_level_comes_from_config(self) -> None:
        configure_logging(LoggingConfig(level="warning"))
        assert logging.getLogger().level == logging.WARNING

    def test_debug_flag_overrides_config(self) -> None:
        configure_logging(LoggingConfig(level="ERROR"), debug=True)
        assert logging.getLogger().level == logging.DEBUG

    def test_quiet_loggers_stay_at_warning(self) -> None:
        configure_logging(LoggingConfig(quiet_loggers=["chatty.lib"]), debug=True)
        assert logging.getLogger("chatty.lib").level == logging.WARNING

    def test_json_format_renders_json(self) -> None:
        configure_logging(LoggingConfig(format="json"))
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_console_is_default_format(self) -> None:
        configure_logging()
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)

    def test_unknown_level_rejected(self) -> None:
        with pytest.raises(ValueError):
            LoggingConfig(level="chatty")


class TestRunContext:
    def test_binds_run_id_and_fields(self) -> None:
        with run_context("run-1", fetch_source="file"):
            bound = structlog.contextvars.get_contextvars()
            assert bound[RUN_ID_FIELD] == "run-1"
            assert bound["fetch_source"] == "file"
        assert structlog.contextvars.get_contextvars() == {}

    def test_bindings_removed_on_error(self) -> None:
        with pytest.raises(RuntimeError), run_context("run-2"):
            raise RuntimeError("boom")
        assert RUN_ID_FIELD not in structlog.contextvars.get_contextvars()

    def test_nested_run_restores_outer_id(self) -> None:
        with run_context("outer"):
            with run_context("inner"):
                assert structlog.contextvars.get_contextvars()[RUN_ID_FIELD] == "inner"
            assert structlog.contextvars.get_contextvars()[RUN_ID_FIELD] == "outer"
