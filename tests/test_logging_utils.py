from __future__ import annotations

import io
import logging

import pytest
from loguru import logger

from quantengine import ENGINE_VERSION
from quantengine.logging_utils import setup_logging, setup_test_logging


@pytest.fixture(autouse=True)
def _restore_test_logging():
    yield
    setup_test_logging()


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def test_setup_logging_formats_metadata(monkeypatch):
    monkeypatch.setenv("ENV", "staging")
    monkeypatch.setenv("GIT_SHA", "abc123")
    stream = io.StringIO()

    assert setup_logging(level="debug", sink=stream, bridge_stdlib=False) == "DEBUG"
    logger.debug("[risk] portfolio analysed")

    line = stream.getvalue()
    assert "env=staging" in line
    assert "sha=abc123" in line
    assert f"ver={ENGINE_VERSION}" in line
    assert "run=-" in line
    assert "[risk] portfolio analysed" in line


def test_level_defaults_to_settings(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "warning")
    stream = io.StringIO()

    assert setup_logging(sink=stream, bridge_stdlib=False) == "WARNING"
    logger.info("[mc] hidden")
    logger.warning("[mc] shown")

    assert "hidden" not in stream.getvalue()
    assert "shown" in stream.getvalue()


def test_stdlib_bridge_forwards_records_with_extras():
    handler = _ListHandler()
    std = logging.getLogger("quantengine")
    std.addHandler(handler)
    try:
        setup_logging(level="INFO", sink=io.StringIO())
        with logger.contextualize(run="nightly"):
            logger.info("[sweep] bridged")
    finally:
        std.removeHandler(handler)

    record = handler.records[-1]
    assert record.getMessage() == "[sweep] bridged"
    assert record.run == "nightly"
    assert record.engine_version == ENGINE_VERSION


def test_setup_test_logging_writes_to_directory(tmp_path):
    path = setup_test_logging(tmp_path, level="DEBUG")
    logger.debug("[backtest] written to file")

    assert path == tmp_path / "pytest.log"
    assert "[backtest] written to file" in path.read_text()
