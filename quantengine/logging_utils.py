"""Loguru setup for the engine's command-line entry points and test runs.

Library modules only call ``loguru.logger``; nothing here runs on import.
Records carry the deployment environment, engine version and commit, plus
the ``run`` label a sweep binds while it executes.
"""

from __future__ import annotations

import logging
import os
import sys
from os import PathLike
from pathlib import Path
from typing import Optional, TextIO, Union

from loguru import logger

from quantengine import ENGINE_VERSION
from quantengine.settings import get_logging_settings

_LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | "
    "env={extra[environment]} | ver={extra[engine_version]} | "
    "sha={extra[git_sha]} | run={extra[run]} | {message}"
)


def _std_logging_sink(message) -> None:
    record = message.record
    exc = record["exception"]
    log_record = logging.LogRecord(
        name=record["name"],
        level=record["level"].no,
        pathname=record["file"].path,
        lineno=record["line"],
        msg=record["message"],
        args=(),
        exc_info=(exc.type, exc.value, exc.traceback) if exc else None,
        func=record["function"],
    )
    for key, value in record["extra"].items():
        setattr(log_record, key, value)
    logging.getLogger("quantengine").handle(log_record)


def setup_logging(
    *,
    level: Optional[str] = None,
    sink: Optional[TextIO] = None,
    bridge_stdlib: bool = True,
) -> str:
    """
    Replace loguru's handlers with one formatted text sink.

    Output goes to stderr unless ``sink`` is given, so JSON written to stdout
    by the CLI stays parseable. With ``bridge_stdlib`` every record is also
    forwarded to the stdlib ``quantengine`` logger for hosts that collect logs
    there. Returns the effective level name.
    """
    log_settings = get_logging_settings()
    effective = (level or log_settings.level).upper()
    git_sha = log_settings.git_sha or os.getenv("COMMIT_SHA") or "unknown"

    logger.remove()
    logger.configure(
        extra={
            "environment": log_settings.environment,
            "engine_version": ENGINE_VERSION,
            "git_sha": git_sha,
            "run": "-",
        }
    )
    logger.add(
        sink or sys.stderr,
        level=effective,
        format=_LOG_FORMAT,
        backtrace=False,
        diagnose=False,
    )
    if bridge_stdlib:
        logger.add(_std_logging_sink, level=effective, backtrace=False, diagnose=False)
        logging.getLogger("quantengine").setLevel(getattr(logging, effective, logging.INFO))
    return effective


def setup_test_logging(
    target: Optional[Union[str, PathLike]] = None,
    *,
    level: Optional[str] = None,
) -> Optional[Path]:
    """
    Quiet console logging for pytest plus an optional full log file.

    ``target`` may be a directory (the file is ``<dir>/pytest.log``) or a file
    path. The console sink only shows warnings and above.
    """
    effective = (level or os.getenv("PYTEST_LOGLEVEL") or "DEBUG").upper()
    setup_logging(level="WARNING", bridge_stdlib=False)
    if target is None:
        return None

    path = Path(target)
    if path.is_dir():
        path = path / "pytest.log"
    path.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        str(path),
        level=effective,
        format=_LOG_FORMAT,
        backtrace=False,
        diagnose=False,
    )
    return path


__all__ = ["setup_logging", "setup_test_logging"]
