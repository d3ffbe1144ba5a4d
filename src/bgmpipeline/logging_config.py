"""Logging for the ``bgm`` CLI.

Everything logs under the ``bgmpipeline`` logger. Records go to stderr and,
optionally, to a file. The build draws a single progress line on the
console that is rewritten in place; the console handler breaks that line
before printing a record so the two never run together.

Levels come from the profile's ``logging`` section and can be overridden
per module from the environment:

    BGM_LOG_MODULE_LEVELS="engine=DEBUG,ingest.ytdlp_runner=WARNING"
"""

from __future__ import annotations

import logging
import os
import re
import sys
from pathlib import Path
from typing import Dict, Mapping, Optional, Protocol, Union


ROOT_LOGGER = "bgmpipeline"
MODULE_LEVELS_ENV = "BGM_LOG_MODULE_LEVELS"
DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

LevelLike = Union[int, str]


class ProgressLine(Protocol):
    line_open: bool

    def break_line(self) -> None: ...


class ConsoleHandler(logging.StreamHandler):
    """stderr handler that yields to an open progress line."""

    def __init__(self, stream=None) -> None:
        super().__init__(stream or sys.stderr)
        self.progress: Optional[ProgressLine] = None

    def emit(self, record: logging.LogRecord) -> None:
        progress = self.progress
        if progress is not None and progress.line_open:
            progress.break_line()
        super().emit(record)


def parse_level(value: LevelLike, default: int = logging.INFO) -> int:
    if isinstance(value, int):
        return value
    level = getattr(logging, str(value).strip().upper(), None)
    return level if isinstance(level, int) else default


def parse_module_levels(text: str) -> Dict[str, int]:
    """Parse ``name=LEVEL`` pairs separated by commas or semicolons.

    Names are relative to ``bgmpipeline`` unless already qualified. Pairs
    with an unknown level are dropped.
    """
    out: Dict[str, int] = {}
    for part in re.split(r"[;,]+", text or ""):
        name, sep, level_str = part.partition("=")
        if not sep:
            name, sep, level_str = part.partition(":")
        name = name.strip()
        level = getattr(logging, level_str.strip().upper(), None)
        if not sep or not name or not isinstance(level, int):
            continue
        out[_qualify(name)] = level
    return out


def _qualify(name: str) -> str:
    return name if name.startswith(ROOT_LOGGER) else f"{ROOT_LOGGER}.{name}"


def setup_logging(
    level: LevelLike = logging.INFO,
    log_file: Optional[Path] = None,
    module_levels: Optional[Mapping[str, LevelLike]] = None,
) -> logging.Logger:
    """Configure the ``bgmpipeline`` logger.

    Safe to call again; handlers are replaced rather than stacked.

    Args:
        level: Package log level
        log_file: Also write DEBUG-and-up records to this file
        module_levels: Per-module levels from the profile; the environment
            variable wins on conflicts
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(parse_level(level))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False

    formatter = logging.Formatter(DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    console = ConsoleHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    levels = {_qualify(name): parse_level(lvl) for name, lvl in (module_levels or {}).items()}
    levels.update(parse_module_levels(os.getenv(MODULE_LEVELS_ENV, "")))
    for name, lvl in levels.items():
        logging.getLogger(name).setLevel(lvl)
    return logger


def attach_progress(progress: Optional[ProgressLine]) -> None:
    """Route console records around ``progress`` (``None`` detaches)."""
    for handler in logging.getLogger(ROOT_LOGGER).handlers:
        if isinstance(handler, ConsoleHandler):
            handler.progress = progress
