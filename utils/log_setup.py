# Copyright (C) 2026 grodz
#
# This file is part of Tether.
#
# Tether is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""Loguru sink setup and stdlib logging bridge."""

import logging
import sys

from loguru import logger

# Config value -> minimum loguru level
LEVELS = {
    "minimal": "NOTICE",
    "verbose": "INFO",
    "debug": "DEBUG",
}

# Clean 4-char level names for aligned output
LEVEL_NAMES = {
    "TRACE": "TRCE",
    "DEBUG": "DBUG",
    "INFO": "INFO",
    "NOTICE": "NOTE",
    "SUCCESS": "GOOD",
    "WARNING": "WARN",
    "ERROR": "FAIL",
    "CRITICAL": "CRIT",
}

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> "
    "[<level>{extra[short_level]}</level>] "
    "<cyan>{name}</cyan>: <level>{message}</level>"
)

# Chatty libraries routed through loguru
LIBRARY_LOGGERS = ("discord", "mafic")


class InterceptHandler(logging.Handler):
    """Forward stdlib logging records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk back to the caller that issued the logging call
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _patch_record(record) -> None:
    record["extra"]["short_level"] = LEVEL_NAMES.get(record["level"].name, record["level"].name[:4])


def register_levels() -> None:
    """Register the NOTICE level (between INFO and WARNING) once."""
    try:
        logger.level("NOTICE")
    except ValueError:
        logger.level("NOTICE", no=25, color="<blue><bold>")


def setup_logging(level: str = "verbose") -> None:
    """Replace loguru's default sink with the bot's formatted one.

    Args:
        level: "minimal", "verbose" or "debug". Unknown values fall back to verbose.
    """
    register_levels()
    min_level = LEVELS.get(str(level).lower())
    if min_level is None:
        min_level = LEVELS["verbose"]
        unknown = level
    else:
        unknown = None

    logger.remove()
    logger.configure(patcher=_patch_record)
    logger.add(
        sys.stderr,
        level=min_level,
        format=LOG_FORMAT,
        colorize=True,
        backtrace=False,
        diagnose=False,
        enqueue=True,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in LIBRARY_LOGGERS:
        lib_logger = logging.getLogger(name)
        lib_logger.handlers = []
        lib_logger.propagate = True
        lib_logger.setLevel(logging.DEBUG if min_level == "DEBUG" else logging.WARNING)

    if unknown is not None:
        logger.warning(f"unknown log level {unknown!r}, using verbose")
    logger.debug(f"logging at {min_level}")
