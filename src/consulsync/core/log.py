"""Logging setup for consulsync.

The log sink is configured once at startup (and again on reload) by
passing it in explicitly; nothing else in the package touches handlers.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from typing import TextIO

from consulsync.core.config import ConfigError

ROOT_LOGGER = "consulsync"

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LEVELS: dict[str, int] = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERR": logging.ERROR,
    "ERROR": logging.ERROR,
}

LOG_FORMAT = "%(asctime)s [%(levelname)s] (%(name)s) %(message)s"
SYSLOG_FORMAT = "consulsync[%(process)d]: [%(levelname)s] (%(name)s) %(message)s"


def parse_level(level: str) -> int:
    """Map a level name to a logging level.

    Raises:
        ConfigError: If the name is not a known level.
    """
    try:
        return LEVELS[level.strip().upper()]
    except KeyError:
        raise ConfigError(
            f"invalid log level {level!r}, valid log levels are "
            f"{', '.join(LEVELS)}"
        ) from None


def _syslog_address() -> str | tuple[str, int]:
    if os.path.exists("/dev/log"):
        return "/dev/log"
    return ("localhost", logging.handlers.SYSLOG_UDP_PORT)


def setup_logging(
    level: str,
    stream: TextIO | None = None,
    syslog: bool = False,
    syslog_facility: str = "LOCAL0",
) -> logging.Logger:
    """Configure the consulsync logger.

    Existing handlers are removed so calling this again on reload does not
    duplicate output.

    Args:
        level: Minimum level name (TRACE, DEBUG, INFO, WARN, ERR).
        stream: Where to write log lines, stderr by default.
        syslog: Also send records to the local syslog daemon.
        syslog_facility: Syslog facility name, e.g. "LOCAL0".

    Returns:
        The configured logger.

    Raises:
        ConfigError: If the level or facility is invalid, or syslog
            cannot be reached.
    """
    numeric_level = parse_level(level)

    handlers: list[logging.Handler] = []
    stream_handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handlers.append(stream_handler)

    if syslog:
        facility = logging.handlers.SysLogHandler.facility_names.get(syslog_facility.lower())
        if facility is None:
            raise ConfigError(f"invalid syslog facility {syslog_facility!r}")
        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=_syslog_address(), facility=facility
            )
        except OSError as e:
            raise ConfigError(f"error setting up syslog logger: {e}") from e
        syslog_handler.setFormatter(logging.Formatter(SYSLOG_FORMAT))
        handlers.append(syslog_handler)

    logger = logging.getLogger(ROOT_LOGGER)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(numeric_level)
    # Prevent propagation to root logger
    logger.propagate = False

    if syslog:
        logger.debug("Enabled syslog on %s", syslog_facility)
    return logger
