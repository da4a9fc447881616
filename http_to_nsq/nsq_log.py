"""Route the NSQ client's diagnostic output into structured logs.

The NSQ client reports its own activity (connections, heartbeats, errors)
as plain text lines of the form::

    <LEVEL-TAG> <connection-id> <message...>

e.g. ``INF 1 [localhost:4150] connecting to nsqd``. ``NsqLogAdapter``
parses those lines, drops the connection id and re-emits the message
through structlog at the matching level. It is installed as a
``logging.Handler`` on the ``nsq`` logger, which is where pynsq writes.
"""

import logging
import re
from typing import Any

import structlog

NSQ_LOGGER_NAME = "nsq"

# NSQ level tag -> structlog method
TAG_METHODS = {
    "DBG": "debug",
    "INF": "info",
    "WRN": "warning",
    "ERR": "error",
}

# stdlib level -> NSQ level tag
LEVEL_TAGS = {
    logging.DEBUG: "DBG",
    logging.INFO: "INF",
    logging.WARNING: "WRN",
    logging.ERROR: "ERR",
    logging.CRITICAL: "ERR",
}

# Host log level -> most verbose level the NSQ client should emit.
# The client only knows debug/info/warning/error, so anything above error
# collapses to error.
NSQ_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "dpanic": logging.ERROR,
    "panic": logging.ERROR,
    "fatal": logging.ERROR,
    "critical": logging.ERROR,
}

# Leading connection id: digits, or the bracketed "[host:port]" form
_CONNECTION_ID = re.compile(r"^[\d\s]*(?:\[[^\]]*\][\d\s]*)?")


class LogLineError(ValueError):
    """Raised when a diagnostic line cannot be parsed."""


def nsq_log_level(host_level: str) -> int:
    """Map the host's log level name to the NSQ client threshold."""
    return NSQ_LEVELS.get(host_level.lower(), logging.INFO)


def parse_line(line: str) -> tuple[str, str]:
    """Split a diagnostic line into (structlog method, cleaned message).

    Raises:
        LogLineError: If the line has fewer than two tokens.
    """
    parts = line.split()
    if len(parts) < 2:
        raise LogLineError(f"failed to parse NSQ log line: {line!r}")

    tag, message = parts[0], " ".join(parts[1:])
    message = _CONNECTION_ID.sub("", message)
    return TAG_METHODS.get(tag, "info"), message


class NsqLogAdapter(logging.Handler):
    """Diagnostic sink for the NSQ client."""

    def __init__(self, logger: Any = None, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._log = logger if logger is not None else structlog.get_logger()

    def output(self, line: str) -> None:
        """Emit one structured entry for a diagnostic line."""
        method, message = parse_line(line)
        getattr(self._log, method)(message)

    def emit(self, record: logging.LogRecord) -> None:
        tag = LEVEL_TAGS.get(record.levelno, "INF")
        try:
            self.output(f"{tag} {record.getMessage()}")
        except Exception:
            self.handleError(record)

    def install(self, logger_name: str = NSQ_LOGGER_NAME) -> logging.Logger:
        """Attach to the client's logger so its output only goes through here."""
        target = logging.getLogger(logger_name)
        target.addHandler(self)
        target.setLevel(self.level)
        target.propagate = False
        return target

    def uninstall(self, logger_name: str = NSQ_LOGGER_NAME) -> None:
        logging.getLogger(logger_name).removeHandler(self)
