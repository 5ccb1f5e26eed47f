"""Logging configuration with a custom TRACE level."""

import logging

TRACE = 5

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)-8s - %(message)s'


def _trace(self, msg, *args, **kwargs):
    if self.isEnabledFor(TRACE):
        self._log(TRACE, msg, args, **kwargs)


def install_trace_level():
    """Register the TRACE level and add ``Logger.trace`` to every logger."""
    if getattr(logging, "TRACE", None) == TRACE:
        return
    logging.TRACE = TRACE
    logging.addLevelName(TRACE, "TRACE")
    logging.Logger.trace = _trace


def configure_logging(level_name: str):
    """
    Configure the root logger and tune noisy third-party loggers.

    ``VERBOSE`` keeps the root at DEBUG but enables HTTP and connector traces;
    ``TRACE`` turns tracing on everywhere.
    """
    install_trace_level()
    level_str = level_name.upper()
    if level_str == "TRACE":
        level = TRACE
    elif level_str == "VERBOSE":
        level = logging.DEBUG
    else:
        level = getattr(logging, level_str, logging.INFO)

    root = logging.getLogger()
    if not root.hasHandlers():
        logging.basicConfig(level=level, format=LOG_FORMAT)
    root.setLevel(level)

    if level_str in ("TRACE", "VERBOSE"):
        http_level = level
        connectors_level = TRACE
    else:
        http_level = logging.WARNING
        connectors_level = logging.DEBUG if level <= logging.DEBUG else level

    logging.getLogger("httpcore").setLevel(http_level)
    logging.getLogger("httpx").setLevel(http_level)
    logging.getLogger("ledger_sync.connectors").setLevel(connectors_level)
    logging.getLogger("apscheduler").setLevel(logging.WARNING if level > logging.DEBUG else level)

    if level_str == "TRACE":
        root.trace("Trace logging enabled at startup (verbose details).")
    else:
        root.debug(f"Logging configured at {level_str}")
