"""
Logging setup.

Everything goes to stderr: with the stdio transport, stdout carries the MCP
message stream and must stay clean.
"""

import logging
import sys

LOGGER_NAME = "frappe_mcp"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# The stderr handler installed by configure_logging
_handler: logging.Handler | None = None


def get_logger(name: str | None = None) -> logging.Logger:
    if not name:
        return logging.getLogger(LOGGER_NAME)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single stderr handler to the package logger."""
    global _handler
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if _handler is None:
        _handler = logging.StreamHandler(sys.stderr)
        _handler.setFormatter(logging.Formatter(LOG_FORMAT))
    if _handler not in logger.handlers:
        logger.addHandler(_handler)
    return logger
