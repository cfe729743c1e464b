"""Logging utilities for the contact relay.

Handlers, level and format are configured once by the entry point
(``contact_relay.cli`` or ``contact_relay.server``) through
``logging.basicConfig()``; modules only ask for named loggers.

Example:
    Typical usage in a module::

        from contact_relay.logger import get_logger

        logger = get_logger("RateLimiter")
        logger.info("Request blocked")
"""

import logging

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = "ContactRelay") -> logging.Logger:
    """Retrieve a logger instance.

    Args:
        name: The logger name. Defaults to "ContactRelay".

    Returns:
        A ``logging.Logger`` instance bound to the given name.
    """
    return logging.getLogger(name)


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger for the process.

    Unknown level names fall back to INFO.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        force=True,  # Force reconfiguration to avoid duplicate handlers
    )
