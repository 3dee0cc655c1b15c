"""Logging utilities for the mail relay.

Handlers, levels and formats are configured once by the entry point
(``logging.basicConfig()`` in the server or CLI). Modules only ask for a
named logger.

Example:
    Typical usage in a module::

        from mail_relay.logger import get_logger

        logger = get_logger("Ledger")
        logger.info("Usage counters reset")
"""

import logging


def get_logger(name: str = "MailRelay") -> logging.Logger:
    """Retrieve a logger instance bound to ``name``.

    Args:
        name: The logger name. Defaults to "MailRelay".

    Returns:
        A ``logging.Logger`` instance.
    """
    return logging.getLogger(name)


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger for an entry point.

    Args:
        level: Level name such as "DEBUG" or "INFO". Unknown names fall
            back to INFO.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
