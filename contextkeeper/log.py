"""Logging helpers.

Every module logs through ``logging.getLogger(__name__)``; nothing here is
required for the library to work. ``configure_file_logging`` is for hosts that
want contextkeeper output in a file instead of stdout/stderr.
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_file_logging(log_file: str, level: int = logging.INFO) -> logging.Handler:
    """Redirect all contextkeeper logs to a file.

    Only the ``contextkeeper`` logger hierarchy is touched, so the host's own
    logging setup is left alone.

    Args:
        log_file: Path of the log file (opened in append mode)
        level: Minimum level to record (default: INFO)

    Returns:
        The installed handler, so callers can remove it again
    """
    handler = logging.FileHandler(log_file, mode="a")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    package_logger = logging.getLogger("contextkeeper")
    package_logger.handlers.clear()
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    package_logger.propagate = False
    return handler
