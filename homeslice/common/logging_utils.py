"""
Console logging for the client, the CLI and the development gateway.
"""

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
HANDLER_NAME = "homeslice-console"


def setup_logger(logger: logging.Logger, log_level: int) -> None:
    """
    Give ``logger`` a console handler and apply ``log_level``.

    Repeated calls reuse the handler added by an earlier call and only change
    the level, so building several clients never duplicates log lines.

    Args:
        logger: The logger instance to configure
        log_level: The logging level to set
    """
    logger.setLevel(log_level)
    for handler in logger.handlers:
        if handler.get_name() == HANDLER_NAME:
            handler.setLevel(log_level)
            return

    handler = logging.StreamHandler()
    handler.set_name(HANDLER_NAME)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
