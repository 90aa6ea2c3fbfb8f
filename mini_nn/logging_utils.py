"""
Logging setup for mini_nn.

Library modules log through ``logging.getLogger(__name__)`` under the
``mini_nn`` root logger and never configure handlers themselves. Scripts
and the tutorial CLI call :func:`configure_logging` once at start-up.
"""
import logging
import os
import sys

ROOT_LOGGER_NAME = "mini_nn"
LOG_LEVEL_ENV = "MINI_NN_LOG_LEVEL"
LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"
LOG_LEVELS = ("debug", "info", "warning", "error")


def resolve_level(level=None):
    """Level from the argument, else $MINI_NN_LOG_LEVEL, else INFO."""
    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV, "info")
    if isinstance(level, int):
        return level
    name = str(level).strip().lower()
    if name not in LOG_LEVELS:
        raise ValueError(f"unknown log level {level!r}, expected one of {', '.join(LOG_LEVELS)}")
    return getattr(logging, name.upper())


def configure_logging(level=None, stream=None):
    """
    Attach a single stream handler to the ``mini_nn`` logger.

    Calling it again replaces the previous handler instead of stacking
    another one, so repeated runs don't duplicate output.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_mini_nn_handler", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._mini_nn_handler = True
    logger.addHandler(handler)
    logger.setLevel(resolve_level(level))
    return logger
