"""Package logger factory."""

from __future__ import annotations
import logging

from .config import LOGGER_NAME, apply_log_level, get_config


ROOT_LOGGER = LOGGER_NAME


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """
    Return a logger under the 'nanograd' hierarchy.

    The root 'nanograd' logger gets a single stream handler the first time it
    is requested. Its level follows Config.log_level; set_config() and
    reset_config() keep it current afterwards.

    Args:
        name: Dotted module name; anything outside the package is nested
            under 'nanograd'.
    """
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter('[%(asctime)s][%(levelname)s][%(name)s] %(message)s')
        )
        root.addHandler(handler)
        apply_log_level(get_config())

    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + '.'):
        return logging.getLogger(name)
    return root.getChild(name)
