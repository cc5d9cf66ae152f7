"""Logging setup shared by the odekit modules.

Importing this module configures basic logging to stdout once and exposes
the package logger. The level defaults to INFO and can be overridden with
the ``ODEKIT_LOG_LEVEL`` environment variable.
"""

import logging
import os
import sys

_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level=None, format_string=_FORMAT):
    """Configures basic logging to stdout."""
    if level is None:
        level = os.environ.get("ODEKIT_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format=format_string,
        stream=sys.stdout
    )


setup_logging()

logger = logging.getLogger("odekit")
