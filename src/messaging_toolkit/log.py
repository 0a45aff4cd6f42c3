"""
loguru sink setup.

The library itself only calls 'loguru.logger'; applications decide where the
output goes. 'configure_logging' is a convenience for the composition root and
the HTTP app: it replaces loguru's default sink with a stderr sink at 'level'.
"""

import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)
