"""Console logging for sweeper runs"""

import sys

from loguru import logger


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<level>{message}</level>"
)


def setup_logging(level: str = "INFO"):
    """Replace loguru's default sink with a colorized stderr sink"""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        colorize=True,
        backtrace=False,
        format=LOG_FORMAT,
    )
