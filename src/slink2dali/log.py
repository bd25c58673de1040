import sys

from loguru import logger

LOG_FORMAT = "{time:ddd MMM DD HH:mm:ss YYYY} - <level>{level}</level>: {message}"


def verbosity_level(verbosity: int) -> str:
    if verbosity <= 0:
        return "INFO"
    if verbosity == 1:
        return "DEBUG"
    return "TRACE"


def configure_logging(verbosity: int = 0, sink=None) -> int:
    """Replace loguru's default handler with a timestamped, line-buffered one."""
    logger.remove()
    return logger.add(
        sink or sys.stdout,
        level=verbosity_level(verbosity),
        format=LOG_FORMAT,
        colorize=False,
        backtrace=False,
        diagnose=False,
    )
