import sys

from loguru import logger


def configure_logging(level: str = "INFO", serialize: bool = False) -> None:
    """Replace loguru's default sink with one honoring LOG_LEVEL / LOG_JSON."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        serialize=serialize,
        backtrace=False,
        diagnose=False,
    )
