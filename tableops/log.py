"""Loguru setup shared by the CLI and the Pulumi program."""

import sys

from loguru import logger


def setup_logger(level: str = "INFO") -> None:
    logger.remove()
    logger_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<level>{message}</level>"
    )
    logger.add(
        sys.stdout,
        level=level.upper(),
        format=logger_format,
        diagnose=False,  # hide variable values in log backtrace
    )
