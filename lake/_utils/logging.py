import logging
from logging import (
    Logger,
    StreamHandler,
)
import os
import sys
from typing import (
    Dict,
    Iterable,
    Tuple,
)

from eth_utils import (
    ExtendedDebugLogger,
    get_extended_debug_logger,
)

from lake._utils.shellart import (
    bold_red,
    bold_yellow,
)


# The S3 client stack logs every request at DEBUG
NOISY_LOGGERS = ('aiobotocore', 'aioboto3', 'botocore', 'urllib3')


def get_logger(name: str) -> ExtendedDebugLogger:
    """
    Return the logger registered under ``name`` as an
    :class:`~eth_utils.ExtendedDebugLogger`, which adds the ``debug2`` level used by the
    chattiest code paths of the streamer.
    """
    return get_extended_debug_logger(name)


class LakeLogFormatter(logging.Formatter):
    """
    Show only the last component of the logger name, which is the class or function that
    logged, and make warnings and errors stand out.
    """
    def format(self, record: logging.LogRecord) -> str:
        record.shortname = record.name.rsplit('.', 1)[-1]  # type: ignore

        formatted = super().format(record)
        if record.levelno >= logging.ERROR:
            return bold_red(formatted)
        elif record.levelno >= logging.WARNING:
            return bold_yellow(formatted)
        else:
            return formatted


LOG_FORMATTER = LakeLogFormatter(
    fmt='%(levelname)8s  %(asctime)s  %(shortname)20s  %(message)s',
)


def _stderr_handler(level: int) -> StreamHandler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(LOG_FORMATTER)
    return handler


def setup_log_levels(log_levels: Dict[str, int]) -> None:
    """
    Give each named logger its own level and stderr handler, independent of the root
    logger's level.
    """
    for name, level in log_levels.items():
        logger = logging.getLogger(name)
        logger.propagate = False
        logger.setLevel(level)
        logger.addHandler(_stderr_handler(level))


def quiet_loggers(names: Iterable[str], level: int = logging.WARNING) -> None:
    for name in names:
        logging.getLogger(name).setLevel(level)


def setup_lake_stderr_logging(level: int = None) -> Tuple[Logger, StreamHandler]:
    if level is None:
        level = logging.INFO

    logger = logging.getLogger()
    logger.setLevel(level)
    handler = _stderr_handler(level)
    logger.addHandler(handler)
    quiet_loggers(NOISY_LOGGERS)

    logger.debug('Logging initialized: PID=%s', os.getpid())
    return logger, handler
