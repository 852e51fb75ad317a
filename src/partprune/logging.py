"""
Package logger of partprune.

Cache rebuilds, invalidations and lock contention are reported at DEBUG,
configuration problems that switch pruning off at WARNING. The level follows
``partprune.config.loglevel`` (``PARTPRUNE_LOG_LEVEL`` in the environment) and
is updated whenever that setting is assigned.
"""

from __future__ import annotations

import logging
import sys
from types import TracebackType

from .errors import PartPruneError
from .settings import config

logger = logging.getLogger(__name__.split(".")[0])

log_format = logging.Formatter("[%(asctime)s][%(levelname)s]: %(message)s")

stream_handler = logging.StreamHandler()
stream_handler.setFormatter(log_format)

logger.setLevel(level=config.loglevel)
logger.handlers = [stream_handler]


def excepthook(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_traceback: TracebackType | None,
) -> None:
    """
    Log uncaught exceptions.

    Keyboard interrupts go to the default handler. partprune errors are logged
    with their hints, without a traceback; anything else with the full traceback.
    """
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return

    if isinstance(exc_value, PartPruneError):
        logger.error(f"{exc_type.__name__}: " + "; ".join(str(arg) for arg in exc_value.args))
        return

    logger.error("Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))


sys.excepthook = excepthook
