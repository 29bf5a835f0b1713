"""Logging setup.

Library modules only call :func:`logging.getLogger`; applications call
:func:`configure_logging` once at start-up.
"""

from __future__ import annotations

import logging
import sys

from mixpki.config import LoggingConfig
from mixpki.errors import ConfigError

NOTICE = 25
logging.addLevelName(NOTICE, "NOTICE")

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(config: LoggingConfig, *, root: str = "mixpki") -> logging.Logger:
    """Attach a handler to the ``root`` logger according to ``config``.

    Returns the configured logger. Calling it again replaces the handler
    installed by the previous call.
    """

    errors = config.validate()
    if errors:
        raise ConfigError("; ".join(errors))

    logger = logging.getLogger(root)
    for handler in list(logger.handlers):
        if getattr(handler, "_mixpki", False):
            logger.removeHandler(handler)
            handler.close()

    if config.disable:
        handler: logging.Handler = logging.NullHandler()
    elif config.file:
        handler = logging.FileHandler(config.file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler._mixpki = True  # type: ignore[attr-defined]
    handler.setFormatter(logging.Formatter(_FORMAT))

    logger.addHandler(handler)
    logger.setLevel(logging.getLevelName(config.level))
    logger.propagate = False
    return logger
