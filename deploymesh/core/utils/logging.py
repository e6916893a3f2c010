"""Logging utilities for DeployMesh runtime components."""

from __future__ import annotations

import logging
import sys
from typing import Optional


PACKAGE_LOGGER = "deploymesh"
_HANDLER_TAG = "_deploymesh_stream_handler"


def _tagged_handler(logger: logging.Logger) -> Optional[logging.Handler]:
    for handler in logger.handlers:
        if getattr(handler, _HANDLER_TAG, False):
            return handler
    return None


def configure_runtime_logging(
    level: int = logging.INFO,
    *,
    component: Optional[str] = None,
    formatter: Optional[logging.Formatter] = None,
) -> logging.Logger:
    """
    Route ``deploymesh.*`` records to stdout inside Ray workers and scripts.

    Calling it again only refreshes the level and format, so actors may call
    it from ``__init__`` after a restart without duplicating output.
    ``component`` (an actor name, for example) is added to every line.
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if formatter is None:
        tag = f"[{component}] " if component else ""
        formatter = logging.Formatter(f"[%(levelname)s] {tag}%(name)s: %(message)s")

    handler = _tagged_handler(package_logger)
    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        setattr(handler, _HANDLER_TAG, True)
        package_logger.addHandler(handler)
    handler.setFormatter(formatter)
    handler.setLevel(level)

    if package_logger.level == logging.NOTSET or package_logger.level > level:
        package_logger.setLevel(level)
    # records are already printed here; the root logger would print them twice
    package_logger.propagate = False
    return package_logger
