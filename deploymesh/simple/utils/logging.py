"""Helper logging configuration for simple demos."""

from __future__ import annotations

import logging

from deploymesh.core.utils import configure_runtime_logging

_NOISY_LOGGERS = ("ray", "ray.serve", "ray.data", "filelock")


def configure_demo_logging(*, verbose: bool = False, include_timestamp: bool = True) -> logging.Logger:
    """Print engine logs (apply steps, retries, scale decisions) while a demo runs."""
    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s" if include_timestamp else "%(levelname)s %(name)s: %(message)s"
    return configure_runtime_logging(
        logging.DEBUG if verbose else logging.INFO,
        formatter=logging.Formatter(fmt, datefmt="%H:%M:%S"),
    )


def demote_ray_logging(level: int = logging.ERROR) -> None:
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)
