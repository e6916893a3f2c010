"""Utility helpers for DeployMesh."""

from .logging import PACKAGE_LOGGER, configure_runtime_logging  # noqa: F401

__all__ = [
    "PACKAGE_LOGGER",
    "configure_runtime_logging",
]
