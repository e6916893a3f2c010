"""
Provider contract and bundled implementations.
"""

from .base import Provider  # noqa: F401
from .memory import InMemoryProvider  # noqa: F401

__all__ = ["InMemoryProvider", "Provider"]
