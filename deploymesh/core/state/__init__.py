"""
Durable resource state with scope locking.
"""

from __future__ import annotations

from .store import FileStateStore, InMemoryStateStore, LockHandle, StateStore

__all__ = ["FileStateStore", "InMemoryStateStore", "LockHandle", "StateStore"]
