"""
Resource kinds known to the plan engine.
"""

from __future__ import annotations

from .registry import (
    ResourceKind,
    available_kinds,
    register_kind,
    resolve_kind,
    unregister_kind,
)

__all__ = [
    "ResourceKind",
    "available_kinds",
    "register_kind",
    "resolve_kind",
    "unregister_kind",
]
