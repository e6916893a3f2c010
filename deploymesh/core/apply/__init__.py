"""
Apply executor and cancellation support.
"""

from __future__ import annotations

from .executor import ApplyExecutor, CancellationToken

__all__ = ["ApplyExecutor", "CancellationToken"]
