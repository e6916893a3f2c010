"""
Plan engine: diff declared resources against stored state.
"""

from __future__ import annotations

from .planner import Planner, plan

__all__ = ["Planner", "plan"]
