"""
Resource graph construction and ordering.
"""

from __future__ import annotations

from .builder import ResourceDeclaration, ResourceGraphBuilder, build_graph
from .topology import find_cycle, topological_order

__all__ = [
    "ResourceDeclaration",
    "ResourceGraphBuilder",
    "build_graph",
    "find_cycle",
    "topological_order",
]
