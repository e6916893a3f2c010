"""
Core package bootstrap for the DeployMesh runtime.

Re-exports the primary façade classes so callers can simply do::

    from deploymesh.core import Reconciler
"""

from __future__ import annotations

from deploymesh.core.apply import ApplyExecutor, CancellationToken
from deploymesh.core.autoscaling import AutoscalingController
from deploymesh.core.controllers.reconciler import Reconciler
from deploymesh.core.graph import ResourceGraphBuilder
from deploymesh.core.planning import Planner

__all__ = [
    "ApplyExecutor",
    "AutoscalingController",
    "CancellationToken",
    "Planner",
    "Reconciler",
    "ResourceGraphBuilder",
]
