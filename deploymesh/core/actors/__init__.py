"""
Ray actor implementations backing the DeployMesh control loops.

Sub-packages:
    - management: Actors that host long-running reconcile loops.
"""

from . import management  # noqa: F401
from .head import DeploymentHead  # noqa: F401

__all__ = [
    "management",
    "DeploymentHead",
]
