"""
Public facing controller facades for DeployMesh.
"""

from .reconciler import Reconciler  # noqa: F401

__all__ = ["Reconciler"]
