"""
Domain entities used throughout the DeployMesh runtime.
"""

from .resource import Reference, ResourceGraph, ResourceNode, make_address  # noqa: F401
from .scaling import ControllerPhase, ScalingAction, ScalingDecision, ScalingPolicy  # noqa: F401
from .state import StateRecord  # noqa: F401
from .types import (  # noqa: F401
    ApplyOutcome,
    ApplyReport,
    Change,
    ChangeAction,
    ChangeResult,
    ChangeSet,
)

__all__ = [
    "ApplyOutcome",
    "ApplyReport",
    "Change",
    "ChangeAction",
    "ChangeResult",
    "ChangeSet",
    "ControllerPhase",
    "Reference",
    "ResourceGraph",
    "ResourceNode",
    "ScalingAction",
    "ScalingDecision",
    "ScalingPolicy",
    "StateRecord",
    "make_address",
]
