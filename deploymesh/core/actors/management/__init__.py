"""
Management actors responsible for long-running control loops.
"""

from .autoscaler import AutoscalerActor  # noqa: F401
from .config import ActorConfig  # noqa: F401

__all__ = ["ActorConfig", "AutoscalerActor"]
