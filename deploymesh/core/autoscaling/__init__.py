"""
Target-utilization autoscaling.
"""

from __future__ import annotations

from .controller import AutoscalingController, desired_replicas

__all__ = ["AutoscalingController", "desired_replicas"]
