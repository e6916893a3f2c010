"""
Autoscaling entity definitions.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ControllerPhase(str, Enum):
    """Lifecycle phase of one workload's autoscaling controller."""

    IDLE = "idle"
    EVALUATING = "evaluating"
    COOLING_DOWN = "cooling-down"


class ScalingAction(str, Enum):
    SCALED = "scaled"
    NOOP = "no-op"
    SUPPRESSED = "suppressed"
    SKIPPED = "skipped"
    FAILED = "failed"


def _optional_interval(value: Any) -> Optional[float]:
    return None if value is None else float(value)


@dataclass(frozen=True)
class ScalingPolicy:
    """Target-utilization rule for a single workload."""

    workload: str
    target_utilization: float
    min_replicas: int = 1
    max_replicas: int = 10
    metric: str = "cpu"
    stabilization_window: float = 300.0
    # None defers to the engine's autoscaling.evaluation_interval
    evaluation_interval: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.workload:
            raise ValueError("Scaling policy requires a workload reference")
        if self.target_utilization <= 0:
            raise ValueError(f"target_utilization must be positive, got {self.target_utilization}")
        if self.min_replicas < 0:
            raise ValueError(f"min_replicas must be non-negative, got {self.min_replicas}")
        if self.max_replicas < max(self.min_replicas, 1):
            raise ValueError(
                f"max_replicas ({self.max_replicas}) must be >= min_replicas ({self.min_replicas}) and >= 1"
            )
        if self.stabilization_window < 0:
            raise ValueError("stabilization_window must be non-negative")
        if self.evaluation_interval is not None and self.evaluation_interval <= 0:
            raise ValueError("evaluation_interval must be positive")

    def clamp(self, replicas: int) -> int:
        return max(self.min_replicas, min(self.max_replicas, replicas))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workload": self.workload,
            "metric": self.metric,
            "target_utilization": self.target_utilization,
            "min_replicas": self.min_replicas,
            "max_replicas": self.max_replicas,
            "stabilization_window": self.stabilization_window,
            "evaluation_interval": self.evaluation_interval,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ScalingPolicy":
        try:
            return cls(
                workload=str(payload.get("workload") or ""),
                metric=str(payload.get("metric") or "cpu"),
                target_utilization=float(payload["target_utilization"]),
                min_replicas=int(payload.get("min_replicas", 1)),
                max_replicas=int(payload.get("max_replicas", 10)),
                stabilization_window=float(payload.get("stabilization_window", 300.0)),
                evaluation_interval=_optional_interval(payload.get("evaluation_interval")),
            )
        except KeyError as exc:
            raise ValueError(f"Scaling policy is missing required field {exc}") from exc
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid scaling policy: {exc}") from exc


@dataclass(frozen=True)
class ScalingDecision:
    """Result of one evaluation cycle; never persisted."""

    workload: str
    action: ScalingAction
    current_replicas: Optional[int] = None
    desired_replicas: Optional[int] = None
    raw_desired: Optional[int] = None
    utilization: Optional[float] = None
    reason: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workload": self.workload,
            "action": self.action.value,
            "current_replicas": self.current_replicas,
            "desired_replicas": self.desired_replicas,
            "raw_desired": self.raw_desired,
            "utilization": self.utilization,
            "reason": self.reason,
            "timestamp": self.timestamp,
        }
