"""
Provider contract consumed by the apply executor and autoscaler.

Implementations talk to the real control plane.  Every method signals
failure by raising :class:`~deploymesh.core.errors.ProviderError` (or one of
its transient/permanent subclasses); other exceptions are treated as
permanent failures by callers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping


class Provider(ABC):
    """Narrow interface to the cloud control plane."""

    name: str = "provider"

    @abstractmethod
    def create_resource(self, kind: str, attributes: Mapping[str, Any]) -> str:
        """Create a resource and return its provider-assigned identity."""

    @abstractmethod
    def update_resource(self, identity: str, attributes: Mapping[str, Any]) -> None:
        """Update an existing resource in place."""

    @abstractmethod
    def delete_resource(self, identity: str) -> None:
        """Delete a resource."""

    @abstractmethod
    def set_replica_count(self, workload: str, count: int) -> None:
        """Scale ``workload`` to ``count`` replicas."""

    @abstractmethod
    def read_utilization(self, workload: str, metric: str) -> float:
        """Return the current utilization percentage of ``metric``."""

    @abstractmethod
    def read_replica_count(self, workload: str) -> int:
        """Return the workload's current replica count."""
