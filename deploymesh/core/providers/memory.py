"""
In-memory provider emulating a cloud control plane.

Used by tests and demos.  Failures can be injected per operation so that
retry, containment and autoscaler failure paths can be exercised.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Mapping, Optional, Tuple

from deploymesh.core.errors import PermanentProviderError, ProviderError
from deploymesh.core.providers.base import Provider

logger = logging.getLogger(__name__)


@dataclass
class _InjectedFailure:
    operation: str
    error: ProviderError
    target: Optional[str]
    remaining: int

    def matches(self, operation: str, keys: Tuple[str, ...]) -> bool:
        if self.operation != operation or self.remaining <= 0:
            return False
        return self.target is None or self.target in keys


class InMemoryProvider(Provider):
    """Thread-safe fake control plane."""

    name = "memory"

    def __init__(self, *, call_delay: float = 0.0):
        self.resources: Dict[str, Dict[str, Any]] = {}
        self.replicas: Dict[str, int] = {}
        self.utilization: Dict[Tuple[str, str], float] = {}
        self.calls: List[Tuple[str, str]] = []
        self.scale_commands: List[Tuple[str, int]] = []
        self.call_delay = call_delay
        self._failures: Deque[_InjectedFailure] = deque()
        self._counter = 0
        self._lock = threading.Lock()

    # Ray serialises actor arguments; locks cannot be pickled.
    def __getstate__(self) -> Dict[str, Any]:
        state = self.__dict__.copy()
        state.pop("_lock", None)
        return state

    def __setstate__(self, state: Dict[str, Any]) -> None:
        self.__dict__.update(state)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Test helpers

    def inject_failure(self, operation: str, error: ProviderError, *, target: Optional[str] = None, times: int = 1) -> None:
        """
        Make the next ``times`` calls of ``operation`` raise ``error``.

        ``target`` restricts the failure to a resource kind, resource name,
        identity or workload.
        """
        with self._lock:
            self._failures.append(_InjectedFailure(operation, error, target, times))

    def set_workload(self, workload: str, *, replicas: int, utilization: Optional[float] = None, metric: str = "cpu") -> None:
        with self._lock:
            self.replicas[workload] = replicas
            if utilization is not None:
                self.utilization[(workload, metric)] = utilization

    def set_utilization(self, workload: str, value: float, metric: str = "cpu") -> None:
        with self._lock:
            self.utilization[(workload, metric)] = value

    def resources_of_kind(self, kind: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(item) for item in self.resources.values() if item["kind"] == kind]

    def _enter(self, operation: str, *keys: Optional[str]) -> None:
        if self.call_delay > 0:
            time.sleep(self.call_delay)
        present = tuple(key for key in keys if key)
        with self._lock:
            self.calls.append((operation, present[0] if present else ""))
            for failure in self._failures:
                if failure.matches(operation, present):
                    failure.remaining -= 1
                    logger.debug("Injected %s failure for %s: %s", operation, present, failure.error)
                    raise failure.error

    # ------------------------------------------------------------------
    # Provider contract

    def create_resource(self, kind: str, attributes: Mapping[str, Any]) -> str:
        name = str(attributes.get("name") or "")
        self._enter("create", kind, name)
        with self._lock:
            self._counter += 1
            identity = f"/providers/{kind}/{name or 'resource'}-{self._counter}"
            self.resources[identity] = {"identity": identity, "kind": kind, "attributes": copy.deepcopy(dict(attributes))}
        return identity

    def update_resource(self, identity: str, attributes: Mapping[str, Any]) -> None:
        with self._lock:
            existing = self.resources.get(identity)
        kind = existing["kind"] if existing else None
        self._enter("update", identity, kind)
        with self._lock:
            if identity not in self.resources:
                raise PermanentProviderError(f"Resource {identity} not found", code="not_found")
            self.resources[identity]["attributes"] = copy.deepcopy(dict(attributes))

    def delete_resource(self, identity: str) -> None:
        with self._lock:
            existing = self.resources.get(identity)
        kind = existing["kind"] if existing else None
        self._enter("delete", identity, kind)
        with self._lock:
            if self.resources.pop(identity, None) is None:
                raise PermanentProviderError(f"Resource {identity} not found", code="not_found")

    def set_replica_count(self, workload: str, count: int) -> None:
        self._enter("scale", workload)
        with self._lock:
            self.replicas[workload] = count
            self.scale_commands.append((workload, count))

    def read_utilization(self, workload: str, metric: str) -> float:
        self._enter("read_utilization", workload)
        with self._lock:
            try:
                return self.utilization[(workload, metric)]
            except KeyError as exc:
                raise PermanentProviderError(
                    f"No {metric} samples for workload {workload}", code="not_found"
                ) from exc

    def read_replica_count(self, workload: str) -> int:
        self._enter("read_replicas", workload)
        with self._lock:
            try:
                return self.replicas[workload]
            except KeyError as exc:
                raise PermanentProviderError(f"Workload {workload} not found", code="not_found") from exc
