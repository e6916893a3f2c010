"""
Exception hierarchy for DeployMesh.

Planning errors abort a run before anything is mutated.  State-store errors
signal contention and are recoverable by re-running the whole plan/apply
cycle.  Provider errors carry an :class:`~deploymesh.config.policy.ErrorClass`
that decides whether the apply executor retries them.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from deploymesh.config.policy import ErrorClass, classify_error_code


class DeployMeshError(Exception):
    """Base exception for every error raised by DeployMesh."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class ConfigurationError(DeployMeshError, ValueError):
    """Raised when a configuration document or declaration is malformed."""


# ----------------------------------------------------------------------
# Planning


class PlanningError(DeployMeshError):
    """Fatal error detected while building or planning a resource graph."""


class UnknownReferenceError(PlanningError):
    def __init__(self, source: str, target: str):
        super().__init__(
            f"Resource '{source}' references unknown resource '{target}'",
            {"source": source, "target": target},
        )
        self.source = source
        self.target = target


class DuplicateNameError(PlanningError):
    def __init__(self, address: str):
        super().__init__(f"Resource '{address}' is declared more than once", {"address": address})
        self.address = address


class CyclicDependencyError(PlanningError):
    def __init__(self, cycle: Iterable[str]):
        self.cycle = tuple(cycle)
        super().__init__("Dependency cycle detected: " + " -> ".join(self.cycle))


# ----------------------------------------------------------------------
# State store


class StateStoreError(DeployMeshError):
    """Raised when the state store cannot serve a request."""


class ConcurrentModificationError(StateStoreError):
    def __init__(self, name: str, expected: int, actual: int):
        super().__init__(
            f"State record '{name}' changed concurrently",
            {"expected_version": expected, "actual_version": actual},
        )
        self.name = name
        self.expected = expected
        self.actual = actual


class LockTimeoutError(StateStoreError):
    def __init__(self, scope: str, timeout: float, holder: Optional[Dict[str, Any]] = None):
        context: Dict[str, Any] = {"timeout": timeout}
        context.update(holder or {})
        super().__init__(f"Timed out waiting for apply lock on scope '{scope}'", context)
        self.scope = scope
        self.timeout = timeout


# ----------------------------------------------------------------------
# Provider


class ProviderError(DeployMeshError):
    """
    Failure reported by a provider call.

    ``error_class`` is taken from the subclass, an explicit argument, or the
    provider's error ``code`` (``"throttled"``, ``"forbidden"`` ...), in that
    order.  Errors that cannot be classified are permanent.
    """

    default_class: Optional[ErrorClass] = None

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        error_class: Optional[ErrorClass] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.code = code
        if error_class is None:
            error_class = self.default_class or classify_error_code(code)
        self.error_class = error_class

    @property
    def transient(self) -> bool:
        return self.error_class is ErrorClass.TRANSIENT


class TransientProviderError(ProviderError):
    """Rate limits, timeouts and other failures expected to succeed on retry."""

    default_class = ErrorClass.TRANSIENT


class PermanentProviderError(ProviderError):
    """Validation, permission and other failures that retrying will not fix."""

    default_class = ErrorClass.PERMANENT


__all__ = [
    "ConcurrentModificationError",
    "ConfigurationError",
    "CyclicDependencyError",
    "DeployMeshError",
    "DuplicateNameError",
    "LockTimeoutError",
    "PermanentProviderError",
    "PlanningError",
    "ProviderError",
    "StateStoreError",
    "TransientProviderError",
    "UnknownReferenceError",
]
