"""
Resource kind registry.

A kind tells the plan engine whether a changed resource can be updated in
place or has to be replaced (deleted, then created again under the same
logical name).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Iterable, Union

KindFactory = Callable[[], "ResourceKind"]
KindSpec = Union["ResourceKind", KindFactory]


@dataclass(frozen=True)
class ResourceKind:
    """Update semantics of one resource kind."""

    name: str
    force_new: FrozenSet[str] = field(default_factory=frozenset)
    updatable: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "force_new", frozenset(self.force_new))

    def requires_replacement(self, changed: Iterable[str]) -> bool:
        changed = set(changed)
        if not changed:
            return False
        if not self.updatable:
            return True
        return bool(changed & self.force_new)


_KIND_REGISTRY: dict[str, ResourceKind] = {}


def _normalise(name: str) -> str:
    key = name.strip().lower()
    if not key:
        raise ValueError("Resource kind name must be a non-empty string.")
    return key


def register_kind(kind: KindSpec, *, replace: bool = False) -> ResourceKind:
    """
    Register a resource kind.

    Args:
        kind: A :class:`ResourceKind` or a factory returning one.
        replace: Whether an existing registration may be overwritten.
    """
    if not isinstance(kind, ResourceKind):
        if not callable(kind):
            raise TypeError("Kind must be a ResourceKind or a factory returning one.")
        kind = kind()
        if not isinstance(kind, ResourceKind):
            raise TypeError("Kind factory did not return a ResourceKind instance.")
    key = _normalise(kind.name)
    if key in _KIND_REGISTRY and not replace:
        raise ValueError(f"Resource kind '{key}' already registered.")
    _KIND_REGISTRY[key] = kind
    return kind


def unregister_kind(name: str) -> None:
    """Remove a kind; unknown names are ignored."""
    _KIND_REGISTRY.pop(_normalise(name), None)


def available_kinds() -> tuple[str, ...]:
    return tuple(sorted(_KIND_REGISTRY))


def resolve_kind(name: str) -> ResourceKind:
    """Return the registered kind, or an updatable default for unknown kinds."""
    key = _normalise(name)
    kind = _KIND_REGISTRY.get(key)
    if kind is None:
        return ResourceKind(name=key)
    return kind


register_kind(ResourceKind("azurerm_resource_group", force_new={"name", "location"}))
register_kind(
    ResourceKind("azurerm_container_registry", force_new={"name", "location", "resource_group_name"})
)
register_kind(
    ResourceKind(
        "azurerm_kubernetes_cluster",
        force_new={"name", "location", "resource_group_name", "dns_prefix"},
    )
)
register_kind(
    ResourceKind("azurerm_key_vault", force_new={"name", "location", "resource_group_name", "tenant_id"})
)


__all__ = [
    "ResourceKind",
    "available_kinds",
    "register_kind",
    "resolve_kind",
    "unregister_kind",
]
