"""
Persisted resource state.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class StateRecord:
    """Last-applied snapshot of one resource."""

    address: str
    kind: str
    name: str
    identity: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    declared: Dict[str, Any] = field(default_factory=dict)
    dependencies: Tuple[str, ...] = ()
    version: int = 0

    def output(self, attribute: str) -> Any:
        """Return an output attribute; ``id`` resolves to the provider identity."""
        if attribute == "id":
            return self.identity
        if attribute in self.attributes:
            return self.attributes[attribute]
        raise KeyError(f"Resource '{self.address}' has no output attribute '{attribute}'")

    def with_version(self, version: int) -> "StateRecord":
        return StateRecord(
            address=self.address,
            kind=self.kind,
            name=self.name,
            identity=self.identity,
            attributes=copy.deepcopy(self.attributes),
            declared=copy.deepcopy(self.declared),
            dependencies=tuple(self.dependencies),
            version=version,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "kind": self.kind,
            "name": self.name,
            "identity": self.identity,
            "attributes": copy.deepcopy(self.attributes),
            "declared": copy.deepcopy(self.declared),
            "dependencies": list(self.dependencies),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "StateRecord":
        address = str(payload.get("address") or "")
        if not address:
            raise ValueError("State record requires a non-empty 'address'")
        kind = payload.get("kind")
        name = payload.get("name")
        if not kind or not name:
            kind, _, name = address.partition(".")
        return cls(
            address=address,
            kind=str(kind),
            name=str(name),
            identity=str(payload.get("identity") or ""),
            attributes=dict(payload.get("attributes") or {}),
            declared=dict(payload.get("declared") or {}),
            dependencies=tuple(payload.get("dependencies") or ()),
            version=int(payload.get("version", 0) or 0),
        )


def record_version(record: Optional[StateRecord]) -> int:
    """Version of ``record``; ``0`` stands for an absent record."""
    return record.version if record is not None else 0
