"""
Resource declaration entities: references, nodes and the resource graph.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

_REFERENCE_PATTERN = re.compile(
    r"^\$\{(?P<kind>[A-Za-z0-9_\-]+)\.(?P<name>[A-Za-z0-9_\-]+)\.(?P<attribute>[A-Za-z0-9_\-]+)\}$"
)


def make_address(kind: str, name: str) -> str:
    return f"{kind}.{name}"


@dataclass(frozen=True)
class Reference:
    """Points at an output attribute of another declared resource."""

    kind: str
    name: str
    attribute: str = "id"

    @property
    def address(self) -> str:
        return make_address(self.kind, self.name)

    @property
    def expression(self) -> str:
        return "${%s.%s.%s}" % (self.kind, self.name, self.attribute)

    @classmethod
    def parse(cls, value: Any) -> Optional["Reference"]:
        """Return a reference for ``${kind.name.attribute}`` strings, else ``None``."""
        if isinstance(value, Reference):
            return value
        if not isinstance(value, str):
            return None
        match = _REFERENCE_PATTERN.match(value.strip())
        if match is None:
            return None
        return cls(kind=match.group("kind"), name=match.group("name"), attribute=match.group("attribute"))

    def __str__(self) -> str:
        return self.expression


def serialize_value(value: Any) -> Any:
    """Convert a declared value into its JSON-compatible, comparable form."""
    if isinstance(value, Reference):
        return value.expression
    if isinstance(value, Mapping):
        return {str(key): serialize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(item) for item in value]
    return value


def iter_references(value: Any) -> Iterator[Reference]:
    """Yield every reference nested anywhere inside ``value``."""
    if isinstance(value, Reference):
        yield value
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)


@dataclass(frozen=True)
class ResourceNode:
    """
    A single declared resource.

    ``attributes`` holds literals and :class:`Reference` values (possibly
    nested in lists or mappings).  ``dependencies`` is the sorted set of
    addresses this node must wait for, from references and explicit
    ``depends_on`` entries alike.
    """

    kind: str
    name: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    dependencies: Tuple[str, ...] = ()
    position: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    @property
    def address(self) -> str:
        return make_address(self.kind, self.name)

    def references(self) -> Dict[str, List[Reference]]:
        """Map attribute name -> references found in its value."""
        found: Dict[str, List[Reference]] = {}
        for key, value in self.attributes.items():
            refs = list(iter_references(value))
            if refs:
                found[key] = refs
        return found

    def declared_attributes(self) -> Dict[str, Any]:
        return {key: serialize_value(value) for key, value in self.attributes.items()}


class ResourceGraph:
    """
    Nodes plus an adjacency index keyed by address.

    Nodes are stored in declaration order; edges point from a dependent to
    the dependencies it requires.  The graph is read-only once built.
    """

    def __init__(self, nodes: List[ResourceNode]):
        self._nodes: Tuple[ResourceNode, ...] = tuple(nodes)
        self._index: Dict[str, int] = {node.address: idx for idx, node in enumerate(self._nodes)}
        self._dependencies: Dict[str, Tuple[str, ...]] = {
            node.address: node.dependencies for node in self._nodes
        }
        dependents: Dict[str, List[str]] = {node.address: [] for node in self._nodes}
        for node in self._nodes:
            for dependency in node.dependencies:
                if dependency in dependents:
                    dependents[dependency].append(node.address)
        self._dependents: Dict[str, Tuple[str, ...]] = {
            address: tuple(items) for address, items in dependents.items()
        }

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[ResourceNode]:
        return iter(self._nodes)

    def __contains__(self, address: object) -> bool:
        return address in self._index

    def node(self, address: str) -> ResourceNode:
        try:
            return self._nodes[self._index[address]]
        except KeyError as exc:
            raise KeyError(f"Resource '{address}' is not part of the graph") from exc

    def addresses(self) -> List[str]:
        return [node.address for node in self._nodes]

    def dependencies_of(self, address: str) -> Tuple[str, ...]:
        return self._dependencies.get(address, ())

    def dependents_of(self, address: str) -> Tuple[str, ...]:
        return self._dependents.get(address, ())

    def edges(self) -> Mapping[str, Tuple[str, ...]]:
        return MappingProxyType(self._dependencies)

    def __repr__(self) -> str:
        return f"ResourceGraph(nodes={len(self._nodes)})"
