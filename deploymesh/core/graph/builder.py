"""
Resource graph builder.

Turns an ordered collection of declarations into a :class:`ResourceGraph`.
Attribute values of the form ``${kind.name.attribute}`` (or
:class:`Reference` objects) become dependency edges.  The builder is a pure
transform and keeps no state between calls.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Union

from deploymesh.core.entities.resource import (
    Reference,
    ResourceGraph,
    ResourceNode,
    iter_references,
    make_address,
)
from deploymesh.core.errors import ConfigurationError, DuplicateNameError, UnknownReferenceError

logger = logging.getLogger(__name__)


@dataclass
class ResourceDeclaration:
    kind: str
    name: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    depends_on: List[str] = field(default_factory=list)

    @property
    def address(self) -> str:
        return make_address(self.kind, self.name)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ResourceDeclaration":
        kind = str(payload.get("kind") or payload.get("type") or "").strip()
        name = str(payload.get("name") or "").strip()
        if not kind or not name:
            raise ConfigurationError("Resource declaration requires non-empty 'kind' and 'name'", dict(payload))
        attributes = payload.get("attributes") or {}
        if not isinstance(attributes, Mapping):
            raise ConfigurationError("'attributes' must be a mapping", {"resource": make_address(kind, name)})
        depends_on = payload.get("depends_on") or []
        if isinstance(depends_on, str):
            depends_on = [depends_on]
        return cls(kind=kind, name=name, attributes=dict(attributes), depends_on=[str(d) for d in depends_on])


DeclarationLike = Union[ResourceDeclaration, Mapping[str, Any]]


def _parse_value(value: Any) -> Any:
    reference = Reference.parse(value)
    if reference is not None:
        return reference
    if isinstance(value, Mapping):
        return {key: _parse_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_parse_value(item) for item in value]
    return copy.deepcopy(value)


class ResourceGraphBuilder:
    """Build resource graphs from declarations."""

    def build(self, declarations: Iterable[DeclarationLike]) -> ResourceGraph:
        parsed = [self._coerce(item) for item in declarations]

        seen: Dict[str, ResourceDeclaration] = {}
        for declaration in parsed:
            if declaration.address in seen:
                raise DuplicateNameError(declaration.address)
            seen[declaration.address] = declaration

        nodes: List[ResourceNode] = []
        for position, declaration in enumerate(parsed):
            attributes = {key: _parse_value(value) for key, value in declaration.attributes.items()}
            dependencies = self._dependencies(declaration, attributes, seen)
            nodes.append(
                ResourceNode(
                    kind=declaration.kind,
                    name=declaration.name,
                    attributes=attributes,
                    dependencies=dependencies,
                    position=position,
                )
            )

        graph = ResourceGraph(nodes)
        logger.debug(
            "Built resource graph nodes=%d edges=%d",
            len(graph),
            sum(len(deps) for deps in graph.edges().values()),
        )
        return graph

    @staticmethod
    def _coerce(item: DeclarationLike) -> ResourceDeclaration:
        if isinstance(item, ResourceDeclaration):
            return item
        if isinstance(item, Mapping):
            return ResourceDeclaration.from_dict(item)
        raise TypeError(f"Unsupported declaration type: {type(item).__name__}")

    @staticmethod
    def _dependencies(
        declaration: ResourceDeclaration,
        attributes: Mapping[str, Any],
        known: Mapping[str, ResourceDeclaration],
    ) -> tuple[str, ...]:
        targets: List[str] = []
        for value in attributes.values():
            targets.extend(reference.address for reference in iter_references(value))
        targets.extend(declaration.depends_on)

        dependencies = set()
        for target in targets:
            if target not in known:
                raise UnknownReferenceError(declaration.address, target)
            # self references are kept so the plan engine reports them as cycles
            dependencies.add(target)
        return tuple(sorted(dependencies))


def build_graph(declarations: Sequence[DeclarationLike]) -> ResourceGraph:
    return ResourceGraphBuilder().build(declarations)
