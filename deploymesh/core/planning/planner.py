"""
Plan engine.

Diffs a declared :class:`ResourceGraph` against the state store and emits a
:class:`ChangeSet`.  The set has two phases:

1. every Delete (removed resources and the delete half of replacements),
   dependents before their dependencies;
2. Create / Update / NoOp entries, dependencies before dependents.

Ties are broken by declaration order (state order for removed resources),
so identical inputs always produce identical plans.  Planning only reads
from the store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

from deploymesh.core.entities.resource import Reference, ResourceGraph, ResourceNode
from deploymesh.core.entities.state import StateRecord
from deploymesh.core.entities.types import Change, ChangeAction, ChangeSet
from deploymesh.core.graph.topology import topological_order
from deploymesh.core.kinds import ResourceKind, resolve_kind
from deploymesh.core.state.store import StateStore

logger = logging.getLogger(__name__)

KindResolver = Callable[[str], ResourceKind]


@dataclass
class _NodeDecision:
    node: ResourceNode
    record: Optional[StateRecord]
    action: ChangeAction
    declared: Dict[str, Any]
    changed: Set[str] = field(default_factory=set)
    replace: bool = False

    @property
    def new_identity(self) -> bool:
        """Whether dependents will see a new provider identity after apply."""
        return self.action is ChangeAction.CREATE


def _changed_keys(before: Mapping[str, Any], after: Mapping[str, Any]) -> Set[str]:
    keys = set(before) | set(after)
    return {key for key in keys if before.get(key) != after.get(key) or (key in before) != (key in after)}


_UNRESOLVED = object()


def _resolve_current(value: Any, records: Mapping[str, StateRecord]) -> Any:
    """Resolve ``value`` against stored outputs, or ``_UNRESOLVED`` if any are missing."""
    if isinstance(value, Reference):
        record = records.get(value.address)
        if record is None:
            return _UNRESOLVED
        try:
            return record.output(value.attribute)
        except KeyError:
            return _UNRESOLVED
    if isinstance(value, Mapping):
        resolved = {}
        for key, item in value.items():
            resolved[key] = _resolve_current(item, records)
            if resolved[key] is _UNRESOLVED:
                return _UNRESOLVED
        return resolved
    if isinstance(value, (list, tuple)):
        items = [_resolve_current(item, records) for item in value]
        return _UNRESOLVED if any(item is _UNRESOLVED for item in items) else items
    return value


class Planner:
    """Compute change sets from (graph, state)."""

    def __init__(self, kind_resolver: Optional[KindResolver] = None):
        self._resolve_kind = kind_resolver or resolve_kind

    def plan(self, graph: ResourceGraph, store: StateStore) -> ChangeSet:
        order = topological_order(graph.addresses(), graph.edges())
        records: Dict[str, StateRecord] = {record.address: record for record in store.list_records()}

        decisions: Dict[str, _NodeDecision] = {}
        for address in order:
            decisions[address] = self._decide(graph.node(address), records.get(address), decisions, records)

        removed = [address for address in records if address not in graph]
        replaced = [address for address in order if decisions[address].replace]
        delete_set = set(removed) | set(replaced)

        changes: List[Change] = []
        delete_index: Dict[str, int] = {}
        for address in self._delete_order(records, delete_set):
            record = records[address]
            requires = tuple(
                sorted(
                    delete_index[other]
                    for other in delete_index
                    if address in records[other].dependencies
                )
            )
            index = len(changes)
            changes.append(
                Change(
                    index=index,
                    address=address,
                    kind=record.kind,
                    name=record.name,
                    action=ChangeAction.DELETE,
                    before=dict(record.declared),
                    after=None,
                    dependencies=tuple(record.dependencies),
                    requires=requires,
                    replace=address in decisions,
                )
            )
            delete_index[address] = index

        apply_index: Dict[str, int] = {}
        for address in order:
            decision = decisions[address]
            node = decision.node
            requires = [apply_index[dependency] for dependency in node.dependencies if dependency in apply_index]
            if address in delete_index:
                requires.append(delete_index[address])
            index = len(changes)
            changes.append(
                Change(
                    index=index,
                    address=address,
                    kind=node.kind,
                    name=node.name,
                    action=decision.action,
                    before=dict(decision.record.declared) if decision.record and not decision.replace else None,
                    after=decision.declared,
                    changed=tuple(sorted(decision.changed)),
                    dependencies=node.dependencies,
                    requires=tuple(sorted(requires)),
                    replace=decision.replace,
                )
            )
            apply_index[address] = index

        change_set = ChangeSet(changes=tuple(changes))
        logger.info("Plan computed: %s", change_set.summary())
        return change_set

    def _decide(
        self,
        node: ResourceNode,
        record: Optional[StateRecord],
        decided: Mapping[str, _NodeDecision],
        records: Mapping[str, StateRecord],
    ) -> _NodeDecision:
        declared = node.declared_attributes()
        if record is None:
            return _NodeDecision(node, None, ChangeAction.CREATE, declared, changed=set(declared))

        changed = _changed_keys(record.declared, declared)

        # A dependency that gets a new identity, or changes an attribute we
        # read, makes our resolved value stale.
        for attribute, references in node.references().items():
            for reference in references:
                upstream = decided.get(reference.address)
                if upstream is None:
                    continue
                if upstream.new_identity or reference.attribute in upstream.changed:
                    changed.add(attribute)
            # So does a previous apply that replaced a dependency but failed
            # to rewrite this resource.
            if attribute not in changed:
                current = _resolve_current(node.attributes[attribute], records)
                if current is not _UNRESOLVED and record.attributes.get(attribute, _UNRESOLVED) != current:
                    logger.debug("Resource %s has stale resolved value for %s", node.address, attribute)
                    changed.add(attribute)

        kind = self._resolve_kind(node.kind)
        if kind.requires_replacement(changed):
            logger.debug("Resource %s requires replacement (changed=%s)", node.address, sorted(changed))
            return _NodeDecision(node, record, ChangeAction.CREATE, declared, changed=changed, replace=True)
        if changed or tuple(record.dependencies) != tuple(node.dependencies):
            return _NodeDecision(node, record, ChangeAction.UPDATE, declared, changed=changed)
        return _NodeDecision(node, record, ChangeAction.NOOP, declared)

    @staticmethod
    def _delete_order(records: Mapping[str, StateRecord], delete_set: Set[str]) -> List[str]:
        if not delete_set:
            return []
        addresses = list(records)
        edges: Dict[str, Tuple[str, ...]] = {address: records[address].dependencies for address in addresses}
        forward = topological_order(addresses, edges)
        return [address for address in reversed(forward) if address in delete_set]


def plan(graph: ResourceGraph, store: StateStore) -> ChangeSet:
    return Planner().plan(graph, store)
