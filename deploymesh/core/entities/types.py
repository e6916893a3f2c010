"""
Change-set and apply-report types shared by the plan engine and executor.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple


class ChangeAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "no-op"


@dataclass(frozen=True)
class Change:
    """
    One planned step.

    ``requires`` lists the indices of earlier changes in the same set that
    must succeed before this one may start.  ``replace`` marks the two
    halves (delete, then create) of a resource that cannot be updated in
    place.
    """

    index: int
    address: str
    kind: str
    name: str
    action: ChangeAction
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    changed: Tuple[str, ...] = ()
    dependencies: Tuple[str, ...] = ()
    requires: Tuple[int, ...] = ()
    replace: bool = False

    @property
    def is_noop(self) -> bool:
        return self.action is ChangeAction.NOOP

    def describe(self) -> str:
        label = self.action.value
        if self.replace:
            label += " (replace)"
        return f"{label} {self.address}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "address": self.address,
            "kind": self.kind,
            "name": self.name,
            "action": self.action.value,
            "before": self.before,
            "after": self.after,
            "changed": list(self.changed),
            "dependencies": list(self.dependencies),
            "requires": list(self.requires),
            "replace": self.replace,
        }


@dataclass(frozen=True)
class ChangeSet:
    """Ordered changes produced by one planning cycle."""

    changes: Tuple[Change, ...] = ()

    def __iter__(self) -> Iterator[Change]:
        return iter(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    def __getitem__(self, index: int) -> Change:
        return self.changes[index]

    @property
    def has_changes(self) -> bool:
        return any(not change.is_noop for change in self.changes)

    def pending(self) -> List[Change]:
        """Changes that will call the provider."""
        return [change for change in self.changes if not change.is_noop]

    def for_address(self, address: str) -> List[Change]:
        return [change for change in self.changes if change.address == address]

    def summary(self) -> Dict[str, int]:
        counts = {action.value: 0 for action in ChangeAction}
        for change in self.changes:
            counts[change.action.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary(),
            "changes": [change.to_dict() for change in self.changes],
        }


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def succeeded(self) -> bool:
        return self in (ApplyOutcome.APPLIED, ApplyOutcome.UNCHANGED)


@dataclass(frozen=True)
class ChangeResult:
    change: Change
    outcome: ApplyOutcome
    reason: Optional[str] = None
    attempts: int = 0
    identity: Optional[str] = None

    @property
    def address(self) -> str:
        return self.change.address

    @property
    def succeeded(self) -> bool:
        return self.outcome.succeeded

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.change.index,
            "address": self.change.address,
            "action": self.change.action.value,
            "replace": self.change.replace,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "attempts": self.attempts,
            "identity": self.identity,
        }


@dataclass
class ApplyReport:
    """Per-change outcome of one apply run, in change-set order."""

    scope: str
    results: List[ChangeResult] = field(default_factory=list)
    cancelled: bool = False
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def succeeded(self) -> bool:
        return not self.cancelled and all(result.succeeded for result in self.results)

    def by_address(self) -> Dict[str, ChangeResult]:
        """
        Final result per resource.

        A replaced resource has two entries; the first one that did not
        succeed wins, otherwise the last.
        """
        final: Dict[str, ChangeResult] = {}
        for result in self.results:
            current = final.get(result.address)
            if current is not None and not current.succeeded:
                continue
            final[result.address] = result
        return final

    def outcome_for(self, address: str) -> Optional[ApplyOutcome]:
        result = self.by_address().get(address)
        return result.outcome if result else None

    def addresses_with(self, outcome: ApplyOutcome) -> List[str]:
        return [address for address, result in self.by_address().items() if result.outcome is outcome]

    def summary(self) -> Dict[str, int]:
        counts = {outcome.value: 0 for outcome in ApplyOutcome}
        for result in self.by_address().values():
            counts[result.outcome.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scope": self.scope,
            "succeeded": self.succeeded,
            "cancelled": self.cancelled,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "summary": self.summary(),
            "results": [result.to_dict() for result in self.results],
        }
