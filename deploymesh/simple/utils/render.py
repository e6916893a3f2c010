"""Rendering helpers for friendly CLI/demo output."""

from __future__ import annotations

from typing import Iterable

from deploymesh.core.entities.scaling import ScalingDecision
from deploymesh.core.entities.types import ApplyReport, ChangeSet

_ACTION_MARKS = {"create": "+", "update": "~", "delete": "-", "no-op": " "}


def describe_plan(change_set: ChangeSet, title: str) -> None:
    print(title)
    if not change_set.has_changes:
        print("  - No changes. Infrastructure matches the declarations.\n")
        return
    for change in change_set:
        if change.is_noop:
            continue
        mark = "-/+" if change.replace else _ACTION_MARKS.get(change.action.value, "?")
        detail = f" changed={', '.join(change.changed)}" if change.changed else ""
        print(f"  {mark} {change.address}{detail}")
    summary = change_set.summary()
    print(
        f"  Plan: {summary['create']} to create, {summary['update']} to update,"
        f" {summary['delete']} to delete.\n"
    )


def pretty_print_report(report: ApplyReport, title: str) -> None:
    print(title)
    print(f"  - Scope: {report.scope}")
    print(f"  - Result: {'succeeded' if report.succeeded else 'incomplete'}")
    for result in report.results:
        if result.change.is_noop:
            continue
        line = f"    • {result.change.describe()} -> {result.outcome.value}"
        if result.attempts > 1:
            line += f" (attempts={result.attempts})"
        if result.reason:
            line += f" reason={result.reason}"
        print(line)
    print()


def describe_decisions(decisions: Iterable[ScalingDecision], title: str) -> None:
    print(title)
    for decision in decisions:
        print(
            f"  - {decision.workload}: {decision.action.value}"
            f" current={decision.current_replicas} desired={decision.desired_replicas}"
            f" utilization={decision.utilization} {decision.reason}"
        )
    print()
