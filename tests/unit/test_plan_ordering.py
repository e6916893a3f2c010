import random

import pytest

from deploymesh.core.apply import ApplyExecutor
from deploymesh.core.entities import ChangeAction
from deploymesh.core.graph import build_graph
from deploymesh.core.kinds import ResourceKind
from deploymesh.core.planning import Planner


def _chain(rng):
    return {f"n{i}": [f"n{i - 1}"] if i else [] for i in range(6)}


def _diamond(rng):
    return {
        "top": [],
        "left": ["top"],
        "right": ["top"],
        "bottom": ["left", "right"],
        "tail": ["bottom"],
    }


def _random(rng):
    shape = {"n0": []}
    for i in range(1, 12):
        earlier = [f"n{j}" for j in range(i)]
        upstream = [name for name in earlier if rng.random() < 0.3]
        shape[f"n{i}"] = upstream or [rng.choice(earlier)]
    return shape


SHAPES = {"chain": _chain, "diamond": _diamond, "random": _random}


def _declarations(shape, rng, overrides=None):
    overrides = overrides or {}
    items = [
        {
            "kind": "node",
            "name": name,
            "attributes": {
                "zone": "eu-1",
                "size": 1,
                "upstream": ["${node.%s.id}" % dependency for dependency in upstream],
                **overrides.get(name, {}),
            },
        }
        for name, upstream in shape.items()
    ]
    rng.shuffle(items)
    return items


def _planner():
    return Planner(kind_resolver=lambda name: ResourceKind(name, force_new={"zone"}))


def _assert_ordered(change_set):
    changes = list(change_set)
    for position, change in enumerate(changes):
        assert change.index == position
        assert all(required < change.index for required in change.requires)

    deletes = [change for change in changes if change.action is ChangeAction.DELETE]
    applies = [change for change in changes if change.action is not ChangeAction.DELETE]
    if deletes and applies:
        assert deletes[-1].index < applies[0].index

    # 删除阶段：依赖方先于被依赖方
    deleted = {change.address: change.index for change in deletes}
    for change in deletes:
        for dependency in change.dependencies:
            if dependency in deleted:
                assert change.index < deleted[dependency]
                assert change.index in changes[deleted[dependency]].requires

    # 应用阶段：被依赖方先于依赖方
    applied = {change.address: change.index for change in applies}
    for change in applies:
        for dependency in change.dependencies:
            assert applied[dependency] < change.index
            assert applied[dependency] in change.requires


def _apply(planner, declarations, store, provider):
    change_set = planner.plan(build_graph(declarations), store)
    _assert_ordered(change_set)
    report = ApplyExecutor(provider, store, parallelism=3).execute(change_set)
    assert report.succeeded, report.to_dict()
    return change_set


@pytest.mark.parametrize(
    "shape_name, seed",
    [("chain", 0), ("diamond", 1), ("random", 2), ("random", 3), ("random", 4)],
)
def test_generated_graphs_plan_in_dependency_order(shape_name, seed, store, provider):
    rng = random.Random(seed)
    shape = SHAPES[shape_name](rng)
    planner = _planner()

    initial = _apply(planner, _declarations(shape, rng), store, provider)
    assert initial.summary()["create"] == len(shape)

    dependents = {name: [other for other, upstream in shape.items() if name in upstream] for name in shape}
    sinks = [name for name in shape if not dependents[name]]
    removed = set(rng.sample(sinks, max(1, len(sinks) // 2)))
    rezoned = rng.choice([name for name in shape if dependents[name]])
    resized = rng.choice([name for name in shape if name not in removed and name != rezoned])

    remaining = {name: upstream for name, upstream in shape.items() if name not in removed}
    overrides = {rezoned: {"zone": "eu-2"}, resized: {"size": 3}}
    declarations = _declarations(remaining, rng, overrides)

    change_set = _apply(planner, declarations, store, provider)

    by_action = {}
    for change in change_set:
        by_action.setdefault(change.action, set()).add(change.address)
    assert {"node.%s" % name for name in removed} | {"node.%s" % rezoned} == by_action[ChangeAction.DELETE]
    assert by_action[ChangeAction.CREATE] == {"node.%s" % rezoned}
    for change in change_set.for_address("node.%s" % rezoned):
        assert change.replace

    assert not planner.plan(build_graph(declarations), store).has_changes
    assert sorted(record.name for record in store.list_records()) == sorted(remaining)
