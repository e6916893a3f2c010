import math
import threading
import time

import pytest

from deploymesh.core.autoscaling import AutoscalingController, desired_replicas
from deploymesh.core.entities import ControllerPhase, ScalingAction, ScalingPolicy
from deploymesh.core.errors import PermanentProviderError, TransientProviderError
from deploymesh.core.providers import InMemoryProvider


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SlowScaleProvider(InMemoryProvider):
    def set_replica_count(self, workload: str, count: int) -> None:
        time.sleep(0.2)
        super().set_replica_count(workload, count)


class HangingProvider(InMemoryProvider):
    """Blocks the named operations until ``release`` is set."""

    def __init__(self, *operations: str):
        super().__init__()
        self.hanging = set(operations)
        self.release = threading.Event()

    def _hang(self, operation: str) -> None:
        if operation in self.hanging:
            self.release.wait(5.0)

    def read_utilization(self, workload: str, metric: str) -> float:
        self._hang("read_utilization")
        return super().read_utilization(workload, metric)

    def set_replica_count(self, workload: str, count: int) -> None:
        self._hang("scale")
        super().set_replica_count(workload, count)


@pytest.fixture
def policy():
    return ScalingPolicy(
        workload="frontend",
        target_utilization=70.0,
        min_replicas=2,
        max_replicas=10,
        stabilization_window=300.0,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def controller(policy, provider, clock):
    return AutoscalingController(policy, provider, clock=clock)


def test_scale_up_to_computed_replicas(controller, provider, clock):
    provider.set_workload("frontend", replicas=2, utilization=140.0)

    decision = controller.evaluate()

    assert decision.action is ScalingAction.SCALED
    assert decision.current_replicas == 2
    assert decision.desired_replicas == 4
    assert provider.scale_commands == [("frontend", 4)]
    assert controller.phase is ControllerPhase.IDLE
    assert controller.last_scale_time == clock.now


def test_scale_is_clamped_to_max(controller, provider):
    provider.set_workload("frontend", replicas=2, utilization=700.0)

    decision = controller.evaluate()

    assert decision.raw_desired == 20
    assert decision.desired_replicas == 10
    assert provider.scale_commands == [("frontend", 10)]


def test_scale_down_is_clamped_to_min(controller, provider):
    provider.set_workload("frontend", replicas=4, utilization=10.0)

    decision = controller.evaluate()

    assert decision.raw_desired == 1
    assert decision.desired_replicas == 2
    assert provider.scale_commands == [("frontend", 2)]


def test_on_target_is_noop(controller, provider):
    provider.set_workload("frontend", replicas=3, utilization=70.0)

    decision = controller.evaluate()

    assert decision.action is ScalingAction.NOOP
    assert provider.scale_commands == []
    assert controller.last_scale_time is None


def test_stabilization_window_suppresses_second_change(controller, provider, clock):
    provider.set_workload("frontend", replicas=2, utilization=140.0)
    controller.evaluate()

    clock.advance(60)
    provider.set_utilization("frontend", 140.0)
    suppressed = controller.evaluate()

    assert suppressed.action is ScalingAction.SUPPRESSED
    assert suppressed.desired_replicas == 8
    assert controller.phase is ControllerPhase.COOLING_DOWN
    assert provider.scale_commands == [("frontend", 4)]

    # 窗口结束后重新评估并执行
    clock.advance(241)
    scaled = controller.evaluate()

    assert scaled.action is ScalingAction.SCALED
    assert provider.scale_commands == [("frontend", 4), ("frontend", 8)]
    assert controller.phase is ControllerPhase.IDLE


def test_observation_failure_skips_cycle(controller, provider):
    provider.set_workload("frontend", replicas=2, utilization=140.0)
    provider.inject_failure("read_utilization", TransientProviderError("metrics lag", code="timeout"))

    decision = controller.evaluate()

    assert decision.action is ScalingAction.SKIPPED
    assert "observation failed" in decision.reason
    assert provider.scale_commands == []
    assert controller.phase is ControllerPhase.IDLE


def test_missing_metric_skips_cycle(controller, provider):
    provider.set_workload("frontend", replicas=2)

    assert controller.evaluate().action is ScalingAction.SKIPPED


def test_scale_failure_is_retried_next_cycle(controller, provider):
    provider.set_workload("frontend", replicas=2, utilization=140.0)
    provider.inject_failure("scale", PermanentProviderError("quota", code="quota_exceeded"))

    failed = controller.evaluate()

    assert failed.action is ScalingAction.FAILED
    assert controller.last_scale_time is None
    assert provider.replicas["frontend"] == 2

    retried = controller.evaluate()
    assert retried.action is ScalingAction.SCALED
    assert provider.replicas["frontend"] == 4


@pytest.mark.parametrize("utilization", [math.inf, -math.inf, math.nan, -5.0])
def test_non_finite_utilization_skips_cycle(controller, provider, utilization):
    provider.set_workload("frontend", replicas=2, utilization=utilization)

    decision = controller.evaluate()

    assert decision.action is ScalingAction.SKIPPED
    assert "invalid utilization" in decision.reason
    assert provider.scale_commands == []
    assert controller.phase is ControllerPhase.IDLE


def test_concurrent_evaluations_issue_one_scale_command(policy, clock):
    provider = SlowScaleProvider()
    provider.set_workload("frontend", replicas=2, utilization=140.0)
    controller = AutoscalingController(policy, provider, clock=clock)
    decisions = []

    threads = [threading.Thread(target=lambda: decisions.append(controller.evaluate())) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5.0)

    assert provider.scale_commands == [("frontend", 4)]
    assert sorted(decision.action.value for decision in decisions) == ["scaled", "suppressed"]
    assert len(controller.history) == 2


def test_hung_observation_times_out_and_skips(policy, clock):
    provider = HangingProvider("read_utilization")
    provider.set_workload("frontend", replicas=2, utilization=140.0)
    controller = AutoscalingController(policy, provider, clock=clock, call_timeout=0.05)
    try:
        decision = controller.evaluate()

        assert decision.action is ScalingAction.SKIPPED
        assert "timed out" in decision.reason
        assert provider.scale_commands == []
        assert controller.phase is ControllerPhase.IDLE
    finally:
        provider.release.set()
        controller.close()


def test_hung_scale_command_times_out_and_fails(policy, clock):
    provider = HangingProvider("scale")
    provider.set_workload("frontend", replicas=2, utilization=140.0)
    controller = AutoscalingController(policy, provider, clock=clock, call_timeout=0.05)
    try:
        decision = controller.evaluate()

        assert decision.action is ScalingAction.FAILED
        assert "timed out" in decision.reason
        assert decision.desired_replicas == 4
        assert controller.last_scale_time is None
    finally:
        provider.release.set()
        controller.close()


def test_scale_from_zero_uses_min_replicas(controller, provider):
    provider.set_workload("frontend", replicas=0, utilization=0.0)

    decision = controller.evaluate()

    assert decision.desired_replicas == 2
    assert provider.scale_commands == [("frontend", 2)]


def test_history_is_bounded(policy, provider, clock):
    controller = AutoscalingController(policy, provider, clock=clock, history_size=2)
    provider.set_workload("frontend", replicas=3, utilization=70.0)

    for _ in range(3):
        controller.evaluate()

    assert len(controller.history) == 2
    assert all(decision.action is ScalingAction.NOOP for decision in controller.history)


def test_run_loop_stops_on_event(controller, provider):
    provider.set_workload("frontend", replicas=2, utilization=140.0)
    stop = threading.Event()

    thread = threading.Thread(target=controller.run, args=(stop,), kwargs={"interval": 0.01})
    thread.start()
    try:
        for _ in range(200):
            if controller.history:
                break
            stop.wait(0.01)
    finally:
        stop.set()
        thread.join(timeout=5.0)

    assert not thread.is_alive()
    assert controller.history[0].action is ScalingAction.SCALED


@pytest.mark.parametrize(
    "current, utilization, expected",
    [
        (2, 140.0, (4, 4)),
        (2, 700.0, (20, 10)),
        (3, 70.0, (3, 3)),
        (3, 71.0, (4, 4)),
        (5, 0.0, (0, 2)),
        (0, 95.0, (2, 2)),
    ],
)
def test_desired_replicas(policy, current, utilization, expected):
    assert desired_replicas(policy, current, utilization) == expected


def test_policy_validation():
    with pytest.raises(ValueError):
        ScalingPolicy(workload="frontend", target_utilization=70.0, min_replicas=5, max_replicas=3)
    with pytest.raises(ValueError):
        ScalingPolicy(workload="frontend", target_utilization=0)
    with pytest.raises(ValueError):
        ScalingPolicy.from_dict({"workload": "frontend"})


def test_policy_round_trip_through_dict(policy):
    assert ScalingPolicy.from_dict(policy.to_dict()) == policy


def test_policy_interval_is_optional(policy):
    assert policy.evaluation_interval is None

    custom = ScalingPolicy.from_dict({"workload": "api", "target_utilization": 50, "evaluation_interval": 5})
    assert custom.evaluation_interval == 5.0
    with pytest.raises(ValueError):
        ScalingPolicy(workload="api", target_utilization=50.0, evaluation_interval=0)
