"""
Horizontal autoscaling controller.

One controller owns one workload.  Each cycle moves
``Idle -> Evaluating -> Idle | Cooling-down``:

* replicas are recomputed as ``ceil(current * utilization / target)`` and
  clamped to ``[min_replicas, max_replicas]``;
* a change inside the stabilization window is suppressed;
* a failed observation never triggers a scale command, and a failed scale
  command is simply retried on the next cycle.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Deque, List, Optional

from deploymesh.core.entities.scaling import (
    ControllerPhase,
    ScalingAction,
    ScalingDecision,
    ScalingPolicy,
)
from deploymesh.core.errors import ProviderError, TransientProviderError
from deploymesh.core.providers.base import Provider

logger = logging.getLogger(__name__)

DEFAULT_EVALUATION_INTERVAL = 15.0

# Keeps exact ratios such as 140/70 from being rounded up by float noise.
_CEIL_EPSILON = 1e-9


def desired_replicas(policy: ScalingPolicy, current: int, utilization: float) -> tuple[int, int]:
    """Return ``(raw, bounded)`` replica counts for one observation."""
    if current <= 0:
        raw = policy.min_replicas
    else:
        raw = math.ceil(current * utilization / policy.target_utilization - _CEIL_EPSILON)
    return raw, policy.clamp(raw)


class AutoscalingController:
    """Target-utilization control loop for a single workload."""

    def __init__(
        self,
        policy: ScalingPolicy,
        provider: Provider,
        *,
        clock: Callable[[], float] = time.monotonic,
        history_size: int = 100,
        call_timeout: Optional[float] = None,
    ):
        self.policy = policy
        self.provider = provider
        self.phase = ControllerPhase.IDLE
        self.last_scale_time: Optional[float] = None
        self.call_timeout = call_timeout
        self._clock = clock
        self._history: Deque[ScalingDecision] = deque(maxlen=max(1, history_size))
        # evaluate() may be driven by the run loop and by direct calls at once
        self._lock = threading.Lock()
        self._calls: Optional[ThreadPoolExecutor] = None
        logger.debug(
            "AutoscalingController[%s] target=%.1f%% replicas=[%d, %d] window=%.1fs",
            policy.workload,
            policy.target_utilization,
            policy.min_replicas,
            policy.max_replicas,
            policy.stabilization_window,
        )

    @property
    def history(self) -> List[ScalingDecision]:
        with self._lock:
            return list(self._history)

    def evaluate(self) -> ScalingDecision:
        """Run one evaluation cycle and return its decision."""
        with self._lock:
            self.phase = ControllerPhase.EVALUATING
            try:
                decision = self._evaluate()
            except BaseException:
                self.phase = ControllerPhase.IDLE
                raise
            self._history.append(decision)
            if decision.action is ScalingAction.SUPPRESSED:
                self.phase = ControllerPhase.COOLING_DOWN
            else:
                self.phase = ControllerPhase.IDLE
            return decision

    def close(self) -> None:
        """Release the provider-call pool; a later cycle creates a new one."""
        calls, self._calls = self._calls, None
        if calls is not None:
            calls.shutdown(wait=False)

    def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        if self.call_timeout is None:
            return fn(*args)
        if self._calls is None:
            # a timed-out call keeps its thread; the spare one serves the next cycle
            self._calls = ThreadPoolExecutor(max_workers=2, thread_name_prefix=f"autoscaler-{self.policy.workload}")
        future = self._calls.submit(fn, *args)
        try:
            return future.result(timeout=self.call_timeout)
        except FutureTimeoutError as exc:
            future.cancel()
            raise TransientProviderError(
                f"Provider call {getattr(fn, '__name__', fn)} timed out after {self.call_timeout}s",
                code="timeout",
            ) from exc

    def _evaluate(self) -> ScalingDecision:
        policy = self.policy
        workload = policy.workload

        try:
            current = int(self._call(self.provider.read_replica_count, workload))
            utilization = float(self._call(self.provider.read_utilization, workload, policy.metric))
        except (ProviderError, TypeError, ValueError) as exc:
            logger.warning("Autoscaler[%s] observation failed, skipping cycle: %s", workload, exc)
            return ScalingDecision(workload, ScalingAction.SKIPPED, reason=f"observation failed: {exc}")

        if not math.isfinite(utilization) or utilization < 0:
            logger.warning("Autoscaler[%s] invalid utilization %r, skipping cycle", workload, utilization)
            return ScalingDecision(
                workload,
                ScalingAction.SKIPPED,
                current_replicas=current,
                reason=f"invalid utilization {utilization!r}",
            )

        raw, desired = desired_replicas(policy, current, utilization)
        observed = dict(current_replicas=current, desired_replicas=desired, raw_desired=raw, utilization=utilization)

        if desired == current:
            logger.debug("Autoscaler[%s] steady at %d replicas (utilization=%.1f%%)", workload, current, utilization)
            return ScalingDecision(workload, ScalingAction.NOOP, reason="at desired replica count", **observed)

        now = self._clock()
        if self.last_scale_time is not None and now - self.last_scale_time < policy.stabilization_window:
            remaining = policy.stabilization_window - (now - self.last_scale_time)
            logger.info(
                "Autoscaler[%s] suppressing %d -> %d, stabilization window has %.1fs left",
                workload,
                current,
                desired,
                remaining,
            )
            return ScalingDecision(
                workload,
                ScalingAction.SUPPRESSED,
                reason=f"within stabilization window ({remaining:.1f}s left)",
                **observed,
            )

        try:
            self._call(self.provider.set_replica_count, workload, desired)
        except ProviderError as exc:
            logger.error("Autoscaler[%s] scale %d -> %d failed: %s", workload, current, desired, exc)
            return ScalingDecision(workload, ScalingAction.FAILED, reason=f"scale command failed: {exc}", **observed)

        self.last_scale_time = now
        logger.info(
            "Autoscaler[%s] scaled %d -> %d (utilization=%.1f%% target=%.1f%%)",
            workload,
            current,
            desired,
            utilization,
            policy.target_utilization,
        )
        return ScalingDecision(workload, ScalingAction.SCALED, reason="utilization off target", **observed)

    def run(self, stop: threading.Event, *, interval: Optional[float] = None) -> None:
        """Evaluate every ``interval`` seconds until ``stop`` is set."""
        if interval is None:
            interval = self.policy.evaluation_interval or DEFAULT_EVALUATION_INTERVAL
        logger.info("Autoscaler[%s] loop started interval=%.1fs", self.policy.workload, interval)
        while not stop.is_set():
            try:
                self.evaluate()
            except Exception:  # keep the loop alive; the next cycle re-observes
                logger.exception("Autoscaler[%s] evaluation crashed", self.policy.workload)
                self.phase = ControllerPhase.IDLE
            stop.wait(interval)
        logger.info("Autoscaler[%s] loop stopped", self.policy.workload)
