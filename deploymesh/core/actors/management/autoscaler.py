"""
Autoscaler actor.

Hosts one :class:`AutoscalingController` per workload and runs its
evaluation loop on a background thread so the actor keeps answering
status calls while the loop sleeps.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

import ray

from deploymesh.core.autoscaling.controller import AutoscalingController
from deploymesh.core.entities.scaling import ScalingPolicy
from deploymesh.core.providers.base import Provider
from deploymesh.core.utils import configure_runtime_logging

from .config import ActorConfig

logger = logging.getLogger(__name__)


@ray.remote
class AutoscalerActor:
    """Periodic reconcile loop for a single workload."""

    def __init__(self, config: ActorConfig, policy: ScalingPolicy, provider: Provider):
        configure_runtime_logging(component=config.name)
        self.config = config
        self.controller = AutoscalingController(
            policy,
            provider,
            history_size=config.history_size,
            call_timeout=config.call_timeout,
        )
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        logger.info("AutoscalerActor[%s] initialised for workload %s", config.name, policy.workload)

    def reconcile(self) -> dict:
        """Run a single evaluation cycle immediately."""
        return self.controller.evaluate().to_dict()

    def start(self) -> bool:
        if self._thread is not None and self._thread.is_alive():
            return False
        self._stop.clear()
        # a per-policy interval wins over the engine-wide one
        interval = self.controller.policy.evaluation_interval or self.config.evaluation_interval
        self._thread = threading.Thread(
            target=self.controller.run,
            args=(self._stop,),
            kwargs={"interval": interval},
            name=f"autoscaler-{self.controller.policy.workload}",
            daemon=True,
        )
        self._thread.start()
        return True

    def stop(self, timeout: float = 5.0) -> bool:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout=timeout)
            stopped = not thread.is_alive()
        else:
            stopped = True
        self.controller.close()
        return stopped

    def status(self) -> dict:
        return {
            "name": self.config.name,
            "workload": self.controller.policy.workload,
            "phase": self.controller.phase.value,
            "running": self._thread is not None and self._thread.is_alive(),
            "last_scale_time": self.controller.last_scale_time,
            "metadata": dict(self.config.metadata),
        }

    def history(self) -> list[dict]:
        return [decision.to_dict() for decision in self.controller.history]
