"""
DeployMesh head-node helper.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

import ray

from deploymesh.core.config import EngineConfig, get_engine_config
from deploymesh.core.entities.scaling import ScalingPolicy
from deploymesh.core.providers.base import Provider

from .management.autoscaler import AutoscalerActor
from .management.config import ActorConfig

logger = logging.getLogger(__name__)


class DeploymentHead:
    """Start/stop one autoscaler actor per scaling policy."""

    def __init__(self, name: str = "deploymesh", *, config: Optional[EngineConfig] = None):
        self.name = name
        self.settings = (config or get_engine_config()).autoscaling
        self._actors: Dict[str, ray.actor.ActorHandle] = {}

    @property
    def workloads(self) -> List[str]:
        return sorted(self._actors)

    def actor(self, workload: str) -> Optional[ray.actor.ActorHandle]:
        return self._actors.get(workload)

    def start(self, policies: Iterable[ScalingPolicy], provider: Provider, *, run_loops: bool = True) -> bool:
        for policy in policies:
            if policy.workload in self._actors:
                logger.warning("Autoscaler for %s already running, skipping", policy.workload)
                continue
            config = ActorConfig(
                name=f"{self.name}-autoscaler-{policy.workload}",
                evaluation_interval=self.settings.evaluation_interval,
                history_size=self.settings.history_size,
                call_timeout=self.settings.call_timeout,
            )
            handle = AutoscalerActor.options(max_restarts=config.max_restarts).remote(config, policy, provider)
            if run_loops:
                ray.get(handle.start.remote())
            self._actors[policy.workload] = handle
            logger.info("Autoscaler started for workload %s (%s)", policy.workload, config.name)
        return True

    def reconcile_all(self) -> Dict[str, dict]:
        refs = {workload: handle.reconcile.remote() for workload, handle in self._actors.items()}
        return {workload: ray.get(ref) for workload, ref in refs.items()}

    def stop(self) -> bool:
        for workload, handle in list(self._actors.items()):
            try:
                ray.get(handle.stop.remote())
            finally:
                ray.kill(handle, no_restart=True)
            del self._actors[workload]
            logger.info("Autoscaler stopped for workload %s", workload)
        return True
