"""
Client-facing Reconciler façade.

Wires the graph builder, plan engine and apply executor together for one
scope.  The state store and provider are passed in explicitly; the façade
never opens or closes the store itself.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from deploymesh.core.apply.executor import ApplyExecutor, CancellationToken
from deploymesh.core.config import EngineConfig, get_engine_config
from deploymesh.core.entities.resource import ResourceGraph
from deploymesh.core.entities.types import ApplyReport, ChangeSet
from deploymesh.core.graph.builder import DeclarationLike, ResourceGraphBuilder
from deploymesh.core.planning.planner import KindResolver, Planner
from deploymesh.core.providers.base import Provider
from deploymesh.core.state.store import StateStore

logger = logging.getLogger(__name__)


class Reconciler:
    """Plan and apply declared resources against one state-store scope."""

    def __init__(
        self,
        store: StateStore,
        provider: Provider,
        *,
        config: Optional[EngineConfig] = None,
        kind_resolver: Optional[KindResolver] = None,
        executor: Optional[ApplyExecutor] = None,
    ):
        """
        Args:
            store: Opened state store; its ``scope`` is the lock scope.
            provider: Control-plane provider used for every change.
            config: Engine configuration. ``None`` loads it via
                :func:`get_engine_config`.
            kind_resolver: Override for the resource kind registry.
            executor: Pre-built executor, mainly for tests.
        """
        self.store = store
        self.provider = provider
        self.config = config or get_engine_config()
        self._builder = ResourceGraphBuilder()
        self._planner = Planner(kind_resolver)
        settings = self.config.apply
        self._executor = executor or ApplyExecutor(
            provider,
            store,
            parallelism=settings.parallelism,
            retry_policy=settings.retry_policy(),
            call_timeout=settings.call_timeout,
        )

    @property
    def scope(self) -> str:
        return self.store.scope

    def build(self, declarations: Iterable[DeclarationLike]) -> ResourceGraph:
        return self._builder.build(declarations)

    def plan(self, declarations: Iterable[DeclarationLike]) -> ChangeSet:
        """Compute the change set without taking the lock or mutating anything."""
        return self._planner.plan(self.build(declarations), self.store)

    def apply(
        self,
        declarations: Iterable[DeclarationLike],
        *,
        cancel: Optional[CancellationToken] = None,
        lock_timeout: Optional[float] = None,
    ) -> ApplyReport:
        """
        Plan and apply under the scope lock.

        Planning errors propagate before anything is changed.  Provider
        failures are reported per change in the returned report.
        """
        graph = self.build(declarations)
        timeout = lock_timeout if lock_timeout is not None else self.config.state.lock_timeout
        handle = self.store.lock(self.scope, timeout=timeout)
        try:
            change_set = self._planner.plan(graph, self.store)
            if not change_set.has_changes:
                logger.info("Scope %s already converged (%d resources)", self.scope, len(change_set))
            return self._executor.execute(change_set, cancel=cancel)
        finally:
            self.store.unlock(handle)

    def destroy(self, *, cancel: Optional[CancellationToken] = None, lock_timeout: Optional[float] = None) -> ApplyReport:
        """Delete every resource recorded in the scope."""
        return self.apply([], cancel=cancel, lock_timeout=lock_timeout)
