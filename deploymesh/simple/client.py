"""
SimpleDeployment
----------------

Provides a thin, user-friendly wrapper around
:class:`deploymesh.core.controllers.Reconciler` and
:class:`deploymesh.core.autoscaling.AutoscalingController`.

A deployment document is a YAML (or already-parsed) mapping::

    scope: shop-prod
    resources:
      - kind: azurerm_resource_group
        name: rg
        attributes: {name: shop-rg, location: westeurope}
      - kind: azurerm_container_registry
        name: acr
        attributes:
          name: shopacr
          resource_group_name: ${azurerm_resource_group.rg.name}
    scaling:
      - workload: frontend
        target_utilization: 70
        min_replicas: 2
        max_replicas: 10
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from deploymesh.core.apply.executor import CancellationToken
from deploymesh.core.autoscaling.controller import AutoscalingController
from deploymesh.core.config import EngineConfig, get_engine_config
from deploymesh.core.controllers.reconciler import Reconciler
from deploymesh.core.entities.scaling import ScalingDecision, ScalingPolicy
from deploymesh.core.entities.types import ApplyReport, ChangeSet
from deploymesh.core.errors import ConfigurationError
from deploymesh.core.graph.builder import ResourceDeclaration
from deploymesh.core.providers.base import Provider
from deploymesh.core.state.store import FileStateStore, StateStore

DocumentSource = Union[str, "os.PathLike[str]", Mapping[str, Any]]


@dataclass
class DeploymentDocument:
    """
    Parsed deployment document.

    Attributes:
        scope: Lock / state scope, typically the resource group.
        resources: Resource declarations in document order.
        scaling: One policy per scaled workload.
    """

    scope: str = "default"
    resources: List[ResourceDeclaration] = field(default_factory=list)
    scaling: List[ScalingPolicy] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "DeploymentDocument":
        resources = payload.get("resources") or []
        scaling = payload.get("scaling") or []
        if not isinstance(resources, list) or not isinstance(scaling, list):
            raise ConfigurationError("'resources' and 'scaling' must be lists")
        policies: List[ScalingPolicy] = []
        for item in scaling:
            if not isinstance(item, Mapping):
                raise ConfigurationError("Each scaling policy must be a mapping")
            try:
                policies.append(ScalingPolicy.from_dict(dict(item)))
            except ValueError as exc:
                raise ConfigurationError(str(exc), {"workload": item.get("workload")}) from exc
        return cls(
            scope=str(payload.get("scope") or "default"),
            resources=[ResourceDeclaration.from_dict(item) for item in resources],
            scaling=policies,
        )


def load_document(source: DocumentSource) -> DeploymentDocument:
    """Load a document from a mapping, a YAML file path or YAML text."""
    if isinstance(source, Mapping):
        return DeploymentDocument.from_dict(source)

    if isinstance(source, os.PathLike) or (
        "\n" not in source and source.lower().endswith((".yaml", ".yml"))
    ):
        text = Path(source).read_text(encoding="utf-8")
    else:
        text = source
    data = yaml.safe_load(text) or {}
    if not isinstance(data, Mapping):
        raise ConfigurationError("Deployment document must be a mapping")
    return DeploymentDocument.from_dict(data)


class SimpleDeployment:
    """Reconcile one deployment document and drive its autoscalers."""

    def __init__(
        self,
        document: DeploymentDocument,
        *,
        store: StateStore,
        provider: Provider,
        config: Optional[EngineConfig] = None,
    ):
        if store.scope != document.scope:
            raise ConfigurationError(
                "State store scope does not match document scope",
                {"store": store.scope, "document": document.scope},
            )
        self.document = document
        self.provider = provider
        self.config = config or get_engine_config()
        self.store = store
        self.reconciler = Reconciler(store, provider, config=self.config)
        self._controllers: Dict[str, AutoscalingController] = {}
        self._owns_store = False

    @classmethod
    def from_source(
        cls,
        source: DocumentSource,
        *,
        store: StateStore,
        provider: Provider,
        config: Optional[EngineConfig] = None,
    ) -> "SimpleDeployment":
        return cls(load_document(source), store=store, provider=provider, config=config)

    @classmethod
    def open(
        cls,
        source: DocumentSource,
        *,
        provider: Provider,
        config: Optional[EngineConfig] = None,
    ) -> "SimpleDeployment":
        """
        Load ``source`` and open a file-backed store under ``state.path``.

        The store belongs to the deployment and is closed by :meth:`close`.
        """
        config = config or get_engine_config()
        document = load_document(source)
        store = FileStateStore(config.state.path, document.scope).open()
        try:
            deployment = cls(document, store=store, provider=provider, config=config)
        except BaseException:
            store.close()
            raise
        deployment._owns_store = True
        return deployment

    def close(self) -> None:
        for controller in self._controllers.values():
            controller.close()
        if self._owns_store and not self.store.closed:
            self.store.close()

    def __enter__(self) -> "SimpleDeployment":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def plan(self) -> ChangeSet:
        return self.reconciler.plan(self.document.resources)

    def apply(self, *, cancel: Optional[CancellationToken] = None) -> ApplyReport:
        return self.reconciler.apply(self.document.resources, cancel=cancel)

    def autoscalers(self) -> List[AutoscalingController]:
        for policy in self.document.scaling:
            if policy.workload not in self._controllers:
                self._controllers[policy.workload] = AutoscalingController(
                    policy,
                    self.provider,
                    history_size=self.config.autoscaling.history_size,
                    call_timeout=self.config.autoscaling.call_timeout,
                )
        return [self._controllers[policy.workload] for policy in self.document.scaling]

    def evaluate_scaling(self) -> List[ScalingDecision]:
        """Run one evaluation cycle for every scaled workload."""
        return [controller.evaluate() for controller in self.autoscalers()]
