"""
Shared pytest fixtures.
"""

from __future__ import annotations

import copy
import logging

import pytest
import ray

from deploymesh.core.config import ApplySettings, EngineConfig, StateSettings
from deploymesh.core.kinds import registry as kind_registry
from deploymesh.core.providers import InMemoryProvider
from deploymesh.core.state import InMemoryStateStore

logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s", force=True)
logging.getLogger("deploymesh").setLevel(logging.DEBUG)


ECOMMERCE_STACK = [
    {
        "kind": "azurerm_resource_group",
        "name": "rg",
        "attributes": {"name": "shop-rg", "location": "westeurope"},
    },
    {
        "kind": "azurerm_container_registry",
        "name": "acr",
        "attributes": {
            "name": "shopacr",
            "location": "westeurope",
            "resource_group_name": "${azurerm_resource_group.rg.name}",
            "sku": "Standard",
        },
    },
    {
        "kind": "azurerm_kubernetes_cluster",
        "name": "aks",
        "attributes": {
            "name": "shop-aks",
            "location": "westeurope",
            "resource_group_name": "${azurerm_resource_group.rg.name}",
            "dns_prefix": "shop",
            "node_count": 2,
        },
    },
    {
        "kind": "azurerm_key_vault",
        "name": "kv",
        "attributes": {
            "name": "shop-kv",
            "location": "westeurope",
            "resource_group_name": "${azurerm_resource_group.rg.name}",
            "tenant_id": "tenant-0001",
        },
    },
]


@pytest.fixture
def ray_runtime():
    """Spin up a local Ray runtime for tests and mirror worker logs to the driver."""
    try:
        ray.init(
            ignore_reinit_error=True,
            local_mode=True,
            logging_level=logging.INFO,
        )
    except PermissionError as exc:
        pytest.skip(f"Ray init requires system permissions not available in this environment: {exc}")
    except Exception as exc:  # pragma: no cover - restricted sandboxes
        if "Operation not permitted" in str(exc):
            pytest.skip(f"Ray init skipped due to restricted environment: {exc}")
        raise
    try:
        yield
    finally:
        ray.shutdown()


@pytest.fixture
def declarations():
    """A fresh copy of the RG/ACR/AKS/KV stack per test."""
    return copy.deepcopy(ECOMMERCE_STACK)


@pytest.fixture
def store():
    instance = InMemoryStateStore("shop-prod").open()
    try:
        yield instance
    finally:
        instance.close()


@pytest.fixture
def provider():
    return InMemoryProvider()


@pytest.fixture
def engine_config():
    return EngineConfig(
        apply=ApplySettings(parallelism=2, max_attempts=3, backoff_base=0.0, backoff_max=0.0, call_timeout=None),
        state=StateSettings(lock_timeout=1.0),
        source="<tests>",
    )


@pytest.fixture
def kind_snapshot():
    """Restore the kind registry after tests that register or disable kinds."""
    saved = dict(kind_registry._KIND_REGISTRY)
    try:
        yield
    finally:
        kind_registry._KIND_REGISTRY.clear()
        kind_registry._KIND_REGISTRY.update(saved)
