"""Example: Provision the e-commerce stack and autoscale its frontend.

The script declares a resource group with a container registry, a managed
cluster and a key vault, applies it against the in-memory provider with a
file-backed state store, then shows an in-place update, a replacement and a
removal.  Finally it hands the frontend scaling policy to a Ray autoscaler
actor and drives a few evaluation cycles.
"""

from __future__ import annotations

import ray

from deploymesh.core.actors import DeploymentHead
from deploymesh.core.errors import TransientProviderError
from deploymesh.core.providers import InMemoryProvider
from deploymesh.simple import SimpleDeployment
from deploymesh.simple.utils import (
    configure_demo_logging,
    demote_ray_logging,
    describe_decisions,
    describe_plan,
    pretty_print_report,
)

STACK = """
scope: shop-prod
resources:
  - kind: azurerm_resource_group
    name: rg
    attributes:
      name: shop-rg
      location: westeurope
  - kind: azurerm_container_registry
    name: acr
    attributes:
      name: shopacr
      location: westeurope
      resource_group_name: ${azurerm_resource_group.rg.name}
      sku: Standard
  - kind: azurerm_kubernetes_cluster
    name: aks
    attributes:
      name: shop-aks
      location: westeurope
      resource_group_name: ${azurerm_resource_group.rg.name}
      dns_prefix: shop
      node_count: 3
      registry_id: ${azurerm_container_registry.acr.id}
  - kind: azurerm_key_vault
    name: kv
    attributes:
      name: shop-kv
      location: westeurope
      resource_group_name: ${azurerm_resource_group.rg.name}
      tenant_id: 00000000-0000-0000-0000-000000000000
scaling:
  - workload: frontend
    metric: cpu
    target_utilization: 70
    min_replicas: 2
    max_replicas: 10
    stabilization_window: 0
"""

def _resource(document, name):
    return next(item for item in document.resources if item.name == name)


def main() -> None:
    configure_demo_logging()
    demote_ray_logging()

    provider = InMemoryProvider()
    # 模拟一次限流，演示 transient 重试
    provider.inject_failure(
        "create",
        TransientProviderError("429 Too Many Requests", code="throttled"),
        target="azurerm_key_vault",
    )

    # 状态目录取自 state.path（默认 .deploymesh/state）
    with SimpleDeployment.open(STACK, provider=provider) as deployment:
        document = deployment.document

        describe_plan(deployment.plan(), "=== 初始计划 ===")
        pretty_print_report(deployment.apply(), "=== 初始部署 ===")
        describe_plan(deployment.plan(), "=== 再次计划（应无变化） ===")

        # In-place update: node_count is mutable on a managed cluster
        _resource(document, "aks").attributes["node_count"] = 5
        describe_plan(deployment.plan(), "=== 扩容节点池 ===")
        pretty_print_report(deployment.apply(), "=== 应用节点池更新 ===")

        # Replacement: dns_prefix forces a new cluster
        _resource(document, "aks").attributes["dns_prefix"] = "shop-v2"
        describe_plan(deployment.plan(), "=== 修改 DNS 前缀（需要重建） ===")
        pretty_print_report(deployment.apply(), "=== 重建集群 ===")

        # Removal: drop the key vault from the declarations
        document.resources = [item for item in document.resources if item.name != "kv"]
        describe_plan(deployment.plan(), "=== 移除 Key Vault ===")
        pretty_print_report(deployment.apply(), "=== 删除 Key Vault ===")

        print(f"State persisted to {deployment.store.state_file}\n")

        pretty_print_report(deployment.reconciler.destroy(), "=== 清理全部资源 ===")

    # 智能初始化 Ray
    try:
        ray.init(address="auto", ignore_reinit_error=True)
        print("✅ 连接到现有 Ray 集群")
    except Exception:
        ray.init(ignore_reinit_error=True)
        print("📋 创建新的本地 Ray 集群")

    scaling_provider = InMemoryProvider()
    scaling_provider.set_workload("frontend", replicas=2, utilization=140.0)
    head = DeploymentHead("ecommerce")
    try:
        head.start(document.scaling, scaling_provider, run_loops=False)
        for cycle in range(1, 4):
            decisions = head.reconcile_all()
            print(f"=== 扩缩容周期 {cycle} ===")
            for workload, decision in decisions.items():
                print(
                    f"  - {workload}: {decision['action']} "
                    f"{decision['current_replicas']} -> {decision['desired_replicas']} "
                    f"(utilization={decision['utilization']})"
                )
            print()
    finally:
        head.stop()
        ray.shutdown()

    # Local controllers expose the same decisions without Ray
    local_provider = InMemoryProvider()
    local_provider.set_workload("frontend", replicas=2, utilization=700.0)
    with SimpleDeployment.open(STACK, provider=local_provider) as local:
        describe_decisions(local.evaluate_scaling(), "=== 本地控制器（700% 负载） ===")


if __name__ == "__main__":
    main()
