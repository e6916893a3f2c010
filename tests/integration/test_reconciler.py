import threading

import pytest

from deploymesh.core.apply import CancellationToken
from deploymesh.core.controllers import Reconciler
from deploymesh.core.entities import ApplyOutcome, ChangeAction
from deploymesh.core.errors import CyclicDependencyError, LockTimeoutError, TransientProviderError
from deploymesh.core.state import FileStateStore

RG = "azurerm_resource_group.rg"
ACR = "azurerm_container_registry.acr"
AKS = "azurerm_kubernetes_cluster.aks"
KV = "azurerm_key_vault.kv"


@pytest.fixture
def file_store(tmp_path):
    store = FileStateStore(tmp_path / "state", "shop-prod").open()
    try:
        yield store
    finally:
        store.close()


def test_full_lifecycle_with_file_state(tmp_path, declarations, provider, engine_config, file_store):
    reconciler = Reconciler(file_store, provider, config=engine_config)

    report = reconciler.apply(declarations)
    assert report.succeeded
    assert report.summary()["applied"] == 4
    assert len(provider.resources) == 4

    # 新进程重新加载状态后计划为空
    with FileStateStore(tmp_path / "state", "shop-prod") as reloaded:
        assert not Reconciler(reloaded, provider, config=engine_config).plan(declarations).has_changes

    remaining = [item for item in declarations if item["name"] != "kv"]
    report = reconciler.apply(remaining)
    assert report.summary()["applied"] == 1
    assert report.outcome_for(KV) is ApplyOutcome.APPLIED
    assert file_store.get(KV) is None
    assert len(provider.resources_of_kind("azurerm_key_vault")) == 0

    report = reconciler.destroy()
    assert report.succeeded
    deleted = [result.change.address for result in report.results]
    assert deleted[-1] == RG
    assert set(deleted[:2]) == {ACR, AKS}
    assert all(result.change.action is ChangeAction.DELETE for result in report.results)
    assert file_store.list_records() == []
    assert provider.resources == {}
    assert not (tmp_path / "state" / "shop-prod.lock").exists()


def test_transient_errors_converge_within_one_apply(declarations, provider, engine_config, file_store):
    provider.inject_failure("create", TransientProviderError("throttled", code="throttled"), times=2)

    report = Reconciler(file_store, provider, config=engine_config).apply(declarations)

    assert report.succeeded
    assert report.by_address()[RG].attempts == 3


def test_planning_errors_release_the_lock(provider, engine_config, file_store):
    reconciler = Reconciler(file_store, provider, config=engine_config)
    declarations = [
        {"kind": "service", "name": "a", "depends_on": ["service.b"]},
        {"kind": "service", "name": "b", "depends_on": ["service.a"]},
    ]

    with pytest.raises(CyclicDependencyError):
        reconciler.apply(declarations)

    assert provider.calls == []
    file_store.unlock(file_store.lock(timeout=0.1))


def test_concurrent_apply_on_same_scope_times_out(declarations, provider, engine_config, file_store):
    reconciler = Reconciler(file_store, provider, config=engine_config)
    handle = file_store.lock(timeout=1.0)
    try:
        with pytest.raises(LockTimeoutError):
            reconciler.apply(declarations, lock_timeout=0.1)
    finally:
        file_store.unlock(handle)

    assert provider.calls == []
    assert reconciler.apply(declarations).succeeded


def test_second_apply_waits_for_first(declarations, engine_config, file_store):
    from deploymesh.core.providers import InMemoryProvider

    provider = InMemoryProvider(call_delay=0.05)
    reconciler = Reconciler(file_store, provider, config=engine_config)
    reports = []

    def _apply():
        reports.append(reconciler.apply(declarations, lock_timeout=30.0))

    threads = [threading.Thread(target=_apply) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert len(reports) == 2
    assert all(report.succeeded for report in reports)
    applied = sorted(report.summary()["applied"] for report in reports)
    assert applied == [0, 4]
    assert len(provider.resources) == 4


def test_cancelled_apply_can_resume(declarations, provider, engine_config, file_store):
    reconciler = Reconciler(file_store, provider, config=engine_config)
    token = CancellationToken()
    token.cancel()

    report = reconciler.apply(declarations, cancel=token)
    assert report.cancelled
    assert file_store.list_records() == []

    assert reconciler.apply(declarations).succeeded
