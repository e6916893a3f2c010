from pathlib import Path
from textwrap import dedent

import pytest

from deploymesh.core.config import get_engine_config, reset_engine_config
from deploymesh.core.errors import ConfigurationError
from deploymesh.core.kinds import available_kinds, resolve_kind


@pytest.fixture(autouse=True)
def clear_config(monkeypatch, tmp_path, kind_snapshot):
    monkeypatch.delenv("DEPLOYMESH_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    reset_engine_config()
    yield
    reset_engine_config()


def _write(path: Path, text: str) -> Path:
    path.write_text(dedent(text), encoding="utf-8")
    return path


def test_bundled_defaults():
    cfg = get_engine_config()

    assert cfg.source == "<bundled default>"
    assert cfg.apply.parallelism == 4
    assert cfg.apply.max_attempts == 5
    assert cfg.apply.call_timeout == 300.0
    assert cfg.state.lock_timeout == 30.0
    assert cfg.autoscaling.history_size == 100
    assert cfg.autoscaling.call_timeout == 30.0
    assert cfg.kinds == []
    assert get_engine_config() is cfg


def test_register_and_disable_kinds(tmp_path: Path, monkeypatch):
    config_file = _write(
        tmp_path / "custom.yaml",
        """
        apply:
          parallelism: 8
          max_attempts: 2
        kinds:
          - name: azurerm_dns_zone
            force_new: [name]
          - name: azurerm_public_ip
            updatable: false
          - name: azurerm_key_vault
            enabled: false
        """,
    )
    monkeypatch.setenv("DEPLOYMESH_CONFIG", str(config_file))

    cfg = get_engine_config()

    assert cfg.source == str(config_file)
    assert cfg.apply.parallelism == 8
    assert cfg.apply.retry_policy().max_attempts == 2
    assert "azurerm_dns_zone" in available_kinds()
    assert resolve_kind("azurerm_dns_zone").requires_replacement({"name"})
    assert not resolve_kind("azurerm_dns_zone").requires_replacement({"ttl"})
    assert resolve_kind("azurerm_public_ip").requires_replacement({"sku"})
    # 被禁用的 kind 回退为默认可更新
    assert "azurerm_key_vault" not in available_kinds()
    assert not resolve_kind("azurerm_key_vault").requires_replacement({"tenant_id"})


def test_import_kind_class(tmp_path: Path, monkeypatch):
    config_file = _write(
        tmp_path / "custom.yaml",
        """
        kinds:
          - name: azurerm_cosmosdb_account
            force_new: [kind]
            import: deploymesh.core.kinds.registry:ResourceKind
        """,
    )
    monkeypatch.setenv("DEPLOYMESH_CONFIG", str(config_file))

    get_engine_config()

    kind = resolve_kind("azurerm_cosmosdb_account")
    assert kind.force_new == frozenset({"kind"})


def test_working_directory_file(tmp_path: Path):
    _write(
        tmp_path / "deploymesh.yaml",
        """
        state:
          path: /var/lib/deploymesh
          lock_timeout: null
        autoscaling:
          evaluation_interval: 5
          call_timeout: null
        """,
    )

    cfg = get_engine_config()

    assert cfg.state.path == "/var/lib/deploymesh"
    assert cfg.state.lock_timeout is None
    assert cfg.autoscaling.evaluation_interval == 5.0
    assert cfg.autoscaling.call_timeout is None


def test_missing_env_file_falls_back(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("DEPLOYMESH_CONFIG", str(tmp_path / "missing.yaml"))

    assert get_engine_config().source == "<bundled default>"


def test_parallelism_from_environment(tmp_path: Path, monkeypatch):
    _write(tmp_path / "deploymesh.yaml", "apply:\n  parallelism: env:DM_PARALLELISM\n")
    monkeypatch.setenv("DM_PARALLELISM", "6")

    assert get_engine_config().apply.parallelism == 6


@pytest.mark.parametrize(
    "text",
    [
        "apply:\n  max_attempts: 0\n",
        "apply:\n  backoff_base: soon\n",
        "apply: [1, 2]\n",
        "kinds:\n  - force_new: [name]\n",
        "kinds:\n  - name: broken\n    import: not-a-path\n",
        "- just\n- a list\n",
    ],
)
def test_invalid_documents_are_rejected(tmp_path: Path, text):
    _write(tmp_path / "deploymesh.yaml", text)

    with pytest.raises(ConfigurationError):
        get_engine_config()
