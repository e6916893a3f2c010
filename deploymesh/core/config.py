"""Configuration helpers for DeployMesh.

This module loads optional YAML configuration files to customize runtime
behaviour such as apply parallelism, retry backoff and resource kinds.
Configuration precedence:

1. Environment variable ``DEPLOYMESH_CONFIG`` pointing to a YAML file.
2. ``deploymesh.yaml`` in the current working directory.
3. Built-in defaults bundled with the package (``config/default.yaml``).
"""

from __future__ import annotations

import importlib
import inspect
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from deploymesh.config.policy import RetryPolicy, resolve_parallelism
from deploymesh.core.errors import ConfigurationError
from deploymesh.core.kinds import ResourceKind, register_kind, unregister_kind

__all__ = [
    "ApplySettings",
    "AutoscalingSettings",
    "EngineConfig",
    "KindConfigEntry",
    "StateSettings",
    "get_engine_config",
    "reset_engine_config",
]

logger = logging.getLogger(__name__)

_ENV_VAR = "DEPLOYMESH_CONFIG"
_CWD_FILE = "deploymesh.yaml"


@dataclass
class ApplySettings:
    parallelism: int = 4
    max_attempts: int = 5
    backoff_base: float = 0.5
    backoff_max: float = 30.0
    call_timeout: Optional[float] = 300.0

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff_base=self.backoff_base,
            backoff_max=self.backoff_max,
        )


@dataclass
class StateSettings:
    path: str = ".deploymesh/state"
    lock_timeout: Optional[float] = 30.0


@dataclass
class AutoscalingSettings:
    evaluation_interval: float = 15.0
    history_size: int = 100
    call_timeout: Optional[float] = 30.0


@dataclass
class KindConfigEntry:
    name: str
    force_new: List[str] = field(default_factory=list)
    updatable: bool = True
    enabled: bool = True
    import_path: Optional[str] = None


@dataclass
class EngineConfig:
    apply: ApplySettings = field(default_factory=ApplySettings)
    state: StateSettings = field(default_factory=StateSettings)
    autoscaling: AutoscalingSettings = field(default_factory=AutoscalingSettings)
    kinds: List[KindConfigEntry] = field(default_factory=list)
    source: Optional[str] = None


_engine_config: Optional[EngineConfig] = None


def _resolve_config_path() -> Optional[Path]:
    env_path = os.environ.get(_ENV_VAR)
    if env_path:
        candidate = Path(env_path).expanduser()
        if candidate.is_file():
            return candidate
        logger.warning("%s points to missing file %s, ignoring", _ENV_VAR, candidate)

    cwd_file = Path.cwd() / _CWD_FILE
    if cwd_file.is_file():
        return cwd_file
    return None


def _load_yaml_dict() -> tuple[Dict[str, object], str]:
    path = _resolve_config_path()
    if path is not None:
        with path.open("r", encoding="utf-8") as fh:
            return yaml.safe_load(fh) or {}, str(path)

    # Fallback to bundled default configuration
    from importlib import resources

    text = resources.files("deploymesh.config").joinpath("default.yaml").read_text(encoding="utf-8")
    return yaml.safe_load(text) or {}, "<bundled default>"


def _section(data: Dict[str, object], name: str) -> Dict[str, object]:
    node = data.get(name) or {}
    if not isinstance(node, dict):
        raise ConfigurationError(f"'{name}' section must be a mapping")
    return node


def _optional_float(value: object) -> Optional[float]:
    if value is None:
        return None
    return float(value)  # type: ignore[arg-type]


def _coerce_kind_entry(raw: Dict[str, object]) -> KindConfigEntry:
    name = str(raw.get("name", "")).strip()
    if not name:
        raise ConfigurationError("Kind entry requires a non-empty 'name'")
    force_new = raw.get("force_new") or []
    if not isinstance(force_new, list):
        raise ConfigurationError(f"'force_new' of kind '{name}' must be a list")
    import_path = raw.get("import")
    if import_path is not None:
        import_path = str(import_path).strip()
    return KindConfigEntry(
        name=name,
        force_new=[str(item) for item in force_new],
        updatable=bool(raw.get("updatable", True)),
        enabled=bool(raw.get("enabled", True)),
        import_path=import_path,
    )


def _build_engine_config(data: Dict[str, object], source: Optional[str] = None) -> EngineConfig:
    try:
        apply_node = _section(data, "apply")
        parallelism, hint = resolve_parallelism(apply_node.get("parallelism"), default=4)  # type: ignore[arg-type]
        if hint:
            logger.debug("apply.parallelism=%d (%s)", parallelism, hint)
        apply_settings = ApplySettings(
            parallelism=parallelism,
            max_attempts=int(apply_node.get("max_attempts", 5)),  # type: ignore[arg-type]
            backoff_base=float(apply_node.get("backoff_base", 0.5)),  # type: ignore[arg-type]
            backoff_max=float(apply_node.get("backoff_max", 30.0)),  # type: ignore[arg-type]
            call_timeout=_optional_float(apply_node.get("call_timeout", 300.0)),
        )
        # validates the retry numbers early
        apply_settings.retry_policy()

        state_node = _section(data, "state")
        state_settings = StateSettings(
            path=str(state_node.get("path") or ".deploymesh/state"),
            lock_timeout=_optional_float(state_node.get("lock_timeout", 30.0)),
        )

        scaling_node = _section(data, "autoscaling")
        autoscaling = AutoscalingSettings(
            evaluation_interval=float(scaling_node.get("evaluation_interval", 15.0)),  # type: ignore[arg-type]
            history_size=int(scaling_node.get("history_size", 100)),  # type: ignore[arg-type]
            call_timeout=_optional_float(scaling_node.get("call_timeout", 30.0)),
        )
    except ConfigurationError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid configuration value: {exc}", {"source": source}) from exc

    raw_kinds = data.get("kinds") or []
    if not isinstance(raw_kinds, list):
        raise ConfigurationError("'kinds' must be a list of mappings")
    entries: List[KindConfigEntry] = []
    for item in raw_kinds:
        if not isinstance(item, dict):
            raise ConfigurationError("Each kind definition must be a mapping")
        entries.append(_coerce_kind_entry(item))

    return EngineConfig(
        apply=apply_settings,
        state=state_settings,
        autoscaling=autoscaling,
        kinds=entries,
        source=source,
    )


def _load_kind_object(entry: KindConfigEntry) -> ResourceKind:
    module_name, sep, attr = (entry.import_path or "").partition(":")
    if not sep:
        raise ConfigurationError(
            f"Invalid import path '{entry.import_path}'. Expected format 'module:attr'."
        )
    module = importlib.import_module(module_name)
    obj = getattr(module, attr)
    if isinstance(obj, ResourceKind):
        return obj
    if inspect.isclass(obj) and issubclass(obj, ResourceKind):
        return obj(name=entry.name, force_new=frozenset(entry.force_new), updatable=entry.updatable)
    if callable(obj):
        instance = obj()
        if isinstance(instance, ResourceKind):
            return instance
    raise ConfigurationError(f"'{entry.import_path}' does not provide a ResourceKind")


def _apply_engine_config(config: EngineConfig) -> None:
    for entry in config.kinds:
        if not entry.enabled:
            unregister_kind(entry.name)
            continue
        if entry.import_path:
            kind = _load_kind_object(entry)
        else:
            kind = ResourceKind(name=entry.name, force_new=frozenset(entry.force_new), updatable=entry.updatable)
        register_kind(kind, replace=True)


def get_engine_config() -> EngineConfig:
    global _engine_config
    if _engine_config is None:
        raw, source = _load_yaml_dict()
        if not isinstance(raw, dict):
            raise ConfigurationError("Configuration document must be a mapping", {"source": source})
        config = _build_engine_config(raw, source)
        _apply_engine_config(config)
        logger.debug("Engine configuration loaded from %s", source)
        _engine_config = config
    return _engine_config


def reset_engine_config() -> None:
    """Reset cached engine configuration (intended for tests)."""
    global _engine_config
    _engine_config = None
