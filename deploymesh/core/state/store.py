"""
State store implementations.

状态存储是唯一长期存在的可变状态：
- ``get`` / ``put`` / ``delete`` 基于版本号做乐观并发控制
- ``lock`` / ``unlock`` 保证同一 scope 同时只有一个 apply 在运行
- 生命周期显式管理（``open`` / ``close``），由调用方传入 Plan/Apply
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from deploymesh.core.entities.state import StateRecord, record_version
from deploymesh.core.errors import ConcurrentModificationError, LockTimeoutError, StateStoreError

logger = logging.getLogger(__name__)



def _lock_holder(lock_file: Path) -> Optional[int]:
    """Pid recorded in ``lock_file``; None while it is being written or unreadable."""
    try:
        payload = json.loads(lock_file.read_text(encoding="utf-8"))
        return int(payload["pid"])
    except (OSError, ValueError, TypeError, KeyError):
        return None


def _process_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by another user
        return True
    return True


@dataclass(frozen=True)
class LockHandle:
    scope: str
    token: str
    acquired_at: float


class StateStore(ABC):
    """Versioned record storage with scope-level mutual exclusion."""

    def __init__(self, scope: str = "default"):
        if not scope:
            raise ValueError("State store scope must be a non-empty string")
        self.scope = scope
        self._opened = False
        self._guard = threading.RLock()
        self._lock_cond = threading.Condition()
        self._held: Dict[str, LockHandle] = {}

    # ------------------------------------------------------------------
    # Lifecycle

    def open(self) -> "StateStore":
        with self._guard:
            if not self._opened:
                self._open()
                self._opened = True
                logger.debug("%s opened (scope=%s)", type(self).__name__, self.scope)
        return self

    def close(self) -> None:
        with self._guard:
            if self._opened:
                self._close()
                self._opened = False
                logger.debug("%s closed (scope=%s)", type(self).__name__, self.scope)

    @property
    def closed(self) -> bool:
        return not self._opened

    def __enter__(self) -> "StateStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _ensure_open(self) -> None:
        if not self._opened:
            raise StateStoreError("State store is closed", {"scope": self.scope})

    def _open(self) -> None:
        """Hook for subclasses."""

    def _close(self) -> None:
        """Hook for subclasses."""

    # ------------------------------------------------------------------
    # Records

    @abstractmethod
    def _read_records(self) -> Dict[str, StateRecord]:
        """Return the current records keyed by address, in insertion order."""

    @abstractmethod
    def _write_records(self, records: Dict[str, StateRecord]) -> None:
        """Durably replace all records; must not return before data is persisted."""

    def get(self, name: str) -> Optional[StateRecord]:
        self._ensure_open()
        with self._guard:
            return self._read_records().get(name)

    def list_records(self) -> List[StateRecord]:
        self._ensure_open()
        with self._guard:
            return list(self._read_records().values())

    def put(self, name: str, record: StateRecord, *, base_version: int) -> StateRecord:
        """
        Store ``record`` if the current version equals ``base_version``.

        An absent record has version ``0``.  Returns the stored record with
        its new version.
        """
        self._ensure_open()
        if record.address != name:
            raise ValueError(f"Record address '{record.address}' does not match key '{name}'")
        with self._guard:
            records = self._read_records()
            actual = record_version(records.get(name))
            if actual != base_version:
                raise ConcurrentModificationError(name, base_version, actual)
            stored = record.with_version(base_version + 1)
            records[name] = stored
            self._write_records(records)
        logger.debug("State record %s stored version=%d", name, stored.version)
        return stored

    def delete(self, name: str, *, base_version: int) -> None:
        self._ensure_open()
        with self._guard:
            records = self._read_records()
            actual = record_version(records.get(name))
            if actual != base_version:
                raise ConcurrentModificationError(name, base_version, actual)
            if name not in records:
                return
            del records[name]
            self._write_records(records)
        logger.debug("State record %s deleted", name)

    # ------------------------------------------------------------------
    # Scope lock

    def lock(self, scope: Optional[str] = None, timeout: Optional[float] = None) -> LockHandle:
        """
        Acquire the apply lock for ``scope`` (defaults to the store scope).

        Blocks until the lock is free, or raises :class:`LockTimeoutError`
        once ``timeout`` seconds have passed.
        """
        self._ensure_open()
        scope = scope or self.scope
        deadline = None if timeout is None else time.monotonic() + max(timeout, 0.0)

        with self._lock_cond:
            while scope in self._held:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise LockTimeoutError(scope, timeout or 0.0)
                self._lock_cond.wait(remaining)
            handle = LockHandle(scope=scope, token=uuid.uuid4().hex, acquired_at=time.time())
            self._held[scope] = handle

        try:
            self._acquire_external(handle, deadline, timeout)
        except BaseException:
            with self._lock_cond:
                self._held.pop(scope, None)
                self._lock_cond.notify_all()
            raise
        logger.info("Apply lock acquired scope=%s token=%s", scope, handle.token[:8])
        return handle

    def unlock(self, handle: LockHandle) -> None:
        with self._lock_cond:
            current = self._held.get(handle.scope)
            if current is None or current.token != handle.token:
                raise StateStoreError("Apply lock is not held by this handle", {"scope": handle.scope})
            try:
                self._release_external(handle)
            finally:
                del self._held[handle.scope]
                self._lock_cond.notify_all()
        logger.info("Apply lock released scope=%s", handle.scope)

    def _acquire_external(self, handle: LockHandle, deadline: Optional[float], timeout: Optional[float]) -> None:
        """Hook for cross-process locking."""

    def _release_external(self, handle: LockHandle) -> None:
        """Hook for cross-process locking."""


class InMemoryStateStore(StateStore):
    """Process-local store, mostly useful for tests and dry runs."""

    def __init__(self, scope: str = "default"):
        super().__init__(scope)
        self._records: Dict[str, StateRecord] = {}

    def _read_records(self) -> Dict[str, StateRecord]:
        return dict(self._records)

    def _write_records(self, records: Dict[str, StateRecord]) -> None:
        self._records = dict(records)


class FileStateStore(StateStore):
    """
    JSON-file backed store.

    每个 scope 对应 ``<root>/<scope>.state.json``：先写临时文件并 fsync，
    再原子替换，保证 ``put`` 返回前数据已落盘。跨进程互斥通过
    ``<root>/<scope>.lock`` 锁文件实现；持有者进程已退出的锁文件会被清理。
    """

    def __init__(self, root: str | os.PathLike[str], scope: str = "default", *, poll_interval: float = 0.05):
        super().__init__(scope)
        self.root = Path(root).expanduser()
        self._poll_interval = max(poll_interval, 0.001)
        self._serial = 0

    @property
    def state_file(self) -> Path:
        return self.root / f"{self.scope}.state.json"

    def _lock_file(self, scope: str) -> Path:
        return self.root / f"{scope}.lock"

    def _open(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        records = self._read_records()
        logger.info("状态从 %s 恢复: %d records (serial=%d)", self.state_file, len(records), self._serial)

    def _read_records(self) -> Dict[str, StateRecord]:
        state_file = self.state_file
        if not state_file.exists():
            return {}
        try:
            data = json.loads(state_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StateStoreError(f"Cannot read state file: {exc}", {"path": str(state_file)}) from exc
        if not isinstance(data, dict):
            raise StateStoreError("State file must hold a JSON object", {"path": str(state_file)})
        self._serial = int(data.get("serial", 0) or 0)
        records: Dict[str, StateRecord] = {}
        for payload in data.get("records", []):
            record = StateRecord.from_dict(payload)
            records[record.address] = record
        return records

    def _write_records(self, records: Dict[str, StateRecord]) -> None:
        self._serial += 1
        payload = {
            "scope": self.scope,
            "serial": self._serial,
            "records": [record.to_dict() for record in records.values()],
        }
        data = json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.scope}.", suffix=".tmp", dir=str(self.root))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.state_file)
        except OSError as exc:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise StateStoreError(f"Cannot persist state: {exc}", {"path": str(self.state_file)}) from exc
        self._fsync_directory()

    def _fsync_directory(self) -> None:
        if not hasattr(os, "O_DIRECTORY"):
            return
        dir_fd = os.open(str(self.root), os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)

    def _acquire_external(self, handle: LockHandle, deadline: Optional[float], timeout: Optional[float]) -> None:
        lock_file = self._lock_file(handle.scope)
        while True:
            try:
                fd = os.open(str(lock_file), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                holder = _lock_holder(lock_file)
                if holder is not None and not _process_alive(holder):
                    logger.warning("Breaking stale lock %s left by dead process %d", lock_file, holder)
                    try:
                        lock_file.unlink()
                    except FileNotFoundError:
                        pass
                    continue
                if deadline is not None and time.monotonic() >= deadline:
                    raise LockTimeoutError(
                        handle.scope,
                        timeout or 0.0,
                        {"lock_file": str(lock_file), "pid": holder},
                    ) from None
                time.sleep(self._poll_interval)
                continue
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(json.dumps({"pid": os.getpid(), "token": handle.token, "acquired_at": handle.acquired_at}))
            return

    def _release_external(self, handle: LockHandle) -> None:
        try:
            self._lock_file(handle.scope).unlink()
        except FileNotFoundError:
            logger.warning("Lock file for scope %s disappeared before release", handle.scope)
