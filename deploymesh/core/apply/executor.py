"""
Apply executor.

Runs a :class:`ChangeSet` against a :class:`Provider` and records each
successful change in the state store.  Changes start in change-set order
once every change they require has succeeded; independent branches run
concurrently up to ``parallelism`` workers.  A failed change marks every
change that (transitively) requires it as skipped, while unrelated branches
keep going.  Nothing is rolled back: a later plan converges from whatever
state was reached.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, List, Mapping, Optional

from deploymesh.config.policy import RetryPolicy
from deploymesh.core.entities.resource import Reference
from deploymesh.core.entities.state import StateRecord, record_version
from deploymesh.core.entities.types import (
    ApplyOutcome,
    ApplyReport,
    Change,
    ChangeAction,
    ChangeResult,
    ChangeSet,
)
from deploymesh.core.errors import (
    DeployMeshError,
    PermanentProviderError,
    ProviderError,
    StateStoreError,
    TransientProviderError,
    UnknownReferenceError,
)
from deploymesh.core.providers.base import Provider
from deploymesh.core.state.store import StateStore

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag checked between changes."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ApplyExecutor:
    """Execute change sets with retry and failure containment."""

    def __init__(
        self,
        provider: Provider,
        store: StateStore,
        *,
        parallelism: int = 1,
        retry_policy: Optional[RetryPolicy] = None,
        call_timeout: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if parallelism < 1:
            raise ValueError(f"parallelism must be at least 1, got {parallelism}")
        self.provider = provider
        self.store = store
        self.parallelism = parallelism
        self.retry_policy = retry_policy or RetryPolicy()
        self.call_timeout = call_timeout
        self._sleep = sleep
        self._calls: Optional[ThreadPoolExecutor] = None

    # ------------------------------------------------------------------
    # Scheduling

    def execute(self, change_set: ChangeSet, *, cancel: Optional[CancellationToken] = None) -> ApplyReport:
        report = ApplyReport(scope=self.store.scope)
        results: Dict[int, ChangeResult] = {}
        pending: List[Change] = list(change_set)

        if self.call_timeout is not None:
            # timed-out calls keep their thread, so leave headroom for the retry
            self._calls = ThreadPoolExecutor(max_workers=self.parallelism * 2, thread_name_prefix="deploymesh-call")
        try:
            with ThreadPoolExecutor(max_workers=self.parallelism, thread_name_prefix="deploymesh-apply") as workers:
                running: Dict[Future, Change] = {}
                while pending or running:
                    if cancel is not None and cancel.cancelled and pending:
                        logger.warning("Apply cancelled; %d change(s) not started", len(pending))
                        for change in pending:
                            results[change.index] = ChangeResult(change, ApplyOutcome.CANCELLED, reason="apply cancelled")
                        pending = []
                        report.cancelled = True

                    pending = self._dispatch(pending, results, running, workers)
                    if not running:
                        if pending:
                            raise RuntimeError("Change set requires changes that never run; ordering is invalid")
                        break

                    done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                    for future in done:
                        change = running.pop(future)
                        results[change.index] = future.result()
        finally:
            if self._calls is not None:
                self._calls.shutdown(wait=False)
                self._calls = None

        report.results = [results[change.index] for change in change_set]
        report.finished_at = time.time()
        logger.info("Apply finished scope=%s summary=%s", report.scope, report.summary())
        return report

    def _dispatch(
        self,
        pending: List[Change],
        results: Dict[int, ChangeResult],
        running: Dict[Future, Change],
        workers: ThreadPoolExecutor,
    ) -> List[Change]:
        still_pending: List[Change] = []
        for change in pending:
            if any(index not in results for index in change.requires):
                still_pending.append(change)
                continue
            blocked = [results[index] for index in change.requires if not results[index].succeeded]
            if blocked:
                reason = "dependency not applied: " + ", ".join(sorted({r.address for r in blocked}))
                logger.warning("Skipping %s (%s)", change.describe(), reason)
                results[change.index] = ChangeResult(change, ApplyOutcome.SKIPPED, reason=reason)
                continue
            if change.is_noop:
                results[change.index] = ChangeResult(change, ApplyOutcome.UNCHANGED)
                continue
            if len(running) >= self.parallelism:
                still_pending.append(change)
                continue
            running[workers.submit(self._run_change, change)] = change
        return still_pending

    # ------------------------------------------------------------------
    # Single change

    def _run_change(self, change: Change) -> ChangeResult:
        attempt = 0
        while True:
            attempt += 1
            try:
                identity = self._perform(change)
            except ProviderError as exc:
                if not exc.transient:
                    logger.error("%s failed permanently: %s", change.describe(), exc)
                    return ChangeResult(change, ApplyOutcome.FAILED, reason=f"permanent: {exc}", attempts=attempt)
                if not self.retry_policy.should_retry(attempt):
                    logger.error("%s failed after %d attempt(s): %s", change.describe(), attempt, exc)
                    return ChangeResult(change, ApplyOutcome.FAILED, reason=f"transient: {exc}", attempts=attempt)
                delay = self.retry_policy.delay(attempt)
                logger.warning(
                    "%s transient failure (attempt %d/%d), retrying in %.2fs: %s",
                    change.describe(),
                    attempt,
                    self.retry_policy.max_attempts,
                    delay,
                    exc,
                )
                self._sleep(delay)
            except StateStoreError as exc:
                logger.error("%s applied but state write failed: %s", change.describe(), exc)
                return ChangeResult(change, ApplyOutcome.FAILED, reason=f"state: {exc}", attempts=attempt)
            except DeployMeshError as exc:
                logger.error("%s failed: %s", change.describe(), exc)
                return ChangeResult(change, ApplyOutcome.FAILED, reason=str(exc), attempts=attempt)
            except Exception as exc:  # provider bugs must not abort the whole run
                logger.exception("%s raised an unexpected error", change.describe())
                return ChangeResult(change, ApplyOutcome.FAILED, reason=f"unexpected: {exc!r}", attempts=attempt)
            else:
                logger.info("%s applied (attempts=%d)", change.describe(), attempt)
                return ChangeResult(change, ApplyOutcome.APPLIED, attempts=attempt, identity=identity)

    def _perform(self, change: Change) -> Optional[str]:
        current = self.store.get(change.address)

        if change.action is ChangeAction.DELETE:
            if current is None:
                logger.info("%s already absent from state", change.address)
                return None
            self._call(self.provider.delete_resource, current.identity)
            self.store.delete(change.address, base_version=current.version)
            return current.identity

        attributes = self._resolve(change)
        if change.action is ChangeAction.CREATE:
            identity = self._call(self.provider.create_resource, change.kind, attributes)
        elif change.action is ChangeAction.UPDATE:
            if current is None:
                raise PermanentProviderError(f"Cannot update {change.address}: no state record", code="not_found")
            identity = current.identity
            if change.changed:
                self._call(self.provider.update_resource, identity, attributes)
        else:
            raise ValueError(f"Unsupported change action {change.action}")

        record = StateRecord(
            address=change.address,
            kind=change.kind,
            name=change.name,
            identity=identity,
            attributes=attributes,
            declared=dict(change.after or {}),
            dependencies=change.dependencies,
        )
        self.store.put(change.address, record, base_version=record_version(current))
        return identity

    def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        if self._calls is None:
            return fn(*args)
        future = self._calls.submit(fn, *args)
        try:
            return future.result(timeout=self.call_timeout)
        except FutureTimeoutError as exc:
            future.cancel()
            raise TransientProviderError(
                f"Provider call {getattr(fn, '__name__', fn)} timed out after {self.call_timeout}s",
                code="timeout",
            ) from exc

    # ------------------------------------------------------------------
    # Reference resolution

    def _resolve(self, change: Change) -> Dict[str, Any]:
        return {key: self._resolve_value(change.address, value) for key, value in (change.after or {}).items()}

    def _resolve_value(self, source: str, value: Any) -> Any:
        reference = Reference.parse(value)
        if reference is not None:
            record = self.store.get(reference.address)
            if record is None:
                raise UnknownReferenceError(source, reference.address)
            try:
                return record.output(reference.attribute)
            except KeyError as exc:
                raise UnknownReferenceError(source, reference.expression) from exc
        if isinstance(value, Mapping):
            return {key: self._resolve_value(source, item) for key, item in value.items()}
        if isinstance(value, list):
            return [self._resolve_value(source, item) for item in value]
        return value
