"""
Error classification and retry policy definitions.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


class ErrorClass(str, Enum):
    """
    Semantic classes for provider failures.

    Using ``str`` as a mixin keeps the values JSON-serialisable inside apply
    reports.
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"


# Provider error codes mapped onto an error class.  Codes are matched
# case-insensitively; anything missing from the table is permanent.
ERROR_CODE_ALIASES: Dict[str, str] = {
    "rate_limit": ErrorClass.TRANSIENT.value,
    "rate-limit": ErrorClass.TRANSIENT.value,
    "throttled": ErrorClass.TRANSIENT.value,
    "toomanyrequests": ErrorClass.TRANSIENT.value,
    "timeout": ErrorClass.TRANSIENT.value,
    "gatewaytimeout": ErrorClass.TRANSIENT.value,
    "unavailable": ErrorClass.TRANSIENT.value,
    "serviceunavailable": ErrorClass.TRANSIENT.value,
    "conflict_retryable": ErrorClass.TRANSIENT.value,
    "validation": ErrorClass.PERMANENT.value,
    "invalid": ErrorClass.PERMANENT.value,
    "badrequest": ErrorClass.PERMANENT.value,
    "permission": ErrorClass.PERMANENT.value,
    "forbidden": ErrorClass.PERMANENT.value,
    "unauthorized": ErrorClass.PERMANENT.value,
    "not_found": ErrorClass.PERMANENT.value,
    "notfound": ErrorClass.PERMANENT.value,
    "quota_exceeded": ErrorClass.PERMANENT.value,
}


def classify_error_code(code: str | None) -> ErrorClass:
    """Map a provider error code onto :class:`ErrorClass`."""
    if not code:
        return ErrorClass.PERMANENT
    raw = str(code).strip().lower()
    alias = ERROR_CODE_ALIASES.get(raw, raw)
    try:
        return ErrorClass(alias)
    except ValueError:
        return ErrorClass.PERMANENT


DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_BASE = 0.5
DEFAULT_BACKOFF_MAX = 30.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff used for transient provider errors."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_base: float = DEFAULT_BACKOFF_BASE
    backoff_max: float = DEFAULT_BACKOFF_MAX
    multiplier: float = DEFAULT_BACKOFF_MULTIPLIER

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.backoff_base < 0 or self.backoff_max < 0:
            raise ValueError("Backoff durations must be non-negative")
        if self.multiplier < 1:
            raise ValueError(f"Backoff multiplier must be >= 1, got {self.multiplier}")

    def delay(self, attempt: int) -> float:
        """Return the sleep before retry number ``attempt`` (1-based)."""
        if attempt < 1:
            return 0.0
        return min(self.backoff_max, self.backoff_base * (self.multiplier ** (attempt - 1)))

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts


def resolve_parallelism(value: int | str | None, default: int = 1) -> Tuple[int, str | None]:
    """
    Resolve a parallelism setting.

    Supports plain integers, numeric strings and environment indirection
    (``"env:DEPLOYMESH_PARALLELISM"``).

    Returns:
        A tuple of ``(parallelism, hint)`` where ``hint`` describes the
        resolution source.  Invalid input falls back to ``default``.
    """
    if value is None:
        return default, None
    if isinstance(value, bool):
        return default, f"value={value!r}"
    if isinstance(value, int):
        return (value, f"value={value}") if value >= 1 else (default, f"value={value}")

    raw = str(value).strip()
    hint = f'value="{raw}"'
    if raw.lower().startswith("env:"):
        env_key = raw[4:].strip()
        env_val = os.getenv(env_key) if env_key else None
        if env_val is None:
            return default, f"environment variable {env_key or '<empty>'} not set"
        hint = f'env:{env_key}="{env_val}"'
        raw = env_val.strip()
    try:
        parsed = int(raw)
    except ValueError:
        return default, hint
    if parsed < 1:
        return default, hint
    return parsed, hint
