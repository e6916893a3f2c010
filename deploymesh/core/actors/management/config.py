"""
Shared configuration dataclasses for management actors.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ActorConfig:
    """
    Generic configuration for long-running actors.
    """

    name: str
    evaluation_interval: float | None = None
    history_size: int = 100
    call_timeout: float | None = None
    max_restarts: int = 3
    metadata: dict[str, str] = field(default_factory=dict)
