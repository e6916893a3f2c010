"""Helper utilities for high-level demos and scripts."""

from .render import describe_decisions, describe_plan, pretty_print_report  # noqa: F401
from .logging import configure_demo_logging, demote_ray_logging  # noqa: F401

__all__ = [
    "configure_demo_logging",
    "demote_ray_logging",
    "describe_decisions",
    "describe_plan",
    "pretty_print_report",
]
