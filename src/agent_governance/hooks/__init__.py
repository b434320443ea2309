"""Lifecycle hook pipeline.

Registry, planner, runner and aggregator, fronted by the event handler and
wired together by HookSystem.
"""

from .aggregator import HookAggregator
from .event_handler import HookEventHandler
from .planner import HookPlanner
from .registry import HookRegistry
from .runner import HookRunner
from .system import HookSystem

__all__ = [
    "HookAggregator",
    "HookEventHandler",
    "HookPlanner",
    "HookRegistry",
    "HookRunner",
    "HookSystem",
]
