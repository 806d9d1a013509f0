"""
Minimal service runtime hosting data services.

Provides action declarations, per-call contexts, an event bus, an
in-memory result cache, and the broker that ties them together.
"""

from .actions import ActionSpec, action, collect_actions
from .broker import Context, ServiceBroker
from .cacher import MemoryCacher
from .events import EventBus

__all__ = [
    "ActionSpec",
    "action",
    "collect_actions",
    "Context",
    "ServiceBroker",
    "MemoryCacher",
    "EventBus",
]
