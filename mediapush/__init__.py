"""Range-aware media relay and push notification fan-out service."""

from .app import create_app
from .fanout import FanoutEngine
from .proxy import MediaProxy
from .scheduler import DeferredDispatchScheduler
from .settings import PushSettings, SchedulerSettings, StateSettings, StorageSettings

__all__ = [
    "DeferredDispatchScheduler",
    "FanoutEngine",
    "MediaProxy",
    "PushSettings",
    "SchedulerSettings",
    "StateSettings",
    "StorageSettings",
    "create_app",
]
