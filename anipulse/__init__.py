"""Public entry points for the AniPulse service and its caching core."""

from __future__ import annotations

from app.cache import CacheStore, ResourceClass
from app.clock import ManualClock, SystemClock
from app.context import CoreContext
from app.main import app, create_app
from app.scheduler import NotificationResult, UpdateScheduler

__all__ = [
    "CacheStore",
    "CoreContext",
    "ManualClock",
    "NotificationResult",
    "ResourceClass",
    "SystemClock",
    "UpdateScheduler",
    "app",
    "create_app",
]
