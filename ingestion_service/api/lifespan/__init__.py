"""
Lifecycle management for the ingestion service.
Storage connection, cache warm-up and the application lifespan.
"""

from .base import LifecycleComponent, ServiceState, StorageState
from .manager import lifespan
from .storage import StorageConnection
from .warmup import WARMUP_TARGETS, CacheWarmer


__all__ = [
    "lifespan",
    "LifecycleComponent",
    "ServiceState",
    "StorageState",
    "StorageConnection",
    "CacheWarmer",
    "WARMUP_TARGETS",
]
