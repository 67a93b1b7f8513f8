"""Shared FastAPI dependencies."""

from fastapi import Request

from .integrations.cache import CacheService
from .realtime.notifier import RealtimeNotifier


def get_cache(request: Request) -> CacheService:
    """Get the cache service from app state."""
    return request.app.state.cache


def get_notifier(request: Request) -> RealtimeNotifier:
    return request.app.state.notifier


def get_processor(request: Request):
    """Embedded queue processor, or None when the worker runs separately."""
    return getattr(request.app.state, "processor", None)
