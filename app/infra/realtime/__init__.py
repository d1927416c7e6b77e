"""Realtime event transport (WebSocket) adapters."""

from app.infra.realtime.hub import InMemoryRealtimeHub

__all__ = ["InMemoryRealtimeHub"]
