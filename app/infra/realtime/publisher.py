from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from app.infra.realtime.events import RealtimeEvent


class RealtimePublisher(Protocol):
    """Fan-out sink for realtime events; the transport behind it is opaque."""

    async def publish(
        self,
        channels: Sequence[str],
        event: RealtimeEvent,
        payload: Mapping[str, Any],
    ) -> None: ...


class NoopRealtimePublisher:
    async def publish(
        self,
        channels: Sequence[str],
        event: RealtimeEvent,
        payload: Mapping[str, Any],
    ) -> None:
        return None
