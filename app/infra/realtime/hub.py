import asyncio
import logging
from collections import defaultdict
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

from app.infra.realtime.events import RealtimeEvent

logger = logging.getLogger(__name__)


class InMemoryRealtimeHub:
    """In-process channel hub for websocket fanout."""

    def __init__(self, send_timeout_seconds: float = 2.0) -> None:
        self._channel_subscribers: dict[str, set[WebSocket]] = defaultdict(set)
        self._socket_channels: dict[WebSocket, set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()
        self._send_timeout_seconds = send_timeout_seconds

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()

    def subscriber_count(self, channel: str) -> int:
        return len(self._channel_subscribers.get(channel, ()))

    async def subscribe(self, websocket: WebSocket, channel: str) -> None:
        async with self._lock:
            self._channel_subscribers[channel].add(websocket)
            self._socket_channels[websocket].add(channel)

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            for channel in self._socket_channels.pop(websocket, set()):
                self._drop_subscriber(channel, websocket)

    async def publish(
        self,
        channels: Sequence[str],
        event: RealtimeEvent,
        payload: Mapping[str, Any],
    ) -> None:
        unique_channels = [channel for channel in dict.fromkeys(channels) if channel]
        if not unique_channels:
            return

        async with self._lock:
            recipients_by_channel = {
                channel: set(self._channel_subscribers.get(channel, set()))
                for channel in unique_channels
            }

        sent_at = datetime.now(UTC).isoformat()
        deliveries = [
            (
                channel,
                websocket,
                {
                    "event": event.value,
                    "channel": channel,
                    "payload": dict(payload),
                    "sent_at": sent_at,
                },
            )
            for channel, recipients in recipients_by_channel.items()
            for websocket in recipients
        ]
        # Sends run side by side so one stalled client cannot starve the rest.
        delivered = await asyncio.gather(
            *(self._send(websocket, envelope) for _, websocket, envelope in deliveries)
        )
        stale = [
            (channel, websocket)
            for (channel, websocket, _), ok in zip(deliveries, delivered)
            if not ok
        ]
        if not stale:
            return

        logger.debug("Dropping %d stale subscriptions", len(stale))
        async with self._lock:
            for channel, websocket in stale:
                self._drop_subscriber(channel, websocket)
                channels_left = self._socket_channels.get(websocket)
                if channels_left is not None:
                    channels_left.discard(channel)
                    if not channels_left:
                        self._socket_channels.pop(websocket, None)

    async def _send(self, websocket: WebSocket, envelope: dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(
                websocket.send_json(envelope),
                timeout=self._send_timeout_seconds,
            )
        except (RuntimeError, WebSocketDisconnect, TimeoutError):
            return False
        return True

    def _drop_subscriber(self, channel: str, websocket: WebSocket) -> None:
        subscribers = self._channel_subscribers.get(channel)
        if subscribers is None:
            return
        subscribers.discard(websocket)
        if not subscribers:
            self._channel_subscribers.pop(channel, None)
