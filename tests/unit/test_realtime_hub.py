import asyncio
from typing import Any
from uuid import uuid4

import pytest
from starlette.websockets import WebSocketDisconnect

from app.infra.realtime import InMemoryRealtimeHub
from app.domain.enums import AssignmentAction
from app.infra.realtime.channels import organization_channel
from app.infra.realtime.events import RealtimeEvent
from app.services.notifier import ChangeNotifier


class FakeWebSocket:
    def __init__(self, fail: bool = False, stall_seconds: float = 0.0) -> None:
        self.accepted = False
        self.sent: list[dict[str, Any]] = []
        self.fail = fail
        self.stall_seconds = stall_seconds

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.fail:
            raise WebSocketDisconnect(code=1006)
        if self.stall_seconds:
            await asyncio.sleep(self.stall_seconds)
        self.sent.append(data)


@pytest.mark.asyncio
async def test_publish_reaches_only_channel_subscribers() -> None:
    hub = InMemoryRealtimeHub()
    listener = FakeWebSocket()
    bystander = FakeWebSocket()
    await hub.connect(listener)
    await hub.connect(bystander)
    await hub.subscribe(listener, "org:1")
    await hub.subscribe(bystander, "org:2")

    await hub.publish(["org:1"], RealtimeEvent.QUEUE_UPDATED, {"action": "enqueued"})

    assert listener.accepted
    assert bystander.sent == []
    [envelope] = listener.sent
    assert envelope["event"] == "queue:updated"
    assert envelope["channel"] == "org:1"
    assert envelope["payload"] == {"action": "enqueued"}


@pytest.mark.asyncio
async def test_broken_subscribers_are_dropped() -> None:
    hub = InMemoryRealtimeHub()
    broken = FakeWebSocket(fail=True)
    await hub.subscribe(broken, "user:1")
    assert hub.subscriber_count("user:1") == 1

    await hub.publish(["user:1"], RealtimeEvent.AGENT_AVAILABILITY, {})

    assert hub.subscriber_count("user:1") == 0


@pytest.mark.asyncio
async def test_disconnect_removes_every_subscription() -> None:
    hub = InMemoryRealtimeHub()
    socket = FakeWebSocket()
    await hub.subscribe(socket, "org:1")
    await hub.subscribe(socket, "user:1")

    await hub.disconnect(socket)

    assert hub.subscriber_count("org:1") == 0
    assert hub.subscriber_count("user:1") == 0


@pytest.mark.asyncio
async def test_stalled_subscriber_does_not_starve_healthy_ones() -> None:
    organization_id = uuid4()
    channel = organization_channel(organization_id)
    hub = InMemoryRealtimeHub(send_timeout_seconds=0.2)
    notifier = ChangeNotifier(publisher=hub, timeout_seconds=0.2)
    stalled = FakeWebSocket(stall_seconds=5.0)
    healthy = [FakeWebSocket() for _ in range(20)]
    await hub.subscribe(stalled, channel)
    for socket in healthy:
        await hub.subscribe(socket, channel)

    await notifier.assignment_changed(
        organization_id, uuid4(), AssignmentAction.ASSIGNED, uuid4()
    )

    for socket in healthy:
        assert [envelope["event"] for envelope in socket.sent] == [
            "conversation:assignment",
            "queue:updated",
        ]
    assert stalled.sent == []


@pytest.mark.asyncio
async def test_stalled_subscriber_is_dropped_after_send_timeout() -> None:
    hub = InMemoryRealtimeHub(send_timeout_seconds=0.05)
    stalled = FakeWebSocket(stall_seconds=5.0)
    healthy = FakeWebSocket()
    await hub.subscribe(stalled, "org:1")
    await hub.subscribe(healthy, "org:1")

    await hub.publish(["org:1"], RealtimeEvent.QUEUE_UPDATED, {})

    assert hub.subscriber_count("org:1") == 1
    assert len(healthy.sent) == 1
