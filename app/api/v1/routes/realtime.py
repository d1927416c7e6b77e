import json
import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketDisconnect

from app.core.config import get_settings
from app.core.db import get_session_factory
from app.core.security import decode_actor_token
from app.domain.enums import AgentAvailability
from app.infra.db.repositories import AgentRepository, ConversationRepository
from app.infra.realtime.channels import agent_channel, organization_channel
from app.services.agent_service import AgentService
from app.services.errors import AgentNotFoundError, StoreUnavailableError
from app.services.notifier import ChangeNotifier

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)


def _system_event(event: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "event": event,
        "payload": payload or {},
        "sent_at": datetime.now(UTC).isoformat(),
    }


async def _set_availability(
    session_factory,
    notifier: ChangeNotifier,
    organization_id: UUID,
    agent_id: UUID,
    availability: AgentAvailability,
) -> None:
    async with session_factory() as session:
        service = AgentService(
            directory=AgentRepository(session),
            conversations=ConversationRepository(session),
            notifier=notifier,
            store_timeout_seconds=settings.routing_store_timeout_seconds,
        )
        try:
            agent = await service.get_agent(organization_id, agent_id)
            if agent.availability != availability:
                await service.set_availability(organization_id, agent_id, availability)
        except AgentNotFoundError:
            logger.info("Agent %s vanished while updating availability", agent_id)
        except StoreUnavailableError:
            logger.warning(
                "Could not set agent %s %s", agent_id, availability.value, exc_info=True
            )


@router.websocket("/ws")
async def realtime_ws(websocket: WebSocket) -> None:
    hub = getattr(websocket.app.state, "realtime_hub", None)
    if hub is None:
        await websocket.close(code=1011, reason="Realtime hub not initialized")
        return

    try:
        session_factory = get_session_factory()
    except RuntimeError:
        await websocket.close(code=1011, reason="Database session is not initialized")
        return

    access_token = websocket.query_params.get("access_token", "").strip()
    if not access_token:
        await websocket.close(
            code=1008,
            reason="Realtime websocket requires access_token query parameter",
        )
        return

    try:
        claims = decode_actor_token(access_token, settings.actor_auth_secret)
    except ValueError:
        await websocket.close(code=1008, reason="Invalid or expired session")
        return

    async with session_factory() as session:
        agent = await AgentRepository(session).get_agent(
            claims.organization_id, claims.actor_id
        )
    if agent is None or not agent.is_active:
        await websocket.close(code=1008, reason="Agent not found")
        return

    notifier = ChangeNotifier(
        publisher=hub,
        timeout_seconds=settings.routing_publish_timeout_seconds,
    )
    channels = [
        organization_channel(claims.organization_id),
        agent_channel(claims.actor_id),
    ]

    await hub.connect(websocket)
    for channel in channels:
        await hub.subscribe(websocket, channel)

    await websocket.send_json(_system_event("system.connected", {"channels": channels}))
    await _set_availability(
        session_factory,
        notifier,
        claims.organization_id,
        claims.actor_id,
        AgentAvailability.ONLINE,
    )

    try:
        while True:
            raw_message = await websocket.receive_text()
            if raw_message.strip().lower() == "ping":
                await websocket.send_json(_system_event("system.pong"))
                continue

            try:
                message = json.loads(raw_message)
            except json.JSONDecodeError:
                await websocket.send_json(
                    _system_event("system.error", {"detail": "Expected JSON payload"})
                )
                continue

            if isinstance(message, dict) and message.get("action") == "ping":
                await websocket.send_json(_system_event("system.pong"))
                continue

            await websocket.send_json(
                _system_event("system.error", {"detail": "Unsupported action"})
            )
    except WebSocketDisconnect:
        return
    finally:
        await hub.disconnect(websocket)
        # Other tabs of the same agent keep it online.
        if hub.subscriber_count(agent_channel(claims.actor_id)) == 0:
            await _set_availability(
                session_factory,
                notifier,
                claims.organization_id,
                claims.actor_id,
                AgentAvailability.OFFLINE,
            )
