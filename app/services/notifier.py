import asyncio
import logging
from collections.abc import Mapping
from typing import Any
from uuid import UUID

from app.domain.entities import AgentProfile, AssignmentRecord
from app.domain.enums import AssignmentAction, QueueAction
from app.infra.realtime.channels import organization_channel
from app.infra.realtime.events import RealtimeEvent
from app.infra.realtime.publisher import NoopRealtimePublisher, RealtimePublisher

logger = logging.getLogger(__name__)


class ChangeNotifier:
    """Publishes routing changes to the organization's realtime channel.

    Callers only invoke it after their write committed. A failing or slow
    publisher is logged and otherwise ignored so the write always stands.
    """

    def __init__(
        self,
        publisher: RealtimePublisher | None = None,
        timeout_seconds: float = 2.0,
    ) -> None:
        self.publisher = publisher or NoopRealtimePublisher()
        self.timeout_seconds = timeout_seconds

    async def publish(
        self,
        organization_id: UUID,
        topic: RealtimeEvent,
        payload: Mapping[str, Any],
    ) -> bool:
        try:
            await asyncio.wait_for(
                self.publisher.publish(
                    [organization_channel(organization_id)], topic, payload
                ),
                timeout=self.timeout_seconds,
            )
        except Exception:
            logger.warning(
                "Failed to publish %s for organization %s",
                topic.value,
                organization_id,
                exc_info=True,
            )
            return False
        return True

    async def assignment_changed(
        self,
        organization_id: UUID,
        conversation_id: UUID,
        action: AssignmentAction,
        agent_id: UUID,
        assignment: AssignmentRecord | None = None,
        promoted: AssignmentRecord | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "conversation_id": str(conversation_id),
            "action": action.value,
            "agent_id": str(agent_id),
        }
        if assignment is not None:
            payload["assignment"] = assignment_payload(assignment)
        if promoted is not None:
            payload["promoted"] = assignment_payload(promoted)

        await self.publish(organization_id, RealtimeEvent.CONVERSATION_ASSIGNMENT, payload)
        await self.queue_updated(organization_id, conversation_id, QueueAction(action.value))

    async def queue_updated(
        self,
        organization_id: UUID,
        conversation_id: UUID,
        action: QueueAction,
    ) -> None:
        await self.publish(
            organization_id,
            RealtimeEvent.QUEUE_UPDATED,
            {"conversation_id": str(conversation_id), "action": action.value},
        )

    async def availability_changed(self, agent: AgentProfile) -> None:
        await self.publish(
            agent.organization_id,
            RealtimeEvent.AGENT_AVAILABILITY,
            {
                "agent_id": str(agent.id),
                "display_name": agent.display_name,
                "availability": agent.availability.value,
                "last_active_at": (
                    agent.last_active_at.isoformat()
                    if agent.last_active_at is not None
                    else None
                ),
            },
        )


def assignment_payload(assignment: AssignmentRecord) -> dict[str, Any]:
    return {
        "conversation_id": str(assignment.conversation_id),
        "agent_id": str(assignment.agent_id),
        "is_primary": assignment.is_primary,
        "assigned_at": assignment.assigned_at.isoformat(),
        "assigned_by_id": (
            str(assignment.assigned_by_id)
            if assignment.assigned_by_id is not None
            else None
        ),
    }
