from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from app.domain.enums import AgentAvailability, ConversationStatus, Priority


class AgentResponse(BaseModel):
    id: UUID
    display_name: str
    is_active: bool
    availability: AgentAvailability
    team_ids: list[UUID]
    last_active_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class SetAvailabilityRequest(BaseModel):
    availability: AgentAvailability


class AgentConversationResponse(BaseModel):
    id: UUID
    channel_id: UUID
    priority: Priority
    status: ConversationStatus
    unread_count: int
    is_primary: bool
    primary_agent_id: UUID | None
    created_at: datetime
    last_message_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class AgentConversationListResponse(BaseModel):
    items: list[AgentConversationResponse]
