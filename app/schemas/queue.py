from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from app.domain.enums import AssignmentMode, ConversationStatus, Priority
from app.schemas.agent import AgentResponse


class QueueEntryResponse(BaseModel):
    id: UUID
    channel_id: UUID
    priority: Priority
    status: ConversationStatus
    unread_count: int
    created_at: datetime
    last_message_at: datetime | None
    waiting_seconds: int

    model_config = ConfigDict(from_attributes=True)


class QueueListResponse(BaseModel):
    items: list[QueueEntryResponse]


class QueueStatsResponse(BaseModel):
    waiting: int
    avg_wait_seconds: int
    online_agents: int
    total_agents: int
    handled_today: int

    model_config = ConfigDict(from_attributes=True)


class AssignmentResponse(BaseModel):
    conversation_id: UUID
    agent_id: UUID
    is_primary: bool
    assigned_at: datetime
    assigned_by_id: UUID | None

    model_config = ConfigDict(from_attributes=True)


class AutoAssignResponse(BaseModel):
    assignment: AssignmentResponse | None
    detail: str | None = None


class AssignAgentRequest(BaseModel):
    conversation_id: UUID
    agent_id: UUID
    is_primary: bool = False


class SetPrimaryRequest(BaseModel):
    conversation_id: UUID
    agent_id: UUID


class AutoAssignRequest(BaseModel):
    channel_id: UUID | None = None
    mode: AssignmentMode | None = None


class ConversationCreatedEvent(BaseModel):
    conversation_id: UUID
    channel_id: UUID | None = None


class ConversationAgentResponse(BaseModel):
    agent: AgentResponse
    is_primary: bool
    assigned_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConversationAgentListResponse(BaseModel):
    items: list[ConversationAgentResponse]


class UnassignResponse(BaseModel):
    conversation_id: UUID
    agent_id: UUID
    detail: str
    timestamp: datetime
