from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from app.domain.enums import AgentAvailability, ConversationStatus, Priority


@dataclass(frozen=True, slots=True)
class ConversationRecord:
    id: UUID
    organization_id: UUID
    channel_id: UUID
    priority: Priority
    status: ConversationStatus
    unread_count: int
    created_at: datetime
    last_message_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class AssignmentRecord:
    conversation_id: UUID
    agent_id: UUID
    is_primary: bool
    assigned_at: datetime
    assigned_by_id: UUID | None = None


@dataclass(frozen=True, slots=True)
class AgentProfile:
    id: UUID
    organization_id: UUID
    display_name: str
    is_active: bool
    availability: AgentAvailability
    team_ids: frozenset[UUID] = field(default_factory=frozenset)
    last_active_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class ConversationAgent:
    agent: AgentProfile
    is_primary: bool
    assigned_at: datetime


@dataclass(frozen=True, slots=True)
class QueueEntry:
    id: UUID
    channel_id: UUID
    priority: Priority
    status: ConversationStatus
    unread_count: int
    created_at: datetime
    last_message_at: datetime | None
    waiting_seconds: int


@dataclass(frozen=True, slots=True)
class QueueStats:
    waiting: int
    avg_wait_seconds: int
    online_agents: int
    total_agents: int
    handled_today: int


@dataclass(frozen=True, slots=True)
class AgentConversationSummary:
    id: UUID
    channel_id: UUID
    priority: Priority
    status: ConversationStatus
    unread_count: int
    is_primary: bool
    primary_agent_id: UUID | None
    created_at: datetime
    last_message_at: datetime | None
