from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Protocol
from uuid import UUID

from app.domain.entities import (
    AgentConversationSummary,
    AgentProfile,
    AssignmentRecord,
    ConversationAgent,
    ConversationRecord,
)
from app.domain.enums import AgentAvailability


class AssignmentScope(Protocol):
    """Assignment rows of one conversation, locked for the lifetime of the scope.

    Changes are committed when the scope exits cleanly and rolled back when
    it exits with an exception.
    """

    conversation: ConversationRecord

    async def rows(self) -> list[AssignmentRecord]: ...

    async def demote_primary(self) -> None: ...

    async def upsert(
        self,
        agent_id: UUID,
        is_primary: bool,
        assigned_by_id: UUID | None,
    ) -> AssignmentRecord: ...

    async def delete(self, agent_id: UUID) -> AssignmentRecord | None: ...

    async def mark_primary(self, agent_id: UUID) -> AssignmentRecord: ...


class AssignmentStore(Protocol):
    """Durable assignment relation.

    ``conversation_scope`` raises ``ConversationNotFoundError`` when the
    conversation is not in the organization, and ``ConcurrentAssignmentError``
    when a concurrent writer forced the unit to abort.
    """

    async def get_conversation(
        self, organization_id: UUID, conversation_id: UUID
    ) -> ConversationRecord | None: ...

    def conversation_scope(
        self,
        organization_id: UUID,
        conversation_id: UUID,
    ) -> AbstractAsyncContextManager[AssignmentScope]: ...

    async def list_for_conversation(
        self,
        organization_id: UUID,
        conversation_id: UUID,
    ) -> list[ConversationAgent]: ...

    async def count_open_by_agent(
        self,
        organization_id: UUID,
        agent_ids: Sequence[UUID],
    ) -> dict[UUID, int]: ...


class AgentDirectory(Protocol):
    async def get_agent(
        self, organization_id: UUID, agent_id: UUID
    ) -> AgentProfile | None: ...

    async def list_agents(self, organization_id: UUID) -> list[AgentProfile]: ...

    async def set_availability(
        self,
        organization_id: UUID,
        agent_id: UUID,
        availability: AgentAvailability,
    ) -> AgentProfile | None: ...


class TeamChannelMap(Protocol):
    async def team_ids_for_channel(
        self, organization_id: UUID, channel_id: UUID
    ) -> frozenset[UUID]: ...


class QueueReader(Protocol):
    async def get_conversation(
        self, organization_id: UUID, conversation_id: UUID
    ) -> ConversationRecord | None: ...

    async def list_unassigned(
        self,
        organization_id: UUID,
        channel_id: UUID | None,
        limit: int,
    ) -> list[ConversationRecord]: ...

    async def count_unassigned(self, organization_id: UUID) -> int: ...

    async def oldest_unassigned_created_at(
        self, organization_id: UUID
    ) -> datetime | None: ...

    async def count_handled_since(
        self, organization_id: UUID, since: datetime
    ) -> int: ...

    async def list_for_agent(
        self, organization_id: UUID, agent_id: UUID
    ) -> list[AgentConversationSummary]: ...
