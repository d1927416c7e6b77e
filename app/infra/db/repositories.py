from collections.abc import Sequence
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import Select, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.domain.entities import (
    AgentConversationSummary,
    AgentProfile,
    ConversationRecord,
)
from app.domain.enums import QUEUEABLE_STATUSES, AgentAvailability, Priority
from app.infra.db.models import (
    Agent,
    Conversation,
    ConversationAgent,
    Team,
    TeamChannel,
)

PRIORITY_RANK = case(
    {priority: priority.rank for priority in Priority},
    value=Conversation.priority,
)


def to_conversation_record(conversation: Conversation) -> ConversationRecord:
    return ConversationRecord(
        id=conversation.id,
        organization_id=conversation.organization_id,
        channel_id=conversation.channel_id,
        priority=conversation.priority,
        status=conversation.status,
        unread_count=conversation.unread_count,
        created_at=conversation.created_at,
        last_message_at=conversation.last_message_at,
    )


def to_agent_profile(agent: Agent) -> AgentProfile:
    return AgentProfile(
        id=agent.id,
        organization_id=agent.organization_id,
        display_name=agent.display_name,
        is_active=agent.is_active,
        availability=agent.availability,
        team_ids=frozenset(membership.team_id for membership in agent.memberships),
        last_active_at=agent.last_active_at,
    )


def _has_no_assignments():
    return ~(
        select(ConversationAgent.id)
        .where(ConversationAgent.conversation_id == Conversation.id)
        .exists()
    )


def _has_primary():
    return (
        select(ConversationAgent.id)
        .where(
            ConversationAgent.conversation_id == Conversation.id,
            ConversationAgent.is_primary.is_(True),
        )
        .exists()
    )


class ConversationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_conversation(
        self, organization_id: UUID, conversation_id: UUID
    ) -> ConversationRecord | None:
        conversation = await self.session.get(Conversation, conversation_id)
        if conversation is None or conversation.organization_id != organization_id:
            return None
        return to_conversation_record(conversation)

    def _unassigned_query(self, organization_id: UUID) -> Select[tuple[Conversation]]:
        return select(Conversation).where(
            Conversation.organization_id == organization_id,
            Conversation.status.in_(QUEUEABLE_STATUSES),
            _has_no_assignments(),
        )

    async def list_unassigned(
        self,
        organization_id: UUID,
        channel_id: UUID | None,
        limit: int,
    ) -> list[ConversationRecord]:
        stmt = self._unassigned_query(organization_id)
        if channel_id is not None:
            stmt = stmt.where(Conversation.channel_id == channel_id)
        stmt = stmt.order_by(
            PRIORITY_RANK.desc(),
            Conversation.created_at.asc(),
            Conversation.id.asc(),
        ).limit(limit)
        result = await self.session.execute(stmt)
        return [to_conversation_record(row) for row in result.scalars().all()]

    async def count_unassigned(self, organization_id: UUID) -> int:
        stmt = select(func.count()).select_from(
            self._unassigned_query(organization_id).subquery()
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)

    async def oldest_unassigned_created_at(
        self, organization_id: UUID
    ) -> datetime | None:
        stmt = (
            self._unassigned_query(organization_id)
            .with_only_columns(Conversation.created_at)
            .order_by(Conversation.created_at.asc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def count_handled_since(self, organization_id: UUID, since: datetime) -> int:
        stmt = select(func.count(Conversation.id)).where(
            Conversation.organization_id == organization_id,
            Conversation.updated_at >= since,
            _has_primary(),
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)

    async def list_for_agent(
        self, organization_id: UUID, agent_id: UUID
    ) -> list[AgentConversationSummary]:
        # The owner is derived from the assignment relation, never stored twice.
        primary_agent = (
            select(ConversationAgent.agent_id)
            .where(
                ConversationAgent.conversation_id == Conversation.id,
                ConversationAgent.is_primary.is_(True),
            )
            .limit(1)
            .scalar_subquery()
        )
        stmt = (
            select(Conversation, ConversationAgent.is_primary, primary_agent)
            .join(ConversationAgent, ConversationAgent.conversation_id == Conversation.id)
            .where(
                Conversation.organization_id == organization_id,
                Conversation.status.in_(QUEUEABLE_STATUSES),
                ConversationAgent.agent_id == agent_id,
            )
            .order_by(
                Conversation.last_message_at.desc().nulls_last(),
                Conversation.updated_at.desc(),
            )
        )
        result = await self.session.execute(stmt)
        return [
            AgentConversationSummary(
                id=conversation.id,
                channel_id=conversation.channel_id,
                priority=conversation.priority,
                status=conversation.status,
                unread_count=conversation.unread_count,
                is_primary=is_primary,
                primary_agent_id=primary_agent_id,
                created_at=conversation.created_at,
                last_message_at=conversation.last_message_at,
            )
            for conversation, is_primary, primary_agent_id in result.all()
        ]


class AgentRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _agents_query(self, organization_id: UUID) -> Select[tuple[Agent]]:
        return (
            select(Agent)
            .options(selectinload(Agent.memberships))
            .where(Agent.organization_id == organization_id)
        )

    async def _get(self, organization_id: UUID, agent_id: UUID) -> Agent | None:
        stmt = self._agents_query(organization_id).where(Agent.id == agent_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_agent(
        self, organization_id: UUID, agent_id: UUID
    ) -> AgentProfile | None:
        agent = await self._get(organization_id, agent_id)
        return to_agent_profile(agent) if agent is not None else None

    async def list_agents(self, organization_id: UUID) -> list[AgentProfile]:
        stmt = self._agents_query(organization_id).order_by(
            Agent.created_at.asc(), Agent.id.asc()
        )
        result = await self.session.execute(stmt)
        return [to_agent_profile(agent) for agent in result.scalars().all()]

    async def set_availability(
        self,
        organization_id: UUID,
        agent_id: UUID,
        availability: AgentAvailability,
    ) -> AgentProfile | None:
        agent = await self._get(organization_id, agent_id)
        if agent is None:
            return None
        agent.availability = availability
        agent.last_active_at = datetime.now(UTC)
        await self.session.commit()
        return to_agent_profile(agent)

    async def set_all_availability(self, availability: AgentAvailability) -> None:
        result = await self.session.execute(select(Agent))
        for agent in result.scalars().all():
            agent.availability = availability
        await self.session.flush()


class TeamRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def team_ids_for_channel(
        self, organization_id: UUID, channel_id: UUID
    ) -> frozenset[UUID]:
        stmt = (
            select(TeamChannel.team_id)
            .join(Team, Team.id == TeamChannel.team_id)
            .where(
                TeamChannel.channel_id == channel_id,
                Team.organization_id == organization_id,
            )
        )
        result = await self.session.execute(stmt)
        return frozenset(result.scalars().all())


async def count_open_by_agent(
    session: AsyncSession,
    organization_id: UUID,
    agent_ids: Sequence[UUID],
) -> dict[UUID, int]:
    if not agent_ids:
        return {}
    stmt = (
        select(ConversationAgent.agent_id, func.count(func.distinct(Conversation.id)))
        .join(Conversation, Conversation.id == ConversationAgent.conversation_id)
        .where(
            Conversation.organization_id == organization_id,
            Conversation.status.in_(QUEUEABLE_STATUSES),
            ConversationAgent.agent_id.in_(list(agent_ids)),
        )
        .group_by(ConversationAgent.agent_id)
    )
    result = await session.execute(stmt)
    return {agent_id: int(count) for agent_id, count in result.all()}
