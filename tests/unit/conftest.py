import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest

from app.core.retry import BackoffPolicy
from app.domain.entities import (
    AgentConversationSummary,
    AgentProfile,
    AssignmentRecord,
    ConversationAgent,
    ConversationRecord,
)
from app.domain.enums import (
    QUEUEABLE_STATUSES,
    AgentAvailability,
    ConversationStatus,
    Priority,
)
from app.infra.realtime.events import RealtimeEvent
from app.services.agent_service import AgentService
from app.services.assignment_engine import AssignmentEngine
from app.services.errors import ConcurrentAssignmentError, ConversationNotFoundError
from app.services.notifier import ChangeNotifier
from app.services.queue_service import QueueService

BASE_TIME = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


class FakeRoutingDatabase:
    """Shared in-memory state behind every fake adapter."""

    def __init__(self) -> None:
        self.conversations: dict[UUID, ConversationRecord] = {}
        self.updated_at: dict[UUID, datetime] = {}
        self.agents: dict[UUID, AgentProfile] = {}
        self.assignments: dict[UUID, dict[UUID, AssignmentRecord]] = defaultdict(dict)
        self.channel_teams: dict[UUID, set[UUID]] = defaultdict(set)
        self._ticks = 0

    def tick(self) -> datetime:
        self._ticks += 1
        return BASE_TIME + timedelta(seconds=self._ticks)

    def add_agent(
        self,
        organization_id: UUID,
        display_name: str = "Agent",
        availability: AgentAvailability = AgentAvailability.ONLINE,
        is_active: bool = True,
        team_ids: Sequence[UUID] = (),
        agent_id: UUID | None = None,
    ) -> AgentProfile:
        agent = AgentProfile(
            id=agent_id or uuid4(),
            organization_id=organization_id,
            display_name=display_name,
            is_active=is_active,
            availability=availability,
            team_ids=frozenset(team_ids),
        )
        self.agents[agent.id] = agent
        return agent

    def add_conversation(
        self,
        organization_id: UUID,
        channel_id: UUID | None = None,
        priority: Priority = Priority.NORMAL,
        status: ConversationStatus = ConversationStatus.OPEN,
        created_at: datetime | None = None,
        conversation_id: UUID | None = None,
    ) -> ConversationRecord:
        conversation = ConversationRecord(
            id=conversation_id or uuid4(),
            organization_id=organization_id,
            channel_id=channel_id or uuid4(),
            priority=priority,
            status=status,
            unread_count=0,
            created_at=created_at or self.tick(),
        )
        self.conversations[conversation.id] = conversation
        self.updated_at[conversation.id] = conversation.created_at
        return conversation

    def map_channel(self, channel_id: UUID, team_id: UUID) -> None:
        self.channel_teams[channel_id].add(team_id)

    def rows(self, conversation_id: UUID) -> list[AssignmentRecord]:
        return sorted(
            self.assignments[conversation_id].values(),
            key=lambda row: (row.assigned_at, row.agent_id),
        )

    def primaries(self, conversation_id: UUID) -> list[UUID]:
        return [row.agent_id for row in self.rows(conversation_id) if row.is_primary]

    def conversation_in(
        self, organization_id: UUID, conversation_id: UUID
    ) -> ConversationRecord | None:
        conversation = self.conversations.get(conversation_id)
        if conversation is None or conversation.organization_id != organization_id:
            return None
        return conversation


class InMemoryAssignmentScope:
    """Stages changes on a copy and commits them when the scope exits cleanly."""

    def __init__(self, database: FakeRoutingDatabase, conversation: ConversationRecord) -> None:
        self.database = database
        self.conversation = conversation
        self.staged = dict(database.assignments[conversation.id])

    async def rows(self) -> list[AssignmentRecord]:
        return sorted(self.staged.values(), key=lambda row: (row.assigned_at, row.agent_id))

    async def demote_primary(self) -> None:
        for agent_id, row in list(self.staged.items()):
            if row.is_primary:
                self.staged[agent_id] = replace(row, is_primary=False)

    async def upsert(
        self,
        agent_id: UUID,
        is_primary: bool,
        assigned_by_id: UUID | None,
    ) -> AssignmentRecord:
        existing = self.staged.get(agent_id)
        if existing is None:
            row = AssignmentRecord(
                conversation_id=self.conversation.id,
                agent_id=agent_id,
                is_primary=is_primary,
                assigned_at=self.database.tick(),
                assigned_by_id=assigned_by_id,
            )
        else:
            row = replace(existing, is_primary=is_primary)
        self.staged[agent_id] = row
        return row

    async def delete(self, agent_id: UUID) -> AssignmentRecord | None:
        return self.staged.pop(agent_id, None)

    async def mark_primary(self, agent_id: UUID) -> AssignmentRecord:
        row = replace(self.staged[agent_id], is_primary=True)
        self.staged[agent_id] = row
        return row

    def commit(self) -> None:
        if sum(1 for row in self.staged.values() if row.is_primary) > 1:
            raise ConcurrentAssignmentError(self.conversation.id)
        self.database.assignments[self.conversation.id] = self.staged
        self.database.updated_at[self.conversation.id] = datetime.now(UTC)


class InMemoryAssignmentStore:
    def __init__(self, database: FakeRoutingDatabase) -> None:
        self.database = database
        self.locks: dict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.conflicts_remaining = 0
        self.scope_delay_seconds = 0.0
        self.scopes_opened = 0

    async def get_conversation(
        self, organization_id: UUID, conversation_id: UUID
    ) -> ConversationRecord | None:
        return self.database.conversation_in(organization_id, conversation_id)

    @asynccontextmanager
    async def conversation_scope(
        self,
        organization_id: UUID,
        conversation_id: UUID,
    ) -> AsyncIterator[InMemoryAssignmentScope]:
        self.scopes_opened += 1
        async with self.locks[conversation_id]:
            conversation = self.database.conversation_in(organization_id, conversation_id)
            if conversation is None:
                raise ConversationNotFoundError(conversation_id)
            if self.scope_delay_seconds:
                await asyncio.sleep(self.scope_delay_seconds)
            scope = InMemoryAssignmentScope(self.database, conversation)
            yield scope
            if self.conflicts_remaining > 0:
                self.conflicts_remaining -= 1
                raise ConcurrentAssignmentError(conversation_id)
            scope.commit()

    async def list_for_conversation(
        self,
        organization_id: UUID,
        conversation_id: UUID,
    ) -> list[ConversationAgent]:
        return [
            ConversationAgent(
                agent=self.database.agents[row.agent_id],
                is_primary=row.is_primary,
                assigned_at=row.assigned_at,
            )
            for row in self.database.rows(conversation_id)
            if self.database.agents[row.agent_id].organization_id == organization_id
        ]

    async def count_open_by_agent(
        self,
        organization_id: UUID,
        agent_ids: Sequence[UUID],
    ) -> dict[UUID, int]:
        counts: dict[UUID, int] = {}
        for conversation in self.database.conversations.values():
            if conversation.organization_id != organization_id:
                continue
            if conversation.status not in QUEUEABLE_STATUSES:
                continue
            for agent_id in self.database.assignments[conversation.id]:
                if agent_id in agent_ids:
                    counts[agent_id] = counts.get(agent_id, 0) + 1
        return counts


class FakeAgentDirectory:
    def __init__(self, database: FakeRoutingDatabase) -> None:
        self.database = database
        self.delay_seconds = 0.0

    async def get_agent(
        self, organization_id: UUID, agent_id: UUID
    ) -> AgentProfile | None:
        await asyncio.sleep(self.delay_seconds)
        agent = self.database.agents.get(agent_id)
        if agent is None or agent.organization_id != organization_id:
            return None
        return agent

    async def list_agents(self, organization_id: UUID) -> list[AgentProfile]:
        await asyncio.sleep(self.delay_seconds)
        return [
            agent
            for agent in self.database.agents.values()
            if agent.organization_id == organization_id
        ]

    async def set_availability(
        self,
        organization_id: UUID,
        agent_id: UUID,
        availability: AgentAvailability,
    ) -> AgentProfile | None:
        agent = await self.get_agent(organization_id, agent_id)
        if agent is None:
            return None
        updated = replace(
            agent, availability=availability, last_active_at=self.database.tick()
        )
        self.database.agents[agent_id] = updated
        return updated


class FakeTeamChannelMap:
    def __init__(self, database: FakeRoutingDatabase) -> None:
        self.database = database

    async def team_ids_for_channel(
        self, organization_id: UUID, channel_id: UUID
    ) -> frozenset[UUID]:
        return frozenset(self.database.channel_teams.get(channel_id, ()))


class FakeQueueReader:
    def __init__(self, database: FakeRoutingDatabase) -> None:
        self.database = database
        self.delay_seconds = 0.0

    def _unassigned(self, organization_id: UUID) -> list[ConversationRecord]:
        return [
            conversation
            for conversation in self.database.conversations.values()
            if conversation.organization_id == organization_id
            and conversation.status in QUEUEABLE_STATUSES
            and not self.database.assignments[conversation.id]
        ]

    async def get_conversation(
        self, organization_id: UUID, conversation_id: UUID
    ) -> ConversationRecord | None:
        return self.database.conversation_in(organization_id, conversation_id)

    async def list_unassigned(
        self,
        organization_id: UUID,
        channel_id: UUID | None,
        limit: int,
    ) -> list[ConversationRecord]:
        # Insertion order on purpose; the service owns the ordering.
        await asyncio.sleep(self.delay_seconds)
        records = [
            conversation
            for conversation in self._unassigned(organization_id)
            if channel_id is None or conversation.channel_id == channel_id
        ]
        return records[:limit] if limit < len(records) else records

    async def count_unassigned(self, organization_id: UUID) -> int:
        await asyncio.sleep(self.delay_seconds)
        return len(self._unassigned(organization_id))

    async def oldest_unassigned_created_at(
        self, organization_id: UUID
    ) -> datetime | None:
        created = [record.created_at for record in self._unassigned(organization_id)]
        return min(created) if created else None

    async def count_handled_since(self, organization_id: UUID, since: datetime) -> int:
        return sum(
            1
            for conversation in self.database.conversations.values()
            if conversation.organization_id == organization_id
            and self.database.updated_at[conversation.id] >= since
            and self.database.primaries(conversation.id)
        )

    async def list_for_agent(
        self, organization_id: UUID, agent_id: UUID
    ) -> list[AgentConversationSummary]:
        summaries: list[AgentConversationSummary] = []
        for conversation in self.database.conversations.values():
            if conversation.organization_id != organization_id:
                continue
            row = self.database.assignments[conversation.id].get(agent_id)
            if row is None or conversation.status not in QUEUEABLE_STATUSES:
                continue
            primaries = self.database.primaries(conversation.id)
            summaries.append(
                AgentConversationSummary(
                    id=conversation.id,
                    channel_id=conversation.channel_id,
                    priority=conversation.priority,
                    status=conversation.status,
                    unread_count=conversation.unread_count,
                    is_primary=row.is_primary,
                    primary_agent_id=primaries[0] if primaries else None,
                    created_at=conversation.created_at,
                    last_message_at=conversation.last_message_at,
                )
            )
        return summaries


class RecordingPublisher:
    def __init__(
        self,
        on_publish: Callable[[RealtimeEvent, Mapping[str, Any]], None] | None = None,
    ) -> None:
        self.published: list[tuple[list[str], RealtimeEvent, dict[str, Any]]] = []
        self.on_publish = on_publish

    async def publish(
        self,
        channels: Sequence[str],
        event: RealtimeEvent,
        payload: Mapping[str, Any],
    ) -> None:
        if self.on_publish is not None:
            self.on_publish(event, payload)
        self.published.append((list(channels), event, dict(payload)))

    def events(self, event: RealtimeEvent) -> list[dict[str, Any]]:
        return [payload for _, kind, payload in self.published if kind == event]


class FailingPublisher:
    async def publish(
        self,
        channels: Sequence[str],
        event: RealtimeEvent,
        payload: Mapping[str, Any],
    ) -> None:
        raise ConnectionError("realtime transport is down")


@pytest.fixture
def organization_id() -> UUID:
    return uuid4()


@pytest.fixture
def database() -> FakeRoutingDatabase:
    return FakeRoutingDatabase()


@pytest.fixture
def store(database: FakeRoutingDatabase) -> InMemoryAssignmentStore:
    return InMemoryAssignmentStore(database)


@pytest.fixture
def directory(database: FakeRoutingDatabase) -> FakeAgentDirectory:
    return FakeAgentDirectory(database)


@pytest.fixture
def queue_reader(database: FakeRoutingDatabase) -> FakeQueueReader:
    return FakeQueueReader(database)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def engine(
    database: FakeRoutingDatabase,
    store: InMemoryAssignmentStore,
    directory: FakeAgentDirectory,
    publisher: RecordingPublisher,
) -> AssignmentEngine:
    return AssignmentEngine(
        store=store,
        directory=directory,
        teams=FakeTeamChannelMap(database),
        notifier=ChangeNotifier(publisher=publisher, timeout_seconds=0.5),
        backoff=BackoffPolicy(attempts=3, base_delay_seconds=0.0),
        store_timeout_seconds=1.0,
    )


@pytest.fixture
def queue_service(
    queue_reader: FakeQueueReader, directory: FakeAgentDirectory
) -> QueueService:
    return QueueService(conversations=queue_reader, directory=directory, max_limit=10)


@pytest.fixture
def agent_service(
    queue_reader: FakeQueueReader,
    directory: FakeAgentDirectory,
    publisher: RecordingPublisher,
) -> AgentService:
    return AgentService(
        directory=directory,
        conversations=queue_reader,
        notifier=ChangeNotifier(publisher=publisher, timeout_seconds=0.5),
    )
