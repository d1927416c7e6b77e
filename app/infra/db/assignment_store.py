import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from app.domain.entities import AssignmentRecord, ConversationAgent, ConversationRecord
from app.infra.db.models import Agent, Conversation
from app.infra.db.models import ConversationAgent as ConversationAgentRow
from app.infra.db.repositories import (
    ConversationRepository,
    count_open_by_agent,
    to_agent_profile,
    to_conversation_record,
)
from app.services.errors import (
    ConcurrentAssignmentError,
    ConversationNotFoundError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})
UNIQUE_VIOLATION = "23505"
ASSIGNMENT_UNIQUE_CONSTRAINTS = frozenset(
    {"uq_conversation_agents_one_primary", "uq_conversation_agent"}
)


def _sqlstate(exc: DBAPIError) -> str | None:
    original = exc.orig
    return getattr(original, "sqlstate", None) or getattr(original, "pgcode", None)


def _is_assignment_race(exc: IntegrityError) -> bool:
    """True only for unique violations on the assignment relation."""
    if _sqlstate(exc) == UNIQUE_VIOLATION:
        constraint = getattr(exc.orig.__cause__, "constraint_name", None)
        return constraint is None or constraint in ASSIGNMENT_UNIQUE_CONSTRAINTS
    # SQLite reports no SQLSTATE, only the message.
    return "UNIQUE constraint failed: conversation_agents." in str(exc.orig)


def _to_record(row: ConversationAgentRow) -> AssignmentRecord:
    return AssignmentRecord(
        conversation_id=row.conversation_id,
        agent_id=row.agent_id,
        is_primary=row.is_primary,
        assigned_at=row.assigned_at,
        assigned_by_id=row.assigned_by_id,
    )


class SqlAssignmentScope:
    def __init__(self, session: AsyncSession, locked: Conversation) -> None:
        self.session = session
        self.locked = locked
        self.conversation = to_conversation_record(locked)

    def _touch(self) -> None:
        # Every committed assignment change counts as activity on the conversation.
        self.locked.updated_at = datetime.now(UTC)

    async def _row(self, agent_id: UUID) -> ConversationAgentRow | None:
        stmt = select(ConversationAgentRow).where(
            ConversationAgentRow.conversation_id == self.conversation.id,
            ConversationAgentRow.agent_id == agent_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def rows(self) -> list[AssignmentRecord]:
        stmt = (
            select(ConversationAgentRow)
            .where(ConversationAgentRow.conversation_id == self.conversation.id)
            .order_by(ConversationAgentRow.assigned_at.asc(), ConversationAgentRow.id.asc())
        )
        result = await self.session.execute(stmt)
        return [_to_record(row) for row in result.scalars().all()]

    async def demote_primary(self) -> None:
        await self.session.execute(
            update(ConversationAgentRow)
            .where(
                ConversationAgentRow.conversation_id == self.conversation.id,
                ConversationAgentRow.is_primary.is_(True),
            )
            .values(is_primary=False)
        )

    async def upsert(
        self,
        agent_id: UUID,
        is_primary: bool,
        assigned_by_id: UUID | None,
    ) -> AssignmentRecord:
        row = await self._row(agent_id)
        if row is None:
            row = ConversationAgentRow(
                conversation_id=self.conversation.id,
                agent_id=agent_id,
                is_primary=is_primary,
                assigned_at=datetime.now(UTC),
                assigned_by_id=assigned_by_id,
            )
            self.session.add(row)
        else:
            row.is_primary = is_primary
        self._touch()
        await self.session.flush()
        return _to_record(row)

    async def delete(self, agent_id: UUID) -> AssignmentRecord | None:
        row = await self._row(agent_id)
        if row is None:
            return None
        record = _to_record(row)
        await self.session.delete(row)
        self._touch()
        await self.session.flush()
        return record

    async def mark_primary(self, agent_id: UUID) -> AssignmentRecord:
        row = await self._row(agent_id)
        if row is None:
            raise LookupError(f"No assignment row for agent '{agent_id}'")
        row.is_primary = True
        self._touch()
        await self.session.flush()
        return _to_record(row)


class SqlAssignmentStore:
    """Assignment store backed by PostgreSQL.

    Each scope is its own transaction and starts by locking the conversation
    row with SELECT ... FOR UPDATE, so writers on one conversation queue up
    behind each other. The partial unique index on primary rows is a second
    line of defence; hitting it surfaces as a retryable conflict. Other
    integrity errors propagate unchanged.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def get_conversation(
        self, organization_id: UUID, conversation_id: UUID
    ) -> ConversationRecord | None:
        async with self._session("get_conversation") as session:
            return await ConversationRepository(session).get_conversation(
                organization_id, conversation_id
            )

    @asynccontextmanager
    async def conversation_scope(
        self,
        organization_id: UUID,
        conversation_id: UUID,
    ) -> AsyncIterator[SqlAssignmentScope]:
        async with self._session("conversation_scope") as session:
            try:
                async with session.begin():
                    stmt = (
                        select(Conversation)
                        .where(
                            Conversation.id == conversation_id,
                            Conversation.organization_id == organization_id,
                        )
                        .with_for_update()
                    )
                    result = await session.execute(stmt)
                    conversation = result.scalar_one_or_none()
                    if conversation is None:
                        raise ConversationNotFoundError(conversation_id)
                    yield SqlAssignmentScope(session, conversation)
            except IntegrityError as exc:
                if not _is_assignment_race(exc):
                    raise
                logger.info(
                    "Assignment write on conversation %s lost a race: %s",
                    conversation_id,
                    exc.orig,
                )
                raise ConcurrentAssignmentError(conversation_id) from exc
            except DBAPIError as exc:
                if _sqlstate(exc) in RETRYABLE_SQLSTATES:
                    raise ConcurrentAssignmentError(conversation_id) from exc
                raise

    async def list_for_conversation(
        self,
        organization_id: UUID,
        conversation_id: UUID,
    ) -> list[ConversationAgent]:
        stmt = (
            select(ConversationAgentRow, Agent)
            .join(Agent, Agent.id == ConversationAgentRow.agent_id)
            .options(selectinload(Agent.memberships))
            .where(
                ConversationAgentRow.conversation_id == conversation_id,
                Agent.organization_id == organization_id,
            )
            .order_by(
                ConversationAgentRow.is_primary.desc(),
                ConversationAgentRow.assigned_at.asc(),
            )
        )
        async with self._session("list_for_conversation") as session:
            result = await session.execute(stmt)
            return [
                ConversationAgent(
                    agent=to_agent_profile(agent),
                    is_primary=row.is_primary,
                    assigned_at=row.assigned_at,
                )
                for row, agent in result.all()
            ]

    async def count_open_by_agent(
        self,
        organization_id: UUID,
        agent_ids: Sequence[UUID],
    ) -> dict[UUID, int]:
        async with self._session("count_open_by_agent") as session:
            return await count_open_by_agent(session, organization_id, agent_ids)

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                yield session
        except (PoolTimeoutError, InterfaceError) as exc:
            raise StoreUnavailableError(operation) from exc
        except OperationalError as exc:
            if _sqlstate(exc) in RETRYABLE_SQLSTATES:
                raise
            raise StoreUnavailableError(operation) from exc
