import math
from datetime import UTC, datetime
from uuid import UUID

from app.domain.entities import ConversationRecord, QueueEntry, QueueStats
from app.domain.enums import AgentAvailability
from app.domain.ports import AgentDirectory, QueueReader
from app.services.bounded import bounded


class QueueService:
    """Read model over the unassigned pool. Never mutates state."""

    def __init__(
        self,
        conversations: QueueReader,
        directory: AgentDirectory,
        max_limit: int = 200,
        store_timeout_seconds: float = 5.0,
    ) -> None:
        self.conversations = conversations
        self.directory = directory
        self.max_limit = max_limit
        self.store_timeout_seconds = store_timeout_seconds

    async def list_unassigned(
        self,
        organization_id: UUID,
        channel_id: UUID | None = None,
        limit: int = 50,
    ) -> list[QueueEntry]:
        clamped_limit = max(0, min(limit, self.max_limit))
        if clamped_limit == 0:
            return []

        records = await bounded(
            "list_unassigned",
            self.conversations.list_unassigned(organization_id, channel_id, clamped_limit),
            self.store_timeout_seconds,
        )
        # Priority desc, then strict FIFO, then id; applied here as well so
        # every reader yields the same order regardless of backend collation.
        ordered = sorted(
            records,
            key=lambda record: (-record.priority.rank, record.created_at, record.id),
        )
        now = datetime.now(UTC)
        return [self._to_entry(record, now) for record in ordered[:clamped_limit]]

    async def next_conversation(
        self,
        organization_id: UUID,
        channel_id: UUID | None = None,
    ) -> QueueEntry | None:
        queue = await self.list_unassigned(organization_id, channel_id, limit=1)
        return queue[0] if queue else None

    async def stats(self, organization_id: UUID) -> QueueStats:
        now = datetime.now(UTC)
        waiting = await bounded(
            "count_unassigned",
            self.conversations.count_unassigned(organization_id),
            self.store_timeout_seconds,
        )
        oldest_created_at = await bounded(
            "oldest_unassigned_created_at",
            self.conversations.oldest_unassigned_created_at(organization_id),
            self.store_timeout_seconds,
        )
        agents = await bounded(
            "list_agents",
            self.directory.list_agents(organization_id),
            self.store_timeout_seconds,
        )
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        handled_today = await bounded(
            "count_handled_since",
            self.conversations.count_handled_since(organization_id, start_of_day),
            self.store_timeout_seconds,
        )

        # Oldest wait spread over the waiting count, not a per-item mean.
        avg_wait_seconds = 0
        if oldest_created_at is not None and waiting > 0:
            total_wait = (now - oldest_created_at).total_seconds()
            avg_wait_seconds = max(0, math.floor(total_wait / waiting))

        active_agents = [agent for agent in agents if agent.is_active]
        return QueueStats(
            waiting=waiting,
            avg_wait_seconds=avg_wait_seconds,
            online_agents=sum(
                1
                for agent in active_agents
                if agent.availability == AgentAvailability.ONLINE
            ),
            total_agents=len(active_agents),
            handled_today=handled_today,
        )

    @staticmethod
    def _to_entry(record: ConversationRecord, now: datetime) -> QueueEntry:
        return QueueEntry(
            id=record.id,
            channel_id=record.channel_id,
            priority=record.priority,
            status=record.status,
            unread_count=record.unread_count,
            created_at=record.created_at,
            last_message_at=record.last_message_at,
            waiting_seconds=max(0, math.floor((now - record.created_at).total_seconds())),
        )
