import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar
from uuid import UUID

from app.core.retry import BackoffPolicy
from app.domain.entities import AssignmentRecord, ConversationAgent, ConversationRecord
from app.domain.enums import AssignmentAction, AssignmentMode, QueueAction
from app.domain.ports import AgentDirectory, AssignmentScope, AssignmentStore, TeamChannelMap
from app.domain.selector import AgentSelector, WorkloadSnapshot
from app.services.bounded import bounded
from app.services.errors import (
    AgentNotFoundError,
    AssignmentConflictError,
    AssignmentNotFoundError,
    ConcurrentAssignmentError,
    ConversationNotFoundError,
    StoreUnavailableError,
)
from app.services.notifier import ChangeNotifier

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AssignmentEngine:
    """Claims, releases and promotes conversation owners.

    Every read-modify-write sequence on a conversation's assignment rows runs
    inside a single store scope, which holds the conversation lock until it
    commits. Events are published only after that scope has committed.
    """

    def __init__(
        self,
        store: AssignmentStore,
        directory: AgentDirectory,
        teams: TeamChannelMap,
        notifier: ChangeNotifier | None = None,
        selector: type[AgentSelector] = AgentSelector,
        backoff: BackoffPolicy | None = None,
        store_timeout_seconds: float = 5.0,
        auto_assign_mode: AssignmentMode | None = None,
    ) -> None:
        self.store = store
        self.directory = directory
        self.teams = teams
        self.notifier = notifier or ChangeNotifier()
        self.selector = selector
        self.backoff = backoff or BackoffPolicy()
        self.store_timeout_seconds = store_timeout_seconds
        self.auto_assign_mode = auto_assign_mode

    async def assign(
        self,
        organization_id: UUID,
        conversation_id: UUID,
        agent_id: UUID,
        is_primary: bool = False,
        assigned_by_id: UUID | None = None,
    ) -> AssignmentRecord:
        await self._require_agent(organization_id, agent_id)
        if assigned_by_id is not None and assigned_by_id != agent_id:
            await self._require_agent(organization_id, assigned_by_id)

        async def work(scope: AssignmentScope) -> tuple[AssignmentRecord, bool]:
            return await self._upsert_assignment(
                scope, agent_id, is_primary, assigned_by_id, exclusive=False
            )

        assignment, changed = await self._run_atomic(
            organization_id, conversation_id, "assign", work
        )
        if not changed:
            return assignment
        logger.info(
            "Assigned agent %s to conversation %s (primary=%s)",
            agent_id,
            conversation_id,
            assignment.is_primary,
        )
        await self.notifier.assignment_changed(
            organization_id,
            conversation_id,
            AssignmentAction.ASSIGNED,
            agent_id,
            assignment=assignment,
        )
        return assignment

    async def take(
        self,
        organization_id: UUID,
        conversation_id: UUID,
        agent_id: UUID,
    ) -> AssignmentRecord:
        await self._require_agent(organization_id, agent_id)

        async def work(scope: AssignmentScope) -> tuple[AssignmentRecord, bool]:
            return await self._upsert_assignment(
                scope, agent_id, True, agent_id, exclusive=True
            )

        assignment, changed = await self._run_atomic(
            organization_id, conversation_id, "take", work
        )
        if changed:
            logger.info("Agent %s took conversation %s", agent_id, conversation_id)
            await self.notifier.assignment_changed(
                organization_id,
                conversation_id,
                AssignmentAction.ASSIGNED,
                agent_id,
                assignment=assignment,
            )
        return assignment

    async def unassign(
        self,
        organization_id: UUID,
        conversation_id: UUID,
        agent_id: UUID,
    ) -> None:
        async def work(
            scope: AssignmentScope,
        ) -> tuple[AssignmentRecord | None, AssignmentRecord | None]:
            removed = await scope.delete(agent_id)
            if removed is None or not removed.is_primary:
                return removed, None

            remaining = await scope.rows()
            if not remaining:
                return removed, None
            successor = min(remaining, key=lambda row: (row.assigned_at, row.agent_id))
            return removed, await scope.mark_primary(successor.agent_id)

        removed, promoted = await self._run_atomic(
            organization_id, conversation_id, "unassign", work
        )
        if removed is None:
            logger.debug(
                "Agent %s was not assigned to conversation %s", agent_id, conversation_id
            )
            return

        if promoted is not None:
            logger.info(
                "Promoted agent %s on conversation %s after removing %s",
                promoted.agent_id,
                conversation_id,
                agent_id,
            )
        await self.notifier.assignment_changed(
            organization_id,
            conversation_id,
            AssignmentAction.UNASSIGNED,
            agent_id,
            promoted=promoted,
        )

    async def set_primary(
        self,
        organization_id: UUID,
        conversation_id: UUID,
        agent_id: UUID,
    ) -> AssignmentRecord:
        async def work(scope: AssignmentScope) -> tuple[AssignmentRecord, bool]:
            rows = await scope.rows()
            target = next((row for row in rows if row.agent_id == agent_id), None)
            if target is None:
                raise AssignmentNotFoundError(conversation_id, agent_id)
            if target.is_primary:
                return target, False
            await scope.demote_primary()
            return await scope.mark_primary(agent_id), True

        assignment, changed = await self._run_atomic(
            organization_id, conversation_id, "set_primary", work
        )
        if changed:
            await self.notifier.assignment_changed(
                organization_id,
                conversation_id,
                AssignmentAction.PRIMARY_CHANGED,
                agent_id,
                assignment=assignment,
            )
        return assignment

    async def auto_assign(
        self,
        organization_id: UUID,
        conversation_id: UUID,
        channel_id: UUID | None = None,
        mode: AssignmentMode = AssignmentMode.LOAD_BALANCED,
    ) -> AssignmentRecord | None:
        if mode == AssignmentMode.MANUAL:
            return None

        conversation = await self._get_conversation(organization_id, conversation_id)
        snapshot = await self.workload_snapshot(
            organization_id, channel_id or conversation.channel_id
        )
        agent_id = self.selector.select(snapshot, mode)
        if agent_id is None:
            logger.info(
                "No eligible agent for conversation %s (mode=%s)",
                conversation_id,
                mode.value,
            )
            return None

        return await self.assign(
            organization_id,
            conversation_id,
            agent_id,
            is_primary=True,
            assigned_by_id=None,
        )

    async def agents_for(
        self,
        organization_id: UUID,
        conversation_id: UUID,
    ) -> list[ConversationAgent]:
        await self._get_conversation(organization_id, conversation_id)
        agents = await self._bounded(
            "agents_for",
            self.store.list_for_conversation(organization_id, conversation_id),
        )
        return sorted(
            agents,
            key=lambda item: (not item.is_primary, item.assigned_at, item.agent.id),
        )

    async def handle_conversation_created(
        self,
        organization_id: UUID,
        conversation_id: UUID,
        channel_id: UUID | None = None,
    ) -> AssignmentRecord | None:
        conversation = await self._get_conversation(organization_id, conversation_id)
        await self.notifier.queue_updated(
            organization_id, conversation_id, QueueAction.ENQUEUED
        )
        if self.auto_assign_mode is None:
            return None
        return await self.auto_assign(
            organization_id,
            conversation_id,
            channel_id or conversation.channel_id,
            self.auto_assign_mode,
        )

    async def workload_snapshot(
        self,
        organization_id: UUID,
        channel_id: UUID | None,
    ) -> WorkloadSnapshot:
        agents = await self._bounded(
            "list_agents", self.directory.list_agents(organization_id)
        )
        channel_team_ids: frozenset[UUID] = frozenset()
        if channel_id is not None:
            channel_team_ids = await self._bounded(
                "team_ids_for_channel",
                self.teams.team_ids_for_channel(organization_id, channel_id),
            )
        eligible_ids = [agent.id for agent in agents if agent.is_active]
        open_counts = await self._bounded(
            "count_open_by_agent",
            self.store.count_open_by_agent(organization_id, eligible_ids),
        )
        return WorkloadSnapshot.build(
            organization_id, agents, open_counts, channel_team_ids
        )

    async def _upsert_assignment(
        self,
        scope: AssignmentScope,
        agent_id: UUID,
        is_primary: bool,
        assigned_by_id: UUID | None,
        exclusive: bool,
    ) -> tuple[AssignmentRecord, bool]:
        rows = await scope.rows()
        current_primary = next((row for row in rows if row.is_primary), None)

        if current_primary is not None and current_primary.agent_id == agent_id:
            # Already the owner; a non-primary assign never demotes the owner.
            return current_primary, False
        if exclusive and current_primary is not None:
            raise AssignmentConflictError(
                scope.conversation.id, current_primary.agent_id
            )

        make_primary = is_primary or current_primary is None
        existing = next((row for row in rows if row.agent_id == agent_id), None)
        if existing is not None and not make_primary:
            return existing, False
        if make_primary and current_primary is not None:
            await scope.demote_primary()
        return await scope.upsert(agent_id, make_primary, assigned_by_id), True

    async def _run_atomic(
        self,
        organization_id: UUID,
        conversation_id: UUID,
        operation: str,
        work: Callable[[AssignmentScope], Awaitable[T]],
    ) -> T:
        attempt = 1
        while True:
            try:
                async with asyncio.timeout(self.store_timeout_seconds):
                    async with self.store.conversation_scope(
                        organization_id, conversation_id
                    ) as scope:
                        return await work(scope)
            except TimeoutError as exc:
                raise StoreUnavailableError(operation, self.store_timeout_seconds) from exc
            except ConcurrentAssignmentError as exc:
                if attempt >= self.backoff.attempts:
                    logger.warning(
                        "Giving up %s on conversation %s after %d attempts",
                        operation,
                        conversation_id,
                        attempt,
                    )
                    raise AssignmentConflictError(conversation_id) from exc
                logger.info(
                    "Retrying %s on conversation %s (attempt %d)",
                    operation,
                    conversation_id,
                    attempt,
                )
                await self.backoff.sleep(attempt)
                attempt += 1

    async def _bounded(self, operation: str, awaitable: Awaitable[T]) -> T:
        return await bounded(operation, awaitable, self.store_timeout_seconds)

    async def _get_conversation(
        self, organization_id: UUID, conversation_id: UUID
    ) -> ConversationRecord:
        conversation = await self._bounded(
            "get_conversation",
            self.store.get_conversation(organization_id, conversation_id),
        )
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def _require_agent(self, organization_id: UUID, agent_id: UUID) -> None:
        agent = await self._bounded(
            "get_agent", self.directory.get_agent(organization_id, agent_id)
        )
        if agent is None:
            raise AgentNotFoundError(agent_id)
