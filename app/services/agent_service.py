from uuid import UUID

from app.domain.entities import AgentConversationSummary, AgentProfile
from app.domain.enums import AgentAvailability
from app.domain.ports import AgentDirectory, QueueReader
from app.services.bounded import bounded
from app.services.errors import AgentNotFoundError
from app.services.notifier import ChangeNotifier


class AgentService:
    def __init__(
        self,
        directory: AgentDirectory,
        conversations: QueueReader,
        notifier: ChangeNotifier | None = None,
        store_timeout_seconds: float = 5.0,
    ) -> None:
        self.directory = directory
        self.conversations = conversations
        self.notifier = notifier or ChangeNotifier()
        self.store_timeout_seconds = store_timeout_seconds

    async def get_agent(self, organization_id: UUID, agent_id: UUID) -> AgentProfile:
        agent = await bounded(
            "get_agent",
            self.directory.get_agent(organization_id, agent_id),
            self.store_timeout_seconds,
        )
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent

    async def set_availability(
        self,
        organization_id: UUID,
        agent_id: UUID,
        availability: AgentAvailability,
    ) -> AgentProfile:
        # Only future auto-assignments are affected; existing ownership stays.
        agent = await bounded(
            "set_availability",
            self.directory.set_availability(organization_id, agent_id, availability),
            self.store_timeout_seconds,
        )
        if agent is None:
            raise AgentNotFoundError(agent_id)
        await self.notifier.availability_changed(agent)
        return agent

    async def conversations_for(
        self,
        organization_id: UUID,
        agent_id: UUID,
    ) -> list[AgentConversationSummary]:
        await self.get_agent(organization_id, agent_id)
        return await bounded(
            "list_for_agent",
            self.conversations.list_for_agent(organization_id, agent_id),
            self.store_timeout_seconds,
        )
