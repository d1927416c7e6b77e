from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from uuid import UUID

from app.domain.entities import AgentProfile
from app.domain.enums import AgentAvailability, AssignmentMode


@dataclass(frozen=True, slots=True)
class AgentWorkload:
    agent_id: UUID
    is_active: bool
    availability: AgentAvailability
    team_ids: frozenset[UUID]
    open_conversations: int

    @property
    def is_eligible(self) -> bool:
        return self.is_active and self.availability == AgentAvailability.ONLINE


@dataclass(frozen=True, slots=True)
class WorkloadSnapshot:
    """Point-in-time view of an organization used to pick an agent.

    ``channel_team_ids`` holds the teams mapped to the conversation's channel
    and is empty when no channel was given or no team covers it.
    """

    organization_id: UUID
    agents: tuple[AgentWorkload, ...]
    channel_team_ids: frozenset[UUID] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        organization_id: UUID,
        agents: Iterable[AgentProfile],
        open_counts: Mapping[UUID, int],
        channel_team_ids: frozenset[UUID] = frozenset(),
    ) -> "WorkloadSnapshot":
        return cls(
            organization_id=organization_id,
            agents=tuple(
                AgentWorkload(
                    agent_id=agent.id,
                    is_active=agent.is_active,
                    availability=agent.availability,
                    team_ids=agent.team_ids,
                    open_conversations=open_counts.get(agent.id, 0),
                )
                for agent in agents
            ),
            channel_team_ids=channel_team_ids,
        )


class AgentSelector:
    """Picks one agent for a conversation according to the assignment mode.

    ROUND_ROBIN has no rotation cursor and behaves exactly like LOAD_BALANCED.
    The result is advisory: two concurrent selections may return the same
    agent, the assignment engine decides who actually gets the conversation.
    """

    @classmethod
    def select(cls, snapshot: WorkloadSnapshot, mode: AssignmentMode) -> UUID | None:
        if mode == AssignmentMode.MANUAL:
            return None
        if mode in (AssignmentMode.ROUND_ROBIN, AssignmentMode.LOAD_BALANCED):
            return cls._least_loaded(cls._channel_pool(snapshot))
        if mode == AssignmentMode.TEAM_BASED:
            team_pool = cls._team_pool(snapshot)
            if team_pool:
                return cls._least_loaded(team_pool)
            return cls._least_loaded(cls._eligible(snapshot.agents))
        raise ValueError(f"Unsupported assignment mode '{mode}'.")

    @staticmethod
    def _eligible(agents: Iterable[AgentWorkload]) -> list[AgentWorkload]:
        return [agent for agent in agents if agent.is_eligible]

    @classmethod
    def _team_pool(cls, snapshot: WorkloadSnapshot) -> list[AgentWorkload]:
        if not snapshot.channel_team_ids:
            return []
        return [
            agent
            for agent in cls._eligible(snapshot.agents)
            if agent.team_ids & snapshot.channel_team_ids
        ]

    @classmethod
    def _channel_pool(cls, snapshot: WorkloadSnapshot) -> list[AgentWorkload]:
        # A channel covered by teams restricts the pool even when nobody on
        # those teams is online.
        if snapshot.channel_team_ids:
            return cls._team_pool(snapshot)
        return cls._eligible(snapshot.agents)

    @staticmethod
    def _least_loaded(pool: list[AgentWorkload]) -> UUID | None:
        if not pool:
            return None
        chosen = min(pool, key=lambda agent: (agent.open_conversations, agent.agent_id))
        return chosen.agent_id
