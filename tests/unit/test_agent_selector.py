from uuid import UUID, uuid4

import pytest

from app.domain.enums import AgentAvailability, AssignmentMode
from app.domain.selector import AgentSelector, AgentWorkload, WorkloadSnapshot

ORG_ID = UUID("00000000-0000-0000-0000-0000000000aa")
AGENT_A = UUID("00000000-0000-0000-0000-000000000001")
AGENT_B = UUID("00000000-0000-0000-0000-000000000002")
AGENT_C = UUID("00000000-0000-0000-0000-000000000003")


def workload(
    agent_id: UUID,
    open_conversations: int,
    availability: AgentAvailability = AgentAvailability.ONLINE,
    is_active: bool = True,
    team_ids: frozenset[UUID] = frozenset(),
) -> AgentWorkload:
    return AgentWorkload(
        agent_id=agent_id,
        is_active=is_active,
        availability=availability,
        team_ids=team_ids,
        open_conversations=open_conversations,
    )


def snapshot(*agents: AgentWorkload, channel_team_ids=frozenset()) -> WorkloadSnapshot:
    return WorkloadSnapshot(
        organization_id=ORG_ID,
        agents=tuple(agents),
        channel_team_ids=frozenset(channel_team_ids),
    )


def test_load_balanced_picks_least_loaded_online_agent() -> None:
    state = snapshot(workload(AGENT_A, 0), workload(AGENT_B, 3), workload(AGENT_C, 1))

    assert AgentSelector.select(state, AssignmentMode.LOAD_BALANCED) == AGENT_A


def test_round_robin_behaves_like_load_balanced() -> None:
    state = snapshot(workload(AGENT_A, 4), workload(AGENT_B, 2), workload(AGENT_C, 5))

    assert AgentSelector.select(state, AssignmentMode.ROUND_ROBIN) == AGENT_B
    assert AgentSelector.select(state, AssignmentMode.ROUND_ROBIN) == AgentSelector.select(
        state, AssignmentMode.LOAD_BALANCED
    )


def test_manual_mode_never_selects() -> None:
    state = snapshot(workload(AGENT_A, 0))

    assert AgentSelector.select(state, AssignmentMode.MANUAL) is None


def test_ties_break_on_agent_id() -> None:
    state = snapshot(workload(AGENT_C, 1), workload(AGENT_B, 1), workload(AGENT_A, 2))

    assert AgentSelector.select(state, AssignmentMode.LOAD_BALANCED) == AGENT_B


@pytest.mark.parametrize(
    "availability",
    [AgentAvailability.AWAY, AgentAvailability.BUSY, AgentAvailability.OFFLINE],
)
def test_only_online_agents_are_eligible(availability: AgentAvailability) -> None:
    state = snapshot(
        workload(AGENT_A, 0, availability=availability),
        workload(AGENT_B, 7),
    )

    assert AgentSelector.select(state, AssignmentMode.LOAD_BALANCED) == AGENT_B


def test_inactive_agents_are_skipped() -> None:
    state = snapshot(workload(AGENT_A, 0, is_active=False), workload(AGENT_B, 2))

    assert AgentSelector.select(state, AssignmentMode.LOAD_BALANCED) == AGENT_B


def test_no_eligible_agent_returns_none() -> None:
    state = snapshot(workload(AGENT_A, 0, availability=AgentAvailability.OFFLINE))

    for mode in AssignmentMode:
        assert AgentSelector.select(state, mode) is None


def test_team_based_prefers_channel_team_members() -> None:
    team = uuid4()
    state = snapshot(
        workload(AGENT_A, 0),
        workload(AGENT_B, 5, team_ids=frozenset({team})),
        workload(AGENT_C, 2, team_ids=frozenset({team})),
        channel_team_ids={team},
    )

    assert AgentSelector.select(state, AssignmentMode.TEAM_BASED) == AGENT_C


def test_team_based_falls_back_to_whole_organization() -> None:
    team = uuid4()
    state = snapshot(
        workload(AGENT_A, 3),
        workload(AGENT_B, 0, availability=AgentAvailability.AWAY, team_ids=frozenset({team})),
        workload(AGENT_C, 1),
        channel_team_ids={team},
    )

    assert AgentSelector.select(state, AssignmentMode.TEAM_BASED) == AGENT_C


def test_team_based_without_channel_teams_uses_organization() -> None:
    state = snapshot(workload(AGENT_A, 2), workload(AGENT_B, 1))

    assert AgentSelector.select(state, AssignmentMode.TEAM_BASED) == AGENT_B


def test_load_balanced_is_restricted_to_channel_teams() -> None:
    team = uuid4()
    state = snapshot(
        workload(AGENT_A, 0),
        workload(AGENT_B, 4, team_ids=frozenset({team})),
        channel_team_ids={team},
    )

    assert AgentSelector.select(state, AssignmentMode.LOAD_BALANCED) == AGENT_B


def test_load_balanced_does_not_leave_channel_teams_when_they_are_offline() -> None:
    team = uuid4()
    state = snapshot(
        workload(AGENT_A, 0),
        workload(
            AGENT_B, 0, availability=AgentAvailability.OFFLINE, team_ids=frozenset({team})
        ),
        channel_team_ids={team},
    )

    assert AgentSelector.select(state, AssignmentMode.LOAD_BALANCED) is None


def test_build_defaults_missing_counts_to_zero(database, organization_id) -> None:
    first = database.add_agent(organization_id, "First")
    second = database.add_agent(organization_id, "Second")

    state = WorkloadSnapshot.build(organization_id, [first, second], {first.id: 2})

    counts = {agent.agent_id: agent.open_conversations for agent in state.agents}
    assert counts == {first.id: 2, second.id: 0}
    assert AgentSelector.select(state, AssignmentMode.LOAD_BALANCED) == second.id
