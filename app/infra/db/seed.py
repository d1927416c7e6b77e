from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.enums import AgentAvailability, ConversationStatus, Priority
from app.infra.db.models import Agent, Conversation, Team, TeamChannel, TeamMember

DEMO_ORGANIZATION_ID = UUID("6f1d2c1e-8a51-4d6b-9a3e-1f0b7c2d9e10")
DEMO_WHATSAPP_CHANNEL_ID = UUID("0b3f4a8e-2c7d-4e1f-8a9b-5d6c7e8f9a01")
DEMO_INSTAGRAM_CHANNEL_ID = UUID("1c4e5b9f-3d8e-4f2a-9b0c-6e7d8f9a0b12")

DEMO_AGENTS: list[dict[str, str]] = [
    {"display_name": "Maya Lin", "team": "Sales"},
    {"display_name": "Alex Moreno", "team": "Sales"},
    {"display_name": "Priya Nair", "team": "Support"},
]

DEMO_TEAM_CHANNELS: dict[str, UUID] = {
    "Sales": DEMO_WHATSAPP_CHANNEL_ID,
    "Support": DEMO_INSTAGRAM_CHANNEL_ID,
}

DEMO_CONVERSATIONS: list[tuple[UUID, Priority, int]] = [
    (DEMO_WHATSAPP_CHANNEL_ID, Priority.LOW, 45),
    (DEMO_WHATSAPP_CHANNEL_ID, Priority.URGENT, 30),
    (DEMO_INSTAGRAM_CHANNEL_ID, Priority.NORMAL, 20),
    (DEMO_WHATSAPP_CHANNEL_ID, Priority.URGENT, 5),
]


async def seed_demo_teams(session: AsyncSession) -> dict[str, Team]:
    existing_rows = await session.execute(
        select(Team).where(Team.organization_id == DEMO_ORGANIZATION_ID)
    )
    teams = {team.name: team for team in existing_rows.scalars().all()}

    for name, channel_id in DEMO_TEAM_CHANNELS.items():
        if name in teams:
            continue
        team = Team(organization_id=DEMO_ORGANIZATION_ID, name=name)
        session.add(team)
        await session.flush()
        session.add(TeamChannel(team_id=team.id, channel_id=channel_id))
        teams[name] = team

    await session.flush()
    return teams


async def seed_demo_agents(session: AsyncSession, teams: dict[str, Team]) -> list[Agent]:
    existing_rows = await session.execute(
        select(Agent).where(Agent.organization_id == DEMO_ORGANIZATION_ID)
    )
    agents = {agent.display_name: agent for agent in existing_rows.scalars().all()}

    for item in DEMO_AGENTS:
        display_name = item["display_name"]
        if display_name in agents:
            continue

        agent = Agent(
            organization_id=DEMO_ORGANIZATION_ID,
            display_name=display_name,
            is_active=True,
            availability=AgentAvailability.OFFLINE,
        )
        session.add(agent)
        await session.flush()
        session.add(TeamMember(team_id=teams[item["team"]].id, agent_id=agent.id))
        agents[display_name] = agent

    await session.flush()
    return list(agents.values())


async def seed_demo_conversations(session: AsyncSession) -> None:
    existing_rows = await session.execute(
        select(Conversation.id)
        .where(Conversation.organization_id == DEMO_ORGANIZATION_ID)
        .limit(1)
    )
    if existing_rows.scalar_one_or_none() is not None:
        return

    now = datetime.now(UTC)
    session.add_all(
        [
            Conversation(
                organization_id=DEMO_ORGANIZATION_ID,
                channel_id=channel_id,
                priority=priority,
                status=ConversationStatus.OPEN,
                unread_count=1,
                created_at=now - timedelta(minutes=minutes_ago),
                last_message_at=now - timedelta(minutes=minutes_ago),
            )
            for channel_id, priority, minutes_ago in DEMO_CONVERSATIONS
        ]
    )
    await session.flush()
