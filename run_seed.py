import asyncio

from app.core.config import get_settings
from app.core.db import close_engine, create_schema, get_session_factory, init_engine
from app.core.security import create_actor_token
from app.infra.db.seed import (
    DEMO_ORGANIZATION_ID,
    seed_demo_agents,
    seed_demo_conversations,
    seed_demo_teams,
)


async def main() -> None:
    settings = get_settings()
    engine = init_engine()
    try:
        if settings.db_auto_create:
            await create_schema(engine)

        session_factory = get_session_factory()
        async with session_factory() as session:
            teams = await seed_demo_teams(session)
            agents = await seed_demo_agents(session, teams)
            await seed_demo_conversations(session)
            await session.commit()

        for agent in agents:
            token, _ = create_actor_token(
                organization_id=DEMO_ORGANIZATION_ID,
                actor_id=agent.id,
                secret=settings.actor_auth_secret,
                ttl_minutes=settings.actor_auth_token_ttl_minutes,
            )
            print(f"{agent.display_name}: {token}")
    finally:
        await close_engine(engine)


if __name__ == "__main__":
    asyncio.run(main())
