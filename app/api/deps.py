from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.db import get_db_session, get_session_factory
from app.core.retry import BackoffPolicy
from app.core.security import ActorClaims, decode_actor_token
from app.infra.db.assignment_store import SqlAssignmentStore
from app.infra.db.repositories import (
    AgentRepository,
    ConversationRepository,
    TeamRepository,
)
from app.services.agent_service import AgentService
from app.services.assignment_engine import AssignmentEngine
from app.services.notifier import ChangeNotifier
from app.services.queue_service import QueueService

settings = get_settings()
bearer_scheme = HTTPBearer(auto_error=False)


async def get_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> ActorClaims:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization credentials",
        )
    try:
        return decode_actor_token(credentials.credentials, settings.actor_auth_secret)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
        ) from exc


def get_notifier(request: Request) -> ChangeNotifier:
    realtime = getattr(request.app.state, "realtime_hub", None)
    return ChangeNotifier(
        publisher=realtime,
        timeout_seconds=settings.routing_publish_timeout_seconds,
    )


def get_assignment_store() -> SqlAssignmentStore:
    return SqlAssignmentStore(get_session_factory())


async def get_assignment_engine(
    session: AsyncSession = Depends(get_db_session),
    store: SqlAssignmentStore = Depends(get_assignment_store),
    notifier: ChangeNotifier = Depends(get_notifier),
) -> AssignmentEngine:
    return AssignmentEngine(
        store=store,
        directory=AgentRepository(session),
        teams=TeamRepository(session),
        notifier=notifier,
        backoff=BackoffPolicy(
            attempts=settings.routing_retry_attempts,
            base_delay_seconds=settings.routing_retry_base_delay_seconds,
        ),
        store_timeout_seconds=settings.routing_store_timeout_seconds,
        auto_assign_mode=settings.auto_assign_mode,
    )


async def get_queue_service(
    session: AsyncSession = Depends(get_db_session),
) -> QueueService:
    return QueueService(
        conversations=ConversationRepository(session),
        directory=AgentRepository(session),
        max_limit=settings.routing_queue_max_limit,
        store_timeout_seconds=settings.routing_store_timeout_seconds,
    )


async def get_agent_service(
    session: AsyncSession = Depends(get_db_session),
    notifier: ChangeNotifier = Depends(get_notifier),
) -> AgentService:
    return AgentService(
        directory=AgentRepository(session),
        conversations=ConversationRepository(session),
        notifier=notifier,
        store_timeout_seconds=settings.routing_store_timeout_seconds,
    )
