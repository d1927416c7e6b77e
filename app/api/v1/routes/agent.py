from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_actor, get_agent_service
from app.core.security import ActorClaims
from app.domain.entities import AgentProfile
from app.schemas.agent import (
    AgentConversationListResponse,
    AgentConversationResponse,
    AgentResponse,
    SetAvailabilityRequest,
)
from app.services.agent_service import AgentService
from app.services.errors import AgentNotFoundError, StoreUnavailableError

router = APIRouter()

SERVICE_ERRORS = (AgentNotFoundError, StoreUnavailableError)


def _to_agent_response(agent: AgentProfile) -> AgentResponse:
    return AgentResponse.model_validate(agent)


def _raise_for_service_error(exc: Exception) -> None:
    if isinstance(exc, AgentNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, StoreUnavailableError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
            headers={"Retry-After": "1"},
        ) from exc
    raise exc


@router.get("/me", response_model=AgentResponse)
async def get_agent_profile(
    service: AgentService = Depends(get_agent_service),
    actor: ActorClaims = Depends(get_actor),
) -> AgentResponse:
    try:
        agent = await service.get_agent(actor.organization_id, actor.actor_id)
    except SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return _to_agent_response(agent)


@router.post("/availability", response_model=AgentResponse)
async def set_agent_availability(
    payload: SetAvailabilityRequest,
    service: AgentService = Depends(get_agent_service),
    actor: ActorClaims = Depends(get_actor),
) -> AgentResponse:
    try:
        agent = await service.set_availability(
            actor.organization_id, actor.actor_id, payload.availability
        )
    except SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return _to_agent_response(agent)


@router.get("/conversations", response_model=AgentConversationListResponse)
async def list_agent_conversations(
    service: AgentService = Depends(get_agent_service),
    actor: ActorClaims = Depends(get_actor),
) -> AgentConversationListResponse:
    try:
        conversations = await service.conversations_for(
            actor.organization_id, actor.actor_id
        )
    except SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return AgentConversationListResponse(
        items=[
            AgentConversationResponse.model_validate(conversation)
            for conversation in conversations
        ]
    )
