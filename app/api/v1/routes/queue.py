from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps import get_actor, get_assignment_engine, get_queue_service
from app.core.config import get_settings
from app.core.security import ActorClaims
from app.domain.entities import AssignmentRecord
from app.schemas.queue import (
    AssignAgentRequest,
    AssignmentResponse,
    AutoAssignRequest,
    AutoAssignResponse,
    ConversationAgentListResponse,
    ConversationAgentResponse,
    ConversationCreatedEvent,
    QueueEntryResponse,
    QueueListResponse,
    QueueStatsResponse,
    SetPrimaryRequest,
    UnassignResponse,
)
from app.services.assignment_engine import AssignmentEngine
from app.services.errors import (
    AgentNotFoundError,
    AssignmentConflictError,
    AssignmentNotFoundError,
    ConversationNotFoundError,
    StoreUnavailableError,
)
from app.services.queue_service import QueueService

router = APIRouter()
settings = get_settings()

SERVICE_ERRORS = (
    AgentNotFoundError,
    AssignmentNotFoundError,
    ConversationNotFoundError,
    AssignmentConflictError,
    StoreUnavailableError,
)


def _to_assignment_response(assignment: AssignmentRecord) -> AssignmentResponse:
    return AssignmentResponse.model_validate(assignment)


def _raise_for_service_error(exc: Exception) -> None:
    if isinstance(exc, (AgentNotFoundError, ConversationNotFoundError, AssignmentNotFoundError)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, AssignmentConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, StoreUnavailableError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
            headers={"Retry-After": "1"},
        ) from exc
    raise exc


@router.get("", response_model=QueueListResponse)
async def get_queue(
    channel_id: UUID | None = Query(default=None),
    limit: int = Query(
        default=settings.routing_queue_default_limit,
        ge=1,
        le=settings.routing_queue_max_limit,
    ),
    service: QueueService = Depends(get_queue_service),
    actor: ActorClaims = Depends(get_actor),
) -> QueueListResponse:
    try:
        entries = await service.list_unassigned(actor.organization_id, channel_id, limit)
    except SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return QueueListResponse(
        items=[QueueEntryResponse.model_validate(entry) for entry in entries]
    )


@router.get("/stats", response_model=QueueStatsResponse)
async def get_queue_stats(
    service: QueueService = Depends(get_queue_service),
    actor: ActorClaims = Depends(get_actor),
) -> QueueStatsResponse:
    try:
        stats = await service.stats(actor.organization_id)
    except SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return QueueStatsResponse.model_validate(stats)


@router.get("/next", response_model=QueueEntryResponse | None)
async def get_next_conversation(
    channel_id: UUID | None = Query(default=None),
    service: QueueService = Depends(get_queue_service),
    actor: ActorClaims = Depends(get_actor),
) -> QueueEntryResponse | None:
    try:
        entry = await service.next_conversation(actor.organization_id, channel_id)
    except SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return QueueEntryResponse.model_validate(entry) if entry is not None else None


@router.post("/take/{conversation_id}", response_model=AssignmentResponse)
async def take_conversation(
    conversation_id: UUID,
    engine: AssignmentEngine = Depends(get_assignment_engine),
    actor: ActorClaims = Depends(get_actor),
) -> AssignmentResponse:
    try:
        assignment = await engine.take(
            actor.organization_id, conversation_id, actor.actor_id
        )
    except SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return _to_assignment_response(assignment)


@router.post("/assign", response_model=AssignmentResponse)
async def assign_agent(
    payload: AssignAgentRequest,
    engine: AssignmentEngine = Depends(get_assignment_engine),
    actor: ActorClaims = Depends(get_actor),
) -> AssignmentResponse:
    try:
        assignment = await engine.assign(
            actor.organization_id,
            payload.conversation_id,
            payload.agent_id,
            is_primary=payload.is_primary,
            assigned_by_id=actor.actor_id,
        )
    except SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return _to_assignment_response(assignment)


@router.delete("/assign/{conversation_id}/{agent_id}", response_model=UnassignResponse)
async def unassign_agent(
    conversation_id: UUID,
    agent_id: UUID,
    engine: AssignmentEngine = Depends(get_assignment_engine),
    actor: ActorClaims = Depends(get_actor),
) -> UnassignResponse:
    try:
        await engine.unassign(actor.organization_id, conversation_id, agent_id)
    except SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return UnassignResponse(
        conversation_id=conversation_id,
        agent_id=agent_id,
        detail="Agent unassigned",
        timestamp=datetime.now(UTC),
    )


@router.put("/primary", response_model=AssignmentResponse)
async def set_primary_agent(
    payload: SetPrimaryRequest,
    engine: AssignmentEngine = Depends(get_assignment_engine),
    actor: ActorClaims = Depends(get_actor),
) -> AssignmentResponse:
    try:
        assignment = await engine.set_primary(
            actor.organization_id, payload.conversation_id, payload.agent_id
        )
    except SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return _to_assignment_response(assignment)


@router.post("/auto-assign/{conversation_id}", response_model=AutoAssignResponse)
async def auto_assign_conversation(
    conversation_id: UUID,
    payload: AutoAssignRequest | None = None,
    engine: AssignmentEngine = Depends(get_assignment_engine),
    actor: ActorClaims = Depends(get_actor),
) -> AutoAssignResponse:
    payload = payload or AutoAssignRequest()
    try:
        assignment = await engine.auto_assign(
            actor.organization_id,
            conversation_id,
            payload.channel_id,
            payload.mode or settings.routing_default_mode,
        )
    except SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)

    if assignment is None:
        return AutoAssignResponse(
            assignment=None,
            detail="No available agents for auto-assignment",
        )
    return AutoAssignResponse(assignment=_to_assignment_response(assignment))


@router.get("/agents/{conversation_id}", response_model=ConversationAgentListResponse)
async def get_conversation_agents(
    conversation_id: UUID,
    engine: AssignmentEngine = Depends(get_assignment_engine),
    actor: ActorClaims = Depends(get_actor),
) -> ConversationAgentListResponse:
    try:
        agents = await engine.agents_for(actor.organization_id, conversation_id)
    except SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return ConversationAgentListResponse(
        items=[ConversationAgentResponse.model_validate(item) for item in agents]
    )


@router.post("/events/conversation-created", response_model=AutoAssignResponse)
async def conversation_created(
    payload: ConversationCreatedEvent,
    engine: AssignmentEngine = Depends(get_assignment_engine),
    actor: ActorClaims = Depends(get_actor),
) -> AutoAssignResponse:
    try:
        assignment = await engine.handle_conversation_created(
            actor.organization_id, payload.conversation_id, payload.channel_id
        )
    except SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)

    if assignment is None:
        return AutoAssignResponse(assignment=None, detail="Conversation queued")
    return AutoAssignResponse(assignment=_to_assignment_response(assignment))
