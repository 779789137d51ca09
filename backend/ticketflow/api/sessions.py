"""
Ticketflow - Agent Sessions API
===============================

Session lifecycle and event log endpoints for unattended agent runs.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from ticketflow.api.deps import EventLog, SessionManager
from ticketflow.core.schemas import (
    EventCreate,
    EventListResponse,
    EventResponse,
    EventsClearedResponse,
    SessionComplete,
    SessionCreate,
    SessionCompleteResponse,
    SessionCreateResponse,
    SessionListResponse,
    SessionResponse,
    SessionStateUpdate,
    SessionUpdateResponse,
)

router = APIRouter(tags=["Agent Sessions"])


# ==========================================================================
# Session Lifecycle
# ==========================================================================

@router.post(
    "/sessions",
    response_model=SessionCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create session",
    responses={409: {"description": "Ticket already has an active session"}},
)
async def create_session(data: SessionCreate, manager: SessionManager) -> SessionCreateResponse:
    result = await manager.create_session(data.ticket_id)
    return SessionCreateResponse.model_validate(result)


@router.get("/sessions", response_model=SessionResponse, summary="Get session")
async def get_session(
    manager: SessionManager,
    session_id: Optional[UUID] = Query(None),
    ticket_id: Optional[UUID] = Query(None, description="Latest session of this ticket"),
) -> SessionResponse:
    """Exactly one of `session_id` / `ticket_id` must be given."""
    session = await manager.get_session(session_id=session_id, ticket_id=ticket_id)
    return SessionResponse.model_validate(session)


@router.post(
    "/sessions/{session_id}/state",
    response_model=SessionUpdateResponse,
    summary="Transition session state",
    responses={409: {"description": "Session completed or transition not allowed"}},
)
async def update_session_state(
    session_id: UUID,
    data: SessionStateUpdate,
    manager: SessionManager,
) -> SessionUpdateResponse:
    result = await manager.update_state(session_id, data.state, data.metadata)
    return SessionUpdateResponse.model_validate(result)


@router.post(
    "/sessions/{session_id}/complete",
    response_model=SessionCompleteResponse,
    summary="Complete session",
    responses={409: {"description": "Session already completed"}},
)
async def complete_session(
    session_id: UUID,
    data: SessionComplete,
    manager: SessionManager,
) -> SessionCompleteResponse:
    result = await manager.complete_session(session_id, data.outcome, data.error_message)
    return SessionCompleteResponse.model_validate(result)


@router.get(
    "/tickets/{ticket_id}/sessions",
    response_model=SessionListResponse,
    summary="List ticket sessions",
)
async def list_sessions(
    ticket_id: UUID,
    manager: SessionManager,
    limit: int = Query(10, ge=1, le=100),
) -> SessionListResponse:
    return SessionListResponse.model_validate(await manager.list_sessions(ticket_id, limit))


# ==========================================================================
# Events
# ==========================================================================

@router.post(
    "/sessions/{session_id}/events",
    response_model=EventResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Emit event",
)
async def emit_event(session_id: UUID, data: EventCreate, events: EventLog) -> EventResponse:
    return EventResponse.model_validate(await events.emit(session_id, data.type, data.data))


@router.get("/sessions/{session_id}/events", response_model=EventListResponse, summary="Get events")
async def get_events(
    session_id: UUID,
    events: EventLog,
    since: Optional[datetime] = Query(None, description="Only events strictly after this time"),
    limit: int = Query(50, ge=1, le=500),
) -> EventListResponse:
    items = await events.get_events(session_id, since=since, limit=limit)
    return EventListResponse(
        session_id=session_id,
        events=[EventResponse.model_validate(e) for e in items],
        count=len(items),
    )


@router.delete(
    "/sessions/{session_id}/events",
    response_model=EventsClearedResponse,
    summary="Clear events",
)
async def clear_events(session_id: UUID, events: EventLog) -> EventsClearedResponse:
    deleted = await events.clear_events(session_id)
    return EventsClearedResponse(session_id=session_id, deleted=deleted)
