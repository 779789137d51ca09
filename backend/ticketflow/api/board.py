"""
Ticketflow - Board API
======================

Project, ticket, epic and comment endpoints. Deletes are two-step: without
`?confirm=true` they return a preview and change nothing.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from ticketflow.api.deps import DbSession
from ticketflow.core import board
from ticketflow.core.models import TicketStatus
from ticketflow.core.schemas import (
    CommentCreate,
    CommentResponse,
    DeleteResponse,
    EpicCreate,
    EpicResponse,
    EpicUpdate,
    ProjectCreate,
    ProjectResponse,
    TicketCreate,
    TicketResponse,
    TicketStatusUpdate,
)

router = APIRouter(tags=["Board"])


# ==========================================================================
# Projects
# ==========================================================================

@router.post(
    "/projects",
    response_model=ProjectResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a project",
)
async def create_project(data: ProjectCreate, db: DbSession) -> ProjectResponse:
    project = await board.create_project(db, data.name, data.path, data.color)
    return ProjectResponse.model_validate(project)


@router.get("/projects", response_model=list[ProjectResponse], summary="List projects")
async def list_projects(db: DbSession) -> list[ProjectResponse]:
    return [ProjectResponse.model_validate(p) for p in await board.list_projects(db)]


@router.get("/projects/{project_id}", response_model=ProjectResponse, summary="Get project")
async def get_project(project_id: UUID, db: DbSession) -> ProjectResponse:
    return ProjectResponse.model_validate(await board.get_project(db, project_id))


# ==========================================================================
# Tickets
# ==========================================================================

@router.post(
    "/tickets",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create ticket",
)
async def create_ticket(data: TicketCreate, db: DbSession) -> TicketResponse:
    """New tickets are appended to the project's backlog."""
    ticket = await board.create_ticket(
        db,
        project_id=data.project_id,
        title=data.title,
        description=data.description,
        priority=data.priority,
        epic_id=data.epic_id,
    )
    return TicketResponse.model_validate(ticket)


@router.get("/tickets", response_model=list[TicketResponse], summary="List tickets")
async def list_tickets(
    db: DbSession,
    project_id: Optional[UUID] = Query(None, description="Filter by project"),
    status_filter: Optional[TicketStatus] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(20, ge=1, le=100),
) -> list[TicketResponse]:
    tickets = await board.list_tickets(db, project_id=project_id, status=status_filter, limit=limit)
    return [TicketResponse.model_validate(t) for t in tickets]


@router.get("/tickets/{ticket_id}", response_model=TicketResponse, summary="Get ticket")
async def get_ticket(ticket_id: UUID, db: DbSession) -> TicketResponse:
    return TicketResponse.model_validate(await board.get_ticket(db, ticket_id))


@router.patch("/tickets/{ticket_id}/status", response_model=TicketResponse, summary="Move ticket")
async def update_ticket_status(ticket_id: UUID, data: TicketStatusUpdate, db: DbSession) -> TicketResponse:
    ticket = await board.update_ticket_status(db, ticket_id, data.status)
    return TicketResponse.model_validate(ticket)


@router.delete("/tickets/{ticket_id}", response_model=DeleteResponse, summary="Delete ticket")
async def delete_ticket(
    ticket_id: UUID,
    db: DbSession,
    confirm: bool = Query(False, description="Actually delete; otherwise preview"),
) -> DeleteResponse:
    return DeleteResponse.model_validate(await board.delete_ticket(db, ticket_id, confirm=confirm))


# ==========================================================================
# Epics
# ==========================================================================

@router.post(
    "/epics",
    response_model=EpicResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create epic",
)
async def create_epic(data: EpicCreate, db: DbSession) -> EpicResponse:
    epic = await board.create_epic(db, data.project_id, data.title, data.description, data.color)
    return EpicResponse.model_validate(epic)


@router.get("/projects/{project_id}/epics", response_model=list[EpicResponse], summary="List epics")
async def list_epics(project_id: UUID, db: DbSession) -> list[EpicResponse]:
    return [EpicResponse.model_validate(e) for e in await board.list_epics(db, project_id)]


@router.get("/epics/{epic_id}", response_model=EpicResponse, summary="Get epic")
async def get_epic(epic_id: UUID, db: DbSession) -> EpicResponse:
    return EpicResponse.model_validate(await board.get_epic(db, epic_id))


@router.get("/epics/{epic_id}/tickets", response_model=list[TicketResponse], summary="List epic tickets")
async def list_epic_tickets(
    epic_id: UUID,
    db: DbSession,
    status_filter: Optional[TicketStatus] = Query(None, alias="status"),
) -> list[TicketResponse]:
    tickets = await board.list_tickets_by_epic(db, epic_id, status=status_filter)
    return [TicketResponse.model_validate(t) for t in tickets]


@router.patch("/epics/{epic_id}", response_model=EpicResponse, summary="Update epic")
async def update_epic(epic_id: UUID, data: EpicUpdate, db: DbSession) -> EpicResponse:
    epic = await board.update_epic(db, epic_id, data.title, data.description, data.color)
    return EpicResponse.model_validate(epic)


@router.delete("/epics/{epic_id}", response_model=DeleteResponse, summary="Delete epic")
async def delete_epic(
    epic_id: UUID,
    db: DbSession,
    confirm: bool = Query(False, description="Actually delete; otherwise preview"),
) -> DeleteResponse:
    return DeleteResponse.model_validate(await board.delete_epic(db, epic_id, confirm=confirm))


# ==========================================================================
# Comments
# ==========================================================================

@router.post(
    "/tickets/{ticket_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add comment",
)
async def add_comment(ticket_id: UUID, data: CommentCreate, db: DbSession) -> CommentResponse:
    comment = await board.add_comment(db, ticket_id, data.content, data.author, data.type)
    return CommentResponse.model_validate(comment)


@router.get(
    "/tickets/{ticket_id}/comments",
    response_model=list[CommentResponse],
    summary="List comments",
)
async def list_comments(ticket_id: UUID, db: DbSession) -> list[CommentResponse]:
    return [CommentResponse.model_validate(c) for c in await board.list_comments(db, ticket_id)]
