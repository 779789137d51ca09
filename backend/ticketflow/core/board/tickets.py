"""
Ticket CRUD
===========

Creation, lookup, status moves and the two-step (preview, then confirm)
delete used by every destructive board operation.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ticketflow.core.errors import EpicNotFoundError, TicketNotFoundError, ValidationError
from ticketflow.core.board.projects import get_project
from ticketflow.core.models import (
    AgentSession,
    DemoScript,
    Epic,
    EpicWorkflowState,
    ReviewFinding,
    SessionEvent,
    Ticket,
    TicketComment,
    TicketPriority,
    TicketStatus,
    TicketWorkflowState,
)

logger = structlog.get_logger()

MAX_LIST_LIMIT = 100


@dataclass
class DeletePreview:
    """What a confirmed delete would remove. Nothing has been changed."""
    resource: str
    id: UUID
    title: str
    counts: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    dry_run: bool = True


@dataclass
class DeleteResult:
    resource: str
    id: UUID
    title: str
    counts: dict[str, int] = field(default_factory=dict)
    dry_run: bool = False


def _parse_status(status: TicketStatus | str) -> TicketStatus:
    try:
        return TicketStatus(status)
    except ValueError as e:
        raise ValidationError(
            f"Invalid status: {status}. "
            f"Must be one of: {', '.join(s.value for s in TicketStatus)}",
            fields=["status"],
        ) from e


async def create_ticket(
    db: AsyncSession,
    project_id: UUID,
    title: str,
    description: Optional[str] = None,
    priority: Optional[TicketPriority | str] = None,
    epic_id: Optional[UUID] = None,
) -> Ticket:
    """New tickets land at the end of the project's backlog."""
    if not title or not title.strip():
        raise ValidationError("Ticket title cannot be empty.", fields=["title"])

    if priority is not None:
        try:
            priority = TicketPriority(priority)
        except ValueError as e:
            raise ValidationError(
                f"Invalid priority: {priority}. Must be one of: low, medium, high",
                fields=["priority"],
            ) from e

    await get_project(db, project_id)

    if epic_id is not None:
        epic = await db.get(Epic, epic_id)
        if epic is None:
            raise EpicNotFoundError(epic_id)
        if epic.project_id != project_id:
            raise ValidationError("Epic belongs to a different project.", fields=["epic_id"])

    result = await db.execute(
        select(func.max(Ticket.position)).where(
            Ticket.project_id == project_id,
            Ticket.status == TicketStatus.BACKLOG,
        )
    )
    max_position = result.scalar_one_or_none() or 0

    ticket = Ticket(
        project_id=project_id,
        epic_id=epic_id,
        title=title.strip(),
        description=description,
        priority=priority,
        status=TicketStatus.BACKLOG,
        position=max_position + 1,
    )
    db.add(ticket)
    await db.commit()
    await db.refresh(ticket)

    logger.info("Ticket created", ticket_id=str(ticket.id), project_id=str(project_id))
    return ticket


async def get_ticket(db: AsyncSession, ticket_id: UUID) -> Ticket:
    ticket = await db.get(Ticket, ticket_id)
    if ticket is None:
        raise TicketNotFoundError(ticket_id)
    return ticket


async def list_tickets(
    db: AsyncSession,
    project_id: Optional[UUID] = None,
    status: Optional[TicketStatus | str] = None,
    limit: int = 20,
) -> list[Ticket]:
    """Newest first, capped at 100."""
    query = select(Ticket)
    if project_id is not None:
        query = query.where(Ticket.project_id == project_id)
    if status is not None:
        query = query.where(Ticket.status == _parse_status(status))

    query = query.order_by(Ticket.created_at.desc(), Ticket.position).limit(
        max(1, min(limit, MAX_LIST_LIMIT))
    )
    result = await db.execute(query)
    return list(result.scalars().all())


async def list_tickets_by_epic(
    db: AsyncSession,
    epic_id: UUID,
    status: Optional[TicketStatus | str] = None,
    limit: int = MAX_LIST_LIMIT,
) -> list[Ticket]:
    if await db.get(Epic, epic_id) is None:
        raise EpicNotFoundError(epic_id)

    query = select(Ticket).where(Ticket.epic_id == epic_id)
    if status is not None:
        query = query.where(Ticket.status == _parse_status(status))

    result = await db.execute(query.order_by(Ticket.position).limit(max(1, min(limit, MAX_LIST_LIMIT))))
    return list(result.scalars().all())


async def update_ticket_status(
    db: AsyncSession,
    ticket_id: UUID,
    status: TicketStatus | str,
) -> Ticket:
    new_status = _parse_status(status)
    ticket = await get_ticket(db, ticket_id)

    previous = ticket.status
    ticket.status = new_status
    if new_status == TicketStatus.DONE:
        ticket.completed_at = datetime.now(timezone.utc)
    else:
        ticket.completed_at = None
    await db.commit()
    await db.refresh(ticket)

    logger.info(
        "Ticket status updated",
        ticket_id=str(ticket_id),
        previous=previous.value,
        status=new_status.value,
    )
    return ticket


async def delete_ticket(
    db: AsyncSession,
    ticket_id: UUID,
    confirm: bool = False,
) -> DeletePreview | DeleteResult:
    """
    Delete a ticket with its comments, sessions, review records and workflow state.

    Without `confirm` nothing is touched and a preview is returned.
    """
    ticket = await get_ticket(db, ticket_id)

    comments = (
        await db.execute(
            select(func.count()).select_from(TicketComment).where(TicketComment.ticket_id == ticket_id)
        )
    ).scalar_one()
    session_ids = list(
        (await db.execute(select(AgentSession.id).where(AgentSession.ticket_id == ticket_id)))
        .scalars()
        .all()
    )
    counts = {"tickets": 1, "comments": comments, "sessions": len(session_ids)}

    if not confirm:
        warnings = []
        if ticket.status == TicketStatus.IN_PROGRESS:
            warnings.append("Ticket is in progress.")
        if ticket.branch_name:
            warnings.append(f"Branch {ticket.branch_name} will not be deleted.")
        return DeletePreview(
            resource="ticket",
            id=ticket.id,
            title=ticket.title,
            counts=counts,
            warnings=warnings,
        )

    title = ticket.title
    try:
        if session_ids:
            await db.execute(delete(SessionEvent).where(SessionEvent.session_id.in_(session_ids)))
            await db.execute(delete(AgentSession).where(AgentSession.id.in_(session_ids)))
        await db.execute(delete(TicketComment).where(TicketComment.ticket_id == ticket_id))
        await db.execute(delete(ReviewFinding).where(ReviewFinding.ticket_id == ticket_id))
        await db.execute(delete(DemoScript).where(DemoScript.ticket_id == ticket_id))
        await db.execute(delete(TicketWorkflowState).where(TicketWorkflowState.ticket_id == ticket_id))
        await db.execute(
            update(EpicWorkflowState)
            .where(EpicWorkflowState.current_ticket_id == ticket_id)
            .values(current_ticket_id=None)
        )
        await db.delete(ticket)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Ticket deleted", ticket_id=str(ticket_id), **counts)
    return DeleteResult(resource="ticket", id=ticket_id, title=title, counts=counts)
