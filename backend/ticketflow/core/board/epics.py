"""Epic CRUD. Deleting an epic unlinks its tickets, it never deletes them."""

from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ticketflow.core.board.projects import get_project
from ticketflow.core.board.tickets import DeletePreview, DeleteResult
from ticketflow.core.errors import EpicNotFoundError, ValidationError
from ticketflow.core.models import Epic, EpicWorkflowState, Ticket

logger = structlog.get_logger()


async def create_epic(
    db: AsyncSession,
    project_id: UUID,
    title: str,
    description: Optional[str] = None,
    color: Optional[str] = None,
) -> Epic:
    if not title or not title.strip():
        raise ValidationError("Epic title cannot be empty.", fields=["title"])
    await get_project(db, project_id)

    epic = Epic(project_id=project_id, title=title.strip(), description=description, color=color)
    db.add(epic)
    await db.commit()
    await db.refresh(epic)

    logger.info("Epic created", epic_id=str(epic.id), project_id=str(project_id))
    return epic


async def get_epic(db: AsyncSession, epic_id: UUID) -> Epic:
    epic = await db.get(Epic, epic_id)
    if epic is None:
        raise EpicNotFoundError(epic_id)
    return epic


async def list_epics(db: AsyncSession, project_id: UUID) -> list[Epic]:
    await get_project(db, project_id)
    result = await db.execute(
        select(Epic).where(Epic.project_id == project_id).order_by(Epic.title)
    )
    return list(result.scalars().all())


async def update_epic(
    db: AsyncSession,
    epic_id: UUID,
    title: Optional[str] = None,
    description: Optional[str] = None,
    color: Optional[str] = None,
) -> Epic:
    if title is None and description is None and color is None:
        raise ValidationError(
            "No updates provided. Specify at least one of: title, description, color.",
            fields=["title", "description", "color"],
        )
    if title is not None and not title.strip():
        raise ValidationError("Epic title cannot be empty.", fields=["title"])

    epic = await get_epic(db, epic_id)
    if title is not None:
        epic.title = title.strip()
    if description is not None:
        epic.description = description
    if color is not None:
        epic.color = color
    await db.commit()
    await db.refresh(epic)
    return epic


async def delete_epic(
    db: AsyncSession,
    epic_id: UUID,
    confirm: bool = False,
) -> DeletePreview | DeleteResult:
    epic = await get_epic(db, epic_id)

    linked = (
        await db.execute(select(func.count()).select_from(Ticket).where(Ticket.epic_id == epic_id))
    ).scalar_one()
    counts = {"epics": 1, "tickets_unlinked": linked}

    if not confirm:
        warnings = []
        if linked:
            warnings.append(f"{linked} ticket(s) will be unlinked from this epic (not deleted).")
        state = (
            await db.execute(select(EpicWorkflowState).where(EpicWorkflowState.epic_id == epic_id))
        ).scalar_one_or_none()
        if state is not None and state.epic_branch_name:
            warnings.append(f"Branch {state.epic_branch_name} will not be deleted.")
        return DeletePreview(
            resource="epic",
            id=epic.id,
            title=epic.title,
            counts=counts,
            warnings=warnings,
        )

    title = epic.title
    try:
        await db.execute(update(Ticket).where(Ticket.epic_id == epic_id).values(epic_id=None))
        await db.execute(delete(EpicWorkflowState).where(EpicWorkflowState.epic_id == epic_id))
        await db.delete(epic)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Epic deleted", epic_id=str(epic_id), tickets_unlinked=linked)
    return DeleteResult(resource="epic", id=epic_id, title=title, counts=counts)
