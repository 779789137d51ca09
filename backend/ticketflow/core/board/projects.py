"""Project registry: one row per repository checkout."""

import os
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketflow.core.errors import ProjectNotFoundError, ValidationError
from ticketflow.core.models import Project

logger = structlog.get_logger()


async def create_project(
    db: AsyncSession,
    name: str,
    path: str,
    color: Optional[str] = None,
) -> Project:
    if not name or not name.strip():
        raise ValidationError("Project name cannot be empty.", fields=["name"])
    if not path or not path.strip():
        raise ValidationError("Project path cannot be empty.", fields=["path"])

    normalized = os.path.normpath(path.strip())
    if await find_project_by_path(db, normalized) is not None:
        raise ValidationError(
            f"A project is already registered at {normalized}.",
            fields=["path"],
        )

    project = Project(name=name.strip(), path=normalized, color=color)
    db.add(project)
    await db.commit()
    await db.refresh(project)

    logger.info("Project created", project_id=str(project.id), path=normalized)
    return project


async def get_project(db: AsyncSession, project_id: UUID) -> Project:
    project = await db.get(Project, project_id)
    if project is None:
        raise ProjectNotFoundError(project_id)
    return project


async def list_projects(db: AsyncSession) -> list[Project]:
    result = await db.execute(select(Project).order_by(Project.name))
    return list(result.scalars().all())


async def find_project_by_path(db: AsyncSession, path: str) -> Optional[Project]:
    """Exact match on the normalized checkout path."""
    result = await db.execute(
        select(Project).where(Project.path == os.path.normpath(path))
    )
    return result.scalar_one_or_none()
