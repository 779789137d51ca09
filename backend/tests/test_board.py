"""
Ticketflow - Board CRUD Tests
=============================
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketflow.core import board
from ticketflow.core.errors import (
    EpicNotFoundError,
    ProjectNotFoundError,
    TicketNotFoundError,
    ValidationError,
)
from ticketflow.core.models import (
    AgentSession,
    CommentType,
    Ticket,
    TicketComment,
    TicketPriority,
    TicketStatus,
)


class TestProjects:
    """Project registry."""

    async def test_create_and_find(self, db_session: AsyncSession, tmp_path):
        project = await board.create_project(db_session, "Web App", str(tmp_path / "web"))

        assert (await board.get_project(db_session, project.id)).name == "Web App"
        assert (await board.find_project_by_path(db_session, str(tmp_path / "web"))).id == project.id
        assert [p.id for p in await board.list_projects(db_session)] == [project.id]

    async def test_duplicate_path(self, db_session: AsyncSession, project):
        with pytest.raises(ValidationError):
            await board.create_project(db_session, "Again", project.path)

    async def test_unknown_project(self, db_session: AsyncSession):
        with pytest.raises(ProjectNotFoundError):
            await board.get_project(db_session, uuid4())


class TestTickets:
    """Ticket CRUD."""

    async def test_new_tickets_append_to_backlog(self, db_session: AsyncSession, project):
        first = await board.create_ticket(db_session, project.id, "First")
        second = await board.create_ticket(db_session, project.id, "Second", priority="high")

        assert first.status == TicketStatus.BACKLOG
        assert second.position == first.position + 1
        assert second.priority == TicketPriority.HIGH

    async def test_validation(self, db_session: AsyncSession, project):
        with pytest.raises(ValidationError):
            await board.create_ticket(db_session, project.id, "   ")
        with pytest.raises(ValidationError):
            await board.create_ticket(db_session, project.id, "Bad priority", priority="urgent")
        with pytest.raises(ProjectNotFoundError):
            await board.create_ticket(db_session, uuid4(), "Nowhere")
        with pytest.raises(EpicNotFoundError):
            await board.create_ticket(db_session, project.id, "Lost epic", epic_id=uuid4())

    async def test_list_filters(self, db_session: AsyncSession, project, ticket_factory):
        await ticket_factory("Ready one", status=TicketStatus.READY)
        await ticket_factory("Backlog one")

        ready = await board.list_tickets(db_session, project_id=project.id, status="ready")

        assert [t.title for t in ready] == ["Ready one"]
        assert len(await board.list_tickets(db_session, limit=500)) == 2

    async def test_list_by_epic(self, db_session: AsyncSession, epic, ticket_factory):
        await ticket_factory("Second", epic=epic, position=2)
        await ticket_factory("First", epic=epic, position=1)
        await ticket_factory("Unrelated")

        tickets = await board.list_tickets_by_epic(db_session, epic.id)

        assert [t.title for t in tickets] == ["First", "Second"]

    async def test_status_done_sets_completed_at(self, db_session: AsyncSession, ticket):
        updated = await board.update_ticket_status(db_session, ticket.id, TicketStatus.DONE)

        assert updated.status == TicketStatus.DONE
        assert updated.completed_at is not None

    @pytest.mark.parametrize("reopened", [TicketStatus.READY, TicketStatus.IN_PROGRESS, TicketStatus.AI_REVIEW])
    async def test_leaving_done_clears_completed_at(self, db_session: AsyncSession, ticket, reopened):
        await board.update_ticket_status(db_session, ticket.id, TicketStatus.DONE)

        updated = await board.update_ticket_status(db_session, ticket.id, reopened)

        assert updated.status == reopened
        assert updated.completed_at is None
        await db_session.refresh(updated)
        assert updated.completed_at is None

    async def test_invalid_status(self, db_session: AsyncSession, ticket):
        with pytest.raises(ValidationError):
            await board.update_ticket_status(db_session, ticket.id, "shipped")

    async def test_delete_is_two_step(self, db_session: AsyncSession, ticket, session_manager):
        await board.add_comment(db_session, ticket.id, "Looks good")
        await session_manager.create_session(ticket.id)

        preview = await board.delete_ticket(db_session, ticket.id)

        assert preview.dry_run is True
        assert preview.counts == {"tickets": 1, "comments": 1, "sessions": 1}
        assert (await board.get_ticket(db_session, ticket.id)).id == ticket.id

        result = await board.delete_ticket(db_session, ticket.id, confirm=True)

        assert result.dry_run is False
        with pytest.raises(TicketNotFoundError):
            await board.get_ticket(db_session, ticket.id)
        remaining = await db_session.execute(select(func.count()).select_from(TicketComment))
        assert remaining.scalar_one() == 0
        sessions = await db_session.execute(select(func.count()).select_from(AgentSession))
        assert sessions.scalar_one() == 0


class TestEpics:
    """Epic CRUD."""

    async def test_list_ordered_by_title(self, db_session: AsyncSession, project):
        await board.create_epic(db_session, project.id, "Zeta")
        await board.create_epic(db_session, project.id, "Alpha")

        assert [e.title for e in await board.list_epics(db_session, project.id)] == ["Alpha", "Zeta"]

    async def test_update_requires_a_change(self, db_session: AsyncSession, epic):
        with pytest.raises(ValidationError):
            await board.update_epic(db_session, epic.id)

        updated = await board.update_epic(db_session, epic.id, color="#ff0000")
        assert updated.color == "#ff0000"
        assert updated.title == "Auth Overhaul"

    async def test_delete_unlinks_tickets(self, db_session: AsyncSession, epic, ticket_factory):
        member = await ticket_factory("Login form", epic=epic)

        preview = await board.delete_epic(db_session, epic.id)
        assert preview.dry_run is True
        assert preview.counts["tickets_unlinked"] == 1
        assert preview.warnings

        await board.delete_epic(db_session, epic.id, confirm=True)

        with pytest.raises(EpicNotFoundError):
            await board.get_epic(db_session, epic.id)
        refreshed = (await db_session.execute(select(Ticket).where(Ticket.id == member.id))).scalar_one()
        await db_session.refresh(refreshed)
        assert refreshed.epic_id is None


class TestComments:
    """Audit sink."""

    async def test_add_and_list(self, db_session: AsyncSession, ticket):
        await board.add_comment(db_session, ticket.id, "First")
        await board.add_comment(db_session, ticket.id, "Second", author="agent", comment_type="progress")

        comments = await board.list_comments(db_session, ticket.id)

        assert [c.content for c in comments] == ["First", "Second"]
        assert comments[1].type == CommentType.PROGRESS

    async def test_empty_content(self, db_session: AsyncSession, ticket):
        with pytest.raises(ValidationError):
            await board.add_comment(db_session, ticket.id, "  ")

    async def test_unknown_ticket(self, db_session: AsyncSession):
        with pytest.raises(TicketNotFoundError):
            await board.add_comment(db_session, uuid4(), "Hello")
