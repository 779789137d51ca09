"""
Ticket Comments
===============

Append-only audit sink. The workflow controller posts progress and
work-summary entries here; users post plain comments.
"""

from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketflow.core.errors import TicketNotFoundError, ValidationError
from ticketflow.core.models import CommentType, Ticket, TicketComment

logger = structlog.get_logger()


async def add_comment(
    db: AsyncSession,
    ticket_id: UUID,
    content: str,
    author: str = "user",
    comment_type: CommentType | str = CommentType.COMMENT,
) -> TicketComment:
    if not content or not content.strip():
        raise ValidationError("Comment content cannot be empty.", fields=["content"])
    try:
        comment_type = CommentType(comment_type)
    except ValueError as e:
        raise ValidationError(f"Invalid comment type: {comment_type}", fields=["type"]) from e

    if await db.get(Ticket, ticket_id) is None:
        raise TicketNotFoundError(ticket_id)

    comment = TicketComment(
        ticket_id=ticket_id,
        content=content.strip(),
        author=author,
        type=comment_type,
    )
    db.add(comment)
    await db.commit()
    await db.refresh(comment)

    logger.debug("Comment added", ticket_id=str(ticket_id), author=author, type=comment_type.value)
    return comment


async def list_comments(db: AsyncSession, ticket_id: UUID) -> list[TicketComment]:
    """Comments of a ticket, oldest first."""
    if await db.get(Ticket, ticket_id) is None:
        raise TicketNotFoundError(ticket_id)

    result = await db.execute(
        select(TicketComment)
        .where(TicketComment.ticket_id == ticket_id)
        .order_by(TicketComment.created_at, TicketComment.id)
    )
    return list(result.scalars().all())
