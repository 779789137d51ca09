"""
Ticketflow - Board
==================

CRUD over projects, tickets, epics and comments.
"""

from ticketflow.core.board.comments import add_comment, list_comments
from ticketflow.core.board.epics import (
    create_epic,
    delete_epic,
    get_epic,
    list_epics,
    update_epic,
)
from ticketflow.core.board.projects import (
    create_project,
    find_project_by_path,
    get_project,
    list_projects,
)
from ticketflow.core.board.tickets import (
    DeletePreview,
    DeleteResult,
    create_ticket,
    delete_ticket,
    get_ticket,
    list_tickets,
    list_tickets_by_epic,
    update_ticket_status,
)

__all__ = [
    "DeletePreview",
    "DeleteResult",
    "add_comment",
    "create_epic",
    "create_project",
    "create_ticket",
    "delete_epic",
    "delete_ticket",
    "find_project_by_path",
    "get_epic",
    "get_project",
    "get_ticket",
    "list_comments",
    "list_epics",
    "list_projects",
    "list_tickets",
    "list_tickets_by_epic",
    "update_epic",
    "update_ticket_status",
]
