"""
Ticketflow - Workflow API
=========================

Start/complete work on tickets and launch epics. Non-fatal problems come
back in `warnings` with a 200; fatal git problems are 502.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter

from ticketflow.api.deps import Controller
from ticketflow.core.schemas import (
    CompleteWorkRequest,
    CompleteWorkResponse,
    StartEpicWorkResponse,
    StartWorkResponse,
)

router = APIRouter(tags=["Workflow"])


@router.post(
    "/tickets/{ticket_id}/start-work",
    response_model=StartWorkResponse,
    summary="Start work on a ticket",
    responses={
        404: {"description": "Ticket not found"},
        502: {"description": "Not a git repository or branch creation failed"},
    },
)
async def start_work(ticket_id: UUID, controller: Controller) -> StartWorkResponse:
    """
    Check out the ticket's branch (the epic branch when it has one) and move
    the ticket to in_progress. Safe to call twice.
    """
    result = await controller.start_work(ticket_id)
    return StartWorkResponse.model_validate(result)


@router.post(
    "/tickets/{ticket_id}/complete-work",
    response_model=CompleteWorkResponse,
    summary="Complete work on a ticket",
    responses={
        404: {"description": "Ticket not found"},
        409: {"description": "Ticket already in review or done"},
    },
)
async def complete_work(
    ticket_id: UUID,
    controller: Controller,
    data: Optional[CompleteWorkRequest] = None,
) -> CompleteWorkResponse:
    result = await controller.complete_work(ticket_id, summary=data.summary if data else None)
    return CompleteWorkResponse.model_validate(result)


@router.post(
    "/epics/{epic_id}/start-work",
    response_model=StartEpicWorkResponse,
    summary="Start work on an epic",
    responses={
        404: {"description": "Epic not found"},
        502: {"description": "Git operation failed"},
    },
)
async def start_epic_work(epic_id: UUID, controller: Controller) -> StartEpicWorkResponse:
    result = await controller.start_epic_work(epic_id)
    return StartEpicWorkResponse.model_validate(result)
