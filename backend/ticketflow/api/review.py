"""
Ticketflow - Review & Demo API
==============================

AI review findings, the human review demo script and the final verdict.
Blocking findings and malformed steps are 422; calls made in the wrong
ticket status are 409.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from ticketflow.api.deps import ReviewService
from ticketflow.core.models import FindingAgent, FindingSeverity, FindingStatus
from ticketflow.core.schemas import (
    DemoCreate,
    DemoResponse,
    DemoStepUpdate,
    FeedbackCreate,
    FeedbackResponse,
    FindingCreate,
    FindingResponse,
    FindingUpdate,
    ReviewStatusResponse,
)

router = APIRouter(tags=["Review"])


# ==========================================================================
# Findings
# ==========================================================================

@router.post(
    "/tickets/{ticket_id}/findings",
    response_model=FindingResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit review finding",
    responses={
        404: {"description": "Ticket not found"},
        409: {"description": "Ticket is not in AI review"},
    },
)
async def submit_finding(ticket_id: UUID, data: FindingCreate, review: ReviewService) -> FindingResponse:
    finding = await review.submit_finding(
        ticket_id,
        agent=data.agent,
        severity=data.severity,
        category=data.category,
        description=data.description,
        file_path=data.file_path,
        line_number=data.line_number,
        suggested_fix=data.suggested_fix,
    )
    return FindingResponse.model_validate(finding)


@router.get("/tickets/{ticket_id}/findings", response_model=list[FindingResponse], summary="List findings")
async def list_findings(
    ticket_id: UUID,
    review: ReviewService,
    finding_status: Optional[FindingStatus] = Query(None, alias="status"),
    severity: Optional[FindingSeverity] = Query(None),
    agent: Optional[FindingAgent] = Query(None),
) -> list[FindingResponse]:
    findings = await review.get_findings(ticket_id, status=finding_status, severity=severity, agent=agent)
    return [FindingResponse.model_validate(f) for f in findings]


@router.patch(
    "/findings/{finding_id}",
    response_model=FindingResponse,
    summary="Resolve finding",
    responses={404: {"description": "Finding not found"}},
)
async def resolve_finding(finding_id: UUID, data: FindingUpdate, review: ReviewService) -> FindingResponse:
    finding = await review.mark_finding(finding_id, data.status)
    return FindingResponse.model_validate(finding)


@router.get(
    "/tickets/{ticket_id}/review-status",
    response_model=ReviewStatusResponse,
    summary="Check review completion",
)
async def review_status(ticket_id: UUID, review: ReviewService) -> ReviewStatusResponse:
    """Complete once no critical or major finding is open."""
    result = await review.check_complete(ticket_id)
    return ReviewStatusResponse.model_validate(result)


# ==========================================================================
# Demo Script
# ==========================================================================

@router.post(
    "/tickets/{ticket_id}/demo",
    response_model=DemoResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate demo script",
    responses={
        409: {"description": "Ticket is not awaiting a demo"},
        422: {"description": "Critical or major findings still open"},
    },
)
async def generate_demo(ticket_id: UUID, data: DemoCreate, review: ReviewService) -> DemoResponse:
    """Store the demo script and move the ticket to human_review."""
    demo = await review.generate_demo(ticket_id, [s.model_dump(mode="json") for s in data.steps])
    return DemoResponse.model_validate(demo)


@router.get(
    "/tickets/{ticket_id}/demo",
    response_model=DemoResponse,
    summary="Get latest demo script",
    responses={404: {"description": "Ticket or demo script not found"}},
)
async def get_demo(ticket_id: UUID, review: ReviewService) -> DemoResponse:
    demo = await review.get_demo(ticket_id)
    return DemoResponse.model_validate(demo)


@router.patch(
    "/demos/{demo_id}/steps/{order}",
    response_model=DemoResponse,
    summary="Record demo step result",
)
async def update_demo_step(
    demo_id: UUID,
    order: int,
    data: DemoStepUpdate,
    review: ReviewService,
) -> DemoResponse:
    demo = await review.update_demo_step(demo_id, order, data.status, data.notes)
    return DemoResponse.model_validate(demo)


@router.post(
    "/tickets/{ticket_id}/demo/feedback",
    response_model=FeedbackResponse,
    summary="Submit demo feedback",
    responses={409: {"description": "Ticket is not in human review"}},
)
async def submit_feedback(ticket_id: UUID, data: FeedbackCreate, review: ReviewService) -> FeedbackResponse:
    """Passed moves the ticket to done; rejected asks for a new demo."""
    result = await review.submit_feedback(
        ticket_id,
        passed=data.passed,
        feedback=data.feedback,
        step_results=[r.model_dump() for r in data.step_results] if data.step_results else None,
    )
    return FeedbackResponse.model_validate(result)
