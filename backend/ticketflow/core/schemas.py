"""
Ticketflow - Pydantic Schemas
=============================

Request and response schemas for API validation.
Responses are built straight from ORM rows and core result dataclasses
(`from_attributes`).
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ticketflow.core.models import (
    CommentType,
    DemoStepStatus,
    DemoStepType,
    FindingAgent,
    FindingSeverity,
    FindingStatus,
    SessionEventType,
    SessionOutcome,
    SessionState,
    TicketPriority,
    TicketStatus,
)


# ==========================================================================
# Base Schemas
# ==========================================================================

class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class TimestampSchema(BaseSchema):
    """Schema with timestamp fields."""

    created_at: datetime
    updated_at: datetime


# ==========================================================================
# Board Schemas
# ==========================================================================

class ProjectCreate(BaseSchema):
    name: str = Field(min_length=1, max_length=255)
    path: str = Field(min_length=1, max_length=1000)
    color: Optional[str] = Field(None, max_length=20)


class ProjectResponse(TimestampSchema):
    id: UUID
    name: str
    path: str
    color: Optional[str] = None


class EpicCreate(BaseSchema):
    project_id: UUID
    title: str = Field(min_length=1, max_length=500)
    description: Optional[str] = None
    color: Optional[str] = Field(None, max_length=20)


class EpicUpdate(BaseSchema):
    """All fields optional; at least one must be given."""

    title: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    color: Optional[str] = Field(None, max_length=20)


class EpicResponse(TimestampSchema):
    id: UUID
    project_id: UUID
    title: str
    description: Optional[str] = None
    color: Optional[str] = None


class TicketCreate(BaseSchema):
    project_id: UUID
    title: str = Field(min_length=1, max_length=500)
    description: Optional[str] = None
    priority: Optional[TicketPriority] = None
    epic_id: Optional[UUID] = None


class TicketStatusUpdate(BaseSchema):
    status: TicketStatus


class TicketResponse(TimestampSchema):
    id: UUID
    project_id: UUID
    epic_id: Optional[UUID] = None
    title: str
    description: Optional[str] = None
    status: TicketStatus
    priority: Optional[TicketPriority] = None
    position: int
    branch_name: Optional[str] = None
    completed_at: Optional[datetime] = None


class CommentCreate(BaseSchema):
    content: str = Field(min_length=1)
    author: str = Field("user", min_length=1, max_length=100)
    type: CommentType = CommentType.COMMENT


class CommentResponse(BaseSchema):
    id: UUID
    ticket_id: UUID
    content: str
    author: str
    type: CommentType
    created_at: datetime


class DeleteResponse(BaseSchema):
    """Preview (dry_run=True) or confirmation of a delete."""

    resource: str
    id: UUID
    title: str
    dry_run: bool
    counts: dict[str, int] = {}
    warnings: list[str] = []


# ==========================================================================
# Workflow Schemas
# ==========================================================================

class StartWorkResponse(BaseSchema):
    ticket: TicketResponse
    branch: Optional[str] = None
    branch_created: bool
    using_epic_branch: bool
    epic_branch: Optional[str] = None
    warnings: list[str] = []


class CompleteWorkRequest(BaseSchema):
    summary: Optional[str] = None


class NextTicketResponse(BaseSchema):
    id: UUID
    title: str
    status: TicketStatus
    priority: Optional[TicketPriority] = None


class CompleteWorkResponse(BaseSchema):
    ticket: TicketResponse
    work_summary: str
    next_steps: list[str]
    suggested_next_ticket: Optional[NextTicketResponse] = None
    commits_info: str = ""
    changed_files: list[str] = []
    warnings: list[str] = []


class StartEpicWorkResponse(BaseSchema):
    epic: EpicResponse
    branch: str
    branch_created: bool
    tickets: list[TicketResponse] = []
    tickets_total: int
    tickets_done: int
    warnings: list[str] = []


# ==========================================================================
# Agent Session Schemas
# ==========================================================================

class SessionCreate(BaseSchema):
    ticket_id: UUID


class SessionStateUpdate(BaseSchema):
    state: SessionState
    metadata: Optional[dict[str, Any]] = None


class SessionComplete(BaseSchema):
    outcome: SessionOutcome
    error_message: Optional[str] = None


class SessionResponse(BaseSchema):
    id: UUID
    ticket_id: UUID
    project_id: Optional[UUID] = None
    current_state: SessionState
    state_history: list[dict[str, Any]]
    outcome: Optional[SessionOutcome] = None
    error_message: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    is_active: bool


class SessionCreateResponse(BaseSchema):
    session: SessionResponse
    state_file_written: bool


class SessionUpdateResponse(BaseSchema):
    session: SessionResponse
    previous_state: SessionState
    state_file_written: bool


class SessionCompleteResponse(BaseSchema):
    session: SessionResponse
    outcome: SessionOutcome
    duration_ms: int
    state_file_removed: bool


class SessionSummaryResponse(BaseSchema):
    id: UUID
    current_state: SessionState
    outcome: Optional[SessionOutcome] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    state_count: int


class SessionListResponse(BaseSchema):
    ticket_id: UUID
    sessions: list[SessionSummaryResponse]


class EventCreate(BaseSchema):
    type: SessionEventType
    data: Optional[dict[str, Any]] = None


class EventResponse(BaseSchema):
    id: UUID
    session_id: UUID
    type: SessionEventType
    data: Optional[dict[str, Any]] = None
    sequence: int
    created_at: datetime


class EventListResponse(BaseSchema):
    session_id: UUID
    events: list[EventResponse]
    count: int


class EventsClearedResponse(BaseSchema):
    session_id: UUID
    deleted: int


# ==========================================================================
# Review & Demo Schemas
# ==========================================================================

class FindingCreate(BaseSchema):
    agent: FindingAgent
    severity: FindingSeverity
    category: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1)
    file_path: Optional[str] = None
    line_number: Optional[int] = Field(None, ge=1)
    suggested_fix: Optional[str] = None


class FindingUpdate(BaseSchema):
    status: FindingStatus


class FindingResponse(BaseSchema):
    id: UUID
    ticket_id: UUID
    iteration: int
    agent: FindingAgent
    severity: FindingSeverity
    category: str
    description: str
    file_path: Optional[str] = None
    line_number: Optional[int] = None
    suggested_fix: Optional[str] = None
    status: FindingStatus
    fixed_at: Optional[datetime] = None
    created_at: datetime


class ReviewStatusResponse(BaseSchema):
    ticket_id: UUID
    complete: bool
    can_proceed_to_human_review: bool
    open_critical: int
    open_major: int
    open_minor: int
    open_suggestion: int
    total_findings: int
    fixed_findings: int
    message: str


class DemoStepCreate(BaseSchema):
    order: int = Field(ge=1)
    description: str = Field(min_length=1)
    expected_outcome: str = Field(min_length=1)
    type: DemoStepType = DemoStepType.MANUAL


class DemoStepResponse(BaseSchema):
    order: int
    description: str
    expected_outcome: str
    type: DemoStepType
    status: DemoStepStatus
    notes: Optional[str] = None


class DemoCreate(BaseSchema):
    steps: list[DemoStepCreate] = Field(min_length=1)


class DemoStepUpdate(BaseSchema):
    status: DemoStepStatus
    notes: Optional[str] = None


class DemoResponse(BaseSchema):
    id: UUID
    ticket_id: UUID
    steps: list[DemoStepResponse]
    generated_at: datetime
    completed_at: Optional[datetime] = None
    feedback: Optional[str] = None
    passed: Optional[bool] = None


class StepResult(BaseSchema):
    order: int
    passed: bool
    notes: Optional[str] = None


class FeedbackCreate(BaseSchema):
    passed: bool
    feedback: str = Field(min_length=1)
    step_results: Optional[list[StepResult]] = None


class FeedbackResponse(BaseSchema):
    ticket_id: UUID
    passed: bool
    new_status: TicketStatus
    feedback: str


# ==========================================================================
# Common Schemas
# ==========================================================================

class ErrorResponse(BaseSchema):
    """Error response schema."""

    error: str
    detail: Optional[str] = None
    code: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseSchema):
    """Health check response."""

    status: str
    version: str
    environment: str
    database: str
