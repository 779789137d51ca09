"""
Ticketflow - Database Models
============================

SQLAlchemy models for all entities.
Workflow side tables (ticket/epic workflow state) are 1:1 with their owner
and created lazily by the workflow controller.
"""

import enum
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ticketflow.core.database import Base


# ==========================================================================
# Enums
# ==========================================================================

class TicketStatus(str, enum.Enum):
    """Board column for a ticket, in lifecycle order."""
    BACKLOG = "backlog"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    AI_REVIEW = "ai_review"
    HUMAN_REVIEW = "human_review"
    DONE = "done"


class TicketPriority(str, enum.Enum):
    """Ticket priority."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CommentType(str, enum.Enum):
    """Audit comment classification."""
    COMMENT = "comment"
    WORK_SUMMARY = "work_summary"
    TEST_REPORT = "test_report"
    PROGRESS = "progress"


class WorkflowPhase(str, enum.Enum):
    """Review/demo phase tracked alongside the ticket status."""
    IMPLEMENTATION = "implementation"
    AI_REVIEW = "ai_review"
    HUMAN_REVIEW = "human_review"
    DONE = "done"


class SessionState(str, enum.Enum):
    """Unattended agent session state."""
    IDLE = "idle"
    ANALYZING = "analyzing"
    IMPLEMENTING = "implementing"
    TESTING = "testing"
    COMMITTING = "committing"
    REVIEWING = "reviewing"
    DONE = "done"


class SessionOutcome(str, enum.Enum):
    """Terminal outcome of an agent session."""
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class SessionEventType(str, enum.Enum):
    """Event kinds streamed to live observers of a session."""
    THINKING = "thinking"
    TOOL_START = "tool_start"
    TOOL_END = "tool_end"
    FILE_CHANGE = "file_change"
    PROGRESS = "progress"
    STATE_CHANGE = "state_change"
    ERROR = "error"


class FindingSeverity(str, enum.Enum):
    """Review finding severity. Critical and major block the demo."""
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"
    SUGGESTION = "suggestion"


class FindingStatus(str, enum.Enum):
    OPEN = "open"
    FIXED = "fixed"
    WONT_FIX = "wont_fix"
    DUPLICATE = "duplicate"


class FindingAgent(str, enum.Enum):
    """Review agent that reported a finding."""
    CODE_REVIEWER = "code-reviewer"
    SILENT_FAILURE_HUNTER = "silent-failure-hunter"
    CODE_SIMPLIFIER = "code-simplifier"


class DemoStepType(str, enum.Enum):
    MANUAL = "manual"
    VISUAL = "visual"
    AUTOMATED = "automated"


class DemoStepStatus(str, enum.Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


# ==========================================================================
# Mixins
# ==========================================================================

class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# ==========================================================================
# Board Models
# ==========================================================================

class Project(Base, TimestampMixin):
    """
    A software project backed by one repository checkout.

    `path` is the working directory threaded through every git call.
    """

    __tablename__ = "projects"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    path: Mapped[str] = mapped_column(
        String(1000),
        unique=True,
        nullable=False,
    )
    color: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
    )

    # Relationships
    tickets: Mapped[list["Ticket"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
    )
    epics: Mapped[list["Epic"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Project {self.name} ({self.path})>"


class Epic(Base, TimestampMixin):
    """Grouping of tickets that share one branch."""

    __tablename__ = "epics"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    project_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    color: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
    )

    # Relationships
    project: Mapped["Project"] = relationship(
        back_populates="epics",
        lazy="joined",
    )

    def __repr__(self) -> str:
        return f"<Epic {self.title}>"


class Ticket(Base, TimestampMixin):
    """
    A unit of work on the board.

    `branch_name` is set by start-work and kept for the rest of the work cycle.
    """

    __tablename__ = "tickets"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    project_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    epic_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("epics.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Basic info
    title: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    status: Mapped[TicketStatus] = mapped_column(
        Enum(TicketStatus),
        default=TicketStatus.BACKLOG,
        nullable=False,
        index=True,
    )
    priority: Mapped[Optional[TicketPriority]] = mapped_column(
        Enum(TicketPriority),
        nullable=True,
    )
    position: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )  # Ordering within a column

    # Git
    branch_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    project: Mapped["Project"] = relationship(
        back_populates="tickets",
        lazy="joined",
    )

    def __repr__(self) -> str:
        return f"<Ticket {self.title} [{self.status.value}]>"


class TicketComment(Base):
    """Append-only audit comment attached to a ticket."""

    __tablename__ = "ticket_comments"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    ticket_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    author: Mapped[str] = mapped_column(
        String(100),
        default="user",
        nullable=False,
    )
    type: Mapped[CommentType] = mapped_column(
        Enum(CommentType),
        default=CommentType.COMMENT,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),  # sub-second ordering
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<TicketComment {self.type.value} by {self.author}>"


# ==========================================================================
# Workflow State Models
# ==========================================================================

class TicketWorkflowState(Base, TimestampMixin):
    """
    Review/demo progress for a ticket.

    Re-initialized (not accumulated) every time work starts on the ticket.
    """

    __tablename__ = "ticket_workflow_state"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    ticket_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tickets.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    current_phase: Mapped[WorkflowPhase] = mapped_column(
        Enum(WorkflowPhase),
        default=WorkflowPhase.IMPLEMENTATION,
        nullable=False,
    )
    review_iteration: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    findings_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    findings_fixed: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    demo_generated: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<TicketWorkflowState {self.current_phase.value} iter={self.review_iteration}>"


class EpicWorkflowState(Base, TimestampMixin):
    """
    Shared-branch bookkeeping for an epic.

    Only one live branch name is remembered; a stale one is overwritten.
    """

    __tablename__ = "epic_workflow_state"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    epic_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("epics.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    epic_branch_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    epic_branch_created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    current_ticket_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tickets.id", ondelete="SET NULL"),
        nullable=True,
    )  # Ticket that last claimed the shared branch
    tickets_total: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    tickets_done: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<EpicWorkflowState {self.epic_branch_name}>"


# ==========================================================================
# Agent Session Models
# ==========================================================================

class AgentSession(Base):
    """
    One unattended agent run against a ticket.

    `state_history` is an ordered list of {state, timestamp, metadata?}.
    A session with `completed_at` set accepts no further transitions.
    """

    __tablename__ = "agent_sessions"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    ticket_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    project_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
    )

    current_state: Mapped[SessionState] = mapped_column(
        Enum(SessionState),
        default=SessionState.IDLE,
        nullable=False,
    )
    state_history: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )

    # Results
    outcome: Mapped[Optional[SessionOutcome]] = mapped_column(
        Enum(SessionOutcome),
        nullable=True,
    )
    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    # Timing
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    @property
    def is_active(self) -> bool:
        return self.completed_at is None

    def __repr__(self) -> str:
        return f"<AgentSession {self.id} [{self.current_state.value}]>"


class SessionEvent(Base):
    """
    Append-only event emitted during an agent session.

    `sequence` is monotonic per session and gives a stable order when
    timestamps collide.
    """

    __tablename__ = "session_events"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    session_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("agent_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[SessionEventType] = mapped_column(
        Enum(SessionEventType),
        nullable=False,
    )
    data: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
    )
    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<SessionEvent #{self.sequence} {self.type.value}>"


# ==========================================================================
# Review Models
# ==========================================================================

class ReviewFinding(Base):
    """
    Issue raised by a review agent while a ticket is in AI review.

    `iteration` is the ticket's review iteration when the finding was filed.
    """

    __tablename__ = "review_findings"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    ticket_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    iteration: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
    )
    agent: Mapped[FindingAgent] = mapped_column(
        Enum(FindingAgent),
        nullable=False,
    )
    severity: Mapped[FindingSeverity] = mapped_column(
        Enum(FindingSeverity),
        nullable=False,
    )
    category: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    file_path: Mapped[Optional[str]] = mapped_column(
        String(1000),
        nullable=True,
    )
    line_number: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
    )
    suggested_fix: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    status: Mapped[FindingStatus] = mapped_column(
        Enum(FindingStatus),
        default=FindingStatus.OPEN,
        nullable=False,
    )
    fixed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ReviewFinding {self.severity.value} [{self.status.value}]>"


class DemoScript(Base):
    """
    Manual verification script handed to the human reviewer.

    `steps` is an ordered list of {order, description, expected_outcome,
    type, status, notes?}.
    """

    __tablename__ = "demo_scripts"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    ticket_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    steps: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    feedback: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    passed: Mapped[Optional[bool]] = mapped_column(
        Boolean,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<DemoScript {self.ticket_id} steps={len(self.steps or [])}>"
