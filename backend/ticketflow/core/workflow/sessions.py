"""
Agent Session Manager
=====================

Persisted state machine for unattended agent runs against a ticket.

Lifecycle:
    idle -> analyzing -> implementing -> testing -> committing -> reviewing -> done
                              ^              |
                              +--------------+  (tests failed)

Every transition:
1. Appends to the session's state history and commits (authoritative)
2. Refreshes the projected state file in the project checkout (best-effort)
3. Appends a `state_change` event to the session event log

Completing a session removes the projected file and freezes the session.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketflow.core.config import Settings, get_settings
from ticketflow.core.errors import (
    ActiveSessionExistsError,
    InvalidStateError,
    InvalidTransitionError,
    SessionNotFoundError,
    TicketNotFoundError,
    ValidationError,
)
from ticketflow.core.models import (
    AgentSession,
    Project,
    SessionEventType,
    SessionOutcome,
    SessionState,
    Ticket,
)
from ticketflow.core.workflow.clock import Clock, as_utc, utc_now
from ticketflow.core.workflow.events import SessionEventLog, StateChangePayload
from ticketflow.core.workflow.state_file import (
    build_state_document,
    remove_state_file,
    write_state_file,
)

logger = structlog.get_logger()


ALLOWED_TRANSITIONS: dict[SessionState, tuple[SessionState, ...]] = {
    SessionState.IDLE: (SessionState.ANALYZING,),
    SessionState.ANALYZING: (SessionState.IMPLEMENTING,),
    SessionState.IMPLEMENTING: (SessionState.TESTING,),
    SessionState.TESTING: (SessionState.COMMITTING, SessionState.IMPLEMENTING),
    SessionState.COMMITTING: (SessionState.REVIEWING,),
    SessionState.REVIEWING: (SessionState.DONE,),
    SessionState.DONE: (),
}


def is_transition_allowed(current: SessionState, target: SessionState) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, ())


# ==========================================================================
# Result Types
# ==========================================================================

@dataclass
class AgentSessionView:
    """Plain-data snapshot of a session."""
    id: UUID
    ticket_id: UUID
    project_id: Optional[UUID]
    current_state: SessionState
    state_history: list[dict[str, Any]]
    outcome: Optional[SessionOutcome]
    error_message: Optional[str]
    started_at: datetime
    completed_at: Optional[datetime]

    @property
    def is_active(self) -> bool:
        return self.completed_at is None

    @classmethod
    def from_model(cls, session: AgentSession) -> "AgentSessionView":
        return cls(
            id=session.id,
            ticket_id=session.ticket_id,
            project_id=session.project_id,
            current_state=session.current_state,
            state_history=list(session.state_history),
            outcome=session.outcome,
            error_message=session.error_message,
            started_at=as_utc(session.started_at),
            completed_at=as_utc(session.completed_at),
        )


@dataclass
class SessionSummary:
    id: UUID
    current_state: SessionState
    outcome: Optional[SessionOutcome]
    started_at: datetime
    completed_at: Optional[datetime]
    state_count: int


@dataclass
class CreateSessionResult:
    session: AgentSessionView
    state_file_written: bool


@dataclass
class UpdateStateResult:
    session: AgentSessionView
    previous_state: SessionState
    state_file_written: bool


@dataclass
class CompleteSessionResult:
    session: AgentSessionView
    outcome: SessionOutcome
    duration_ms: int
    state_file_removed: bool


@dataclass
class ListSessionsResult:
    ticket_id: UUID
    sessions: list[SessionSummary] = field(default_factory=list)


# ==========================================================================
# Session Manager
# ==========================================================================

class AgentSessionManager:
    """
    Drives agent sessions through their lifecycle.

    Usage:
        manager = AgentSessionManager(db)
        created = await manager.create_session(ticket.id)
        await manager.update_state(created.session.id, SessionState.ANALYZING)
        await manager.complete_session(created.session.id, SessionOutcome.SUCCESS)
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        id_factory: Optional[Callable[[], UUID]] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        self.id_factory = id_factory or uuid4
        self.events = SessionEventLog(db, self.settings, self.clock, self.id_factory)

    # ----------------------------------------------------------------------
    # Helpers
    # ----------------------------------------------------------------------

    async def _load(self, session_id: UUID) -> AgentSession:
        session = await self.db.get(AgentSession, session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _require_active(self, session: AgentSession, action: str) -> None:
        if not session.is_active:
            raise InvalidStateError("session", "completed", "active", action)

    async def _project_path(self, session: AgentSession) -> Optional[str]:
        if session.project_id is None:
            return None
        project = await self.db.get(Project, session.project_id)
        return project.path if project else None

    async def _project(self, session: AgentSession, now: datetime) -> bool:
        path = await self._project_path(session)
        document = build_state_document(session, now.isoformat())
        return write_state_file(path, self.settings.SESSION_STATE_FILE, document)

    # ----------------------------------------------------------------------
    # Operations
    # ----------------------------------------------------------------------

    async def create_session(self, ticket_id: UUID) -> CreateSessionResult:
        """
        Start a new session for a ticket in state `idle`.

        Raises:
            TicketNotFoundError: unknown ticket
            ActiveSessionExistsError: ticket already has an uncompleted session
        """
        ticket = await self.db.get(Ticket, ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)

        result = await self.db.execute(
            select(AgentSession.id).where(
                AgentSession.ticket_id == ticket_id,
                AgentSession.completed_at.is_(None),
            )
        )
        active_id = result.scalars().first()
        if active_id is not None:
            raise ActiveSessionExistsError(ticket_id, active_id)

        now = self.clock()
        session = AgentSession(
            id=self.id_factory(),
            ticket_id=ticket.id,
            project_id=ticket.project_id,
            current_state=SessionState.IDLE,
            state_history=[{"state": SessionState.IDLE.value, "timestamp": now.isoformat()}],
            started_at=now,
        )
        self.db.add(session)
        await self.db.commit()

        written = await self._project(session, now)
        await self.events.emit(
            session.id, SessionEventType.STATE_CHANGE, StateChangePayload.session_started()
        )

        logger.info(
            "Agent session created",
            session_id=str(session.id),
            ticket_id=str(ticket_id),
            state_file_written=written,
        )
        return CreateSessionResult(
            session=AgentSessionView.from_model(session),
            state_file_written=written,
        )

    async def update_state(
        self,
        session_id: UUID,
        state: SessionState | str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> UpdateStateResult:
        """
        Move an active session to a new state.

        Raises:
            SessionNotFoundError: unknown session
            InvalidStateError: session already completed
            InvalidTransitionError: edge not in ALLOWED_TRANSITIONS (strict mode)
            ValidationError: unknown state name
        """
        try:
            target = SessionState(state)
        except ValueError as e:
            raise ValidationError(
                f"Invalid state: {state}. "
                f"Must be one of: {', '.join(s.value for s in SessionState)}",
                fields=["state"],
            ) from e

        session = await self._load(session_id)
        self._require_active(session, "update state")

        previous = session.current_state
        if self.settings.SESSION_STRICT_TRANSITIONS and not is_transition_allowed(previous, target):
            raise InvalidTransitionError(
                previous.value,
                target.value,
                [s.value for s in ALLOWED_TRANSITIONS.get(previous, ())],
            )

        now = self.clock()
        entry: dict[str, Any] = {"state": target.value, "timestamp": now.isoformat()}
        if metadata:
            entry["metadata"] = metadata

        # New list so the JSON column is flagged dirty
        session.state_history = [*session.state_history, entry]
        session.current_state = target
        await self.db.commit()

        written = await self._project(session, now)
        await self.events.emit(
            session.id,
            SessionEventType.STATE_CHANGE,
            StateChangePayload.transition(target.value, previous.value, metadata),
        )

        logger.info(
            "Agent session state changed",
            session_id=str(session.id),
            previous_state=previous.value,
            state=target.value,
        )
        return UpdateStateResult(
            session=AgentSessionView.from_model(session),
            previous_state=previous,
            state_file_written=written,
        )

    async def complete_session(
        self,
        session_id: UUID,
        outcome: SessionOutcome | str,
        error_message: Optional[str] = None,
    ) -> CompleteSessionResult:
        """
        Finish a session with a terminal outcome. Allowed from any active state.

        If the session already reached `done` through `update_state`, the
        outcome is recorded on that entry instead of adding a second one.

        Raises:
            SessionNotFoundError: unknown session
            InvalidStateError: session already completed
            ValidationError: unknown outcome
        """
        try:
            outcome = SessionOutcome(outcome)
        except ValueError as e:
            raise ValidationError(
                f"Invalid outcome: {outcome}. "
                f"Must be one of: {', '.join(o.value for o in SessionOutcome)}",
                fields=["outcome"],
            ) from e

        session = await self._load(session_id)
        self._require_active(session, "complete session")

        now = self.clock()
        metadata: dict[str, Any] = {"outcome": outcome.value}
        if error_message:
            metadata["error_message"] = error_message

        history = list(session.state_history)
        if session.current_state == SessionState.DONE and history:
            last = dict(history[-1])
            last["metadata"] = {**last.get("metadata", {}), **metadata}
            history[-1] = last
        else:
            history.append(
                {"state": SessionState.DONE.value, "timestamp": now.isoformat(), "metadata": metadata}
            )

        session.state_history = history
        session.current_state = SessionState.DONE
        session.outcome = outcome
        session.error_message = error_message
        session.completed_at = now
        await self.db.commit()

        path = await self._project_path(session)
        removed = remove_state_file(path, self.settings.SESSION_STATE_FILE)
        await self.events.emit(
            session.id,
            SessionEventType.STATE_CHANGE,
            StateChangePayload.completed(outcome, error_message),
        )

        duration_ms = int((now - as_utc(session.started_at)).total_seconds() * 1000)
        logger.info(
            "Agent session completed",
            session_id=str(session.id),
            outcome=outcome.value,
            duration_ms=duration_ms,
        )
        return CompleteSessionResult(
            session=AgentSessionView.from_model(session),
            outcome=outcome,
            duration_ms=duration_ms,
            state_file_removed=removed,
        )

    async def get_session(
        self,
        session_id: Optional[UUID] = None,
        ticket_id: Optional[UUID] = None,
    ) -> AgentSessionView:
        """Look up by session id, or the latest session of a ticket."""
        if (session_id is None) == (ticket_id is None):
            raise ValidationError(
                "Exactly one of session_id or ticket_id must be provided.",
                fields=["session_id", "ticket_id"],
            )

        if session_id is not None:
            return AgentSessionView.from_model(await self._load(session_id))

        result = await self.db.execute(
            select(AgentSession)
            .where(AgentSession.ticket_id == ticket_id)
            .order_by(AgentSession.started_at.desc())
            .limit(1)
        )
        session = result.scalar_one_or_none()
        if session is None:
            raise SessionNotFoundError(f"ticket {ticket_id}")
        return AgentSessionView.from_model(session)

    async def list_sessions(
        self,
        ticket_id: UUID,
        limit: Optional[int] = None,
    ) -> ListSessionsResult:
        ticket = await self.db.get(Ticket, ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)

        result = await self.db.execute(
            select(AgentSession)
            .where(AgentSession.ticket_id == ticket_id)
            .order_by(AgentSession.started_at.desc())
            .limit(limit or self.settings.SESSIONS_DEFAULT_LIMIT)
        )
        summaries = [
            SessionSummary(
                id=s.id,
                current_state=s.current_state,
                outcome=s.outcome,
                started_at=as_utc(s.started_at),
                completed_at=as_utc(s.completed_at),
                state_count=len(s.state_history),
            )
            for s in result.scalars().all()
        ]
        return ListSessionsResult(ticket_id=ticket_id, sessions=summaries)
