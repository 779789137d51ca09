"""
Session Event Log
=================

Append-only events per agent session, consumed by live observers.
Events are never mutated; `clear_events` drops a whole session's log.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketflow.core.config import Settings, get_settings
from ticketflow.core.errors import SessionNotFoundError, ValidationError
from ticketflow.core.models import AgentSession, SessionEvent, SessionEventType, SessionOutcome
from ticketflow.core.workflow.clock import Clock, as_utc, parse_timestamp, utc_now

logger = structlog.get_logger()


@dataclass
class SessionEventView:
    """Plain-data view of a stored event."""
    id: UUID
    session_id: UUID
    type: SessionEventType
    data: Optional[dict[str, Any]]
    sequence: int
    created_at: datetime

    @classmethod
    def from_model(cls, event: SessionEvent) -> "SessionEventView":
        return cls(
            id=event.id,
            session_id=event.session_id,
            type=event.type,
            data=event.data,
            sequence=event.sequence,
            created_at=as_utc(event.created_at),
        )


# ==========================================================================
# Payload Builders
# ==========================================================================

class StateChangePayload:
    """Factory for `state_change` event payloads."""

    # Metadata keys mirrored from a history entry into the event
    MIRRORED_KEYS = ("file", "testResult")

    @staticmethod
    def session_started() -> dict[str, Any]:
        return {"state": "idle", "message": "Session started"}

    @staticmethod
    def transition(
        state: str,
        previous_state: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        metadata = metadata or {}
        payload = {
            "state": state,
            "previous_state": previous_state,
            "message": metadata.get("message") or f"Transitioned to {state}",
        }
        for key in StateChangePayload.MIRRORED_KEYS:
            if key in metadata:
                payload[key] = metadata[key]
        return payload

    @staticmethod
    def completed(outcome: SessionOutcome, error_message: Optional[str] = None) -> dict[str, Any]:
        payload = {
            "state": "done",
            "outcome": outcome.value,
            "message": (
                "Session completed successfully"
                if outcome == SessionOutcome.SUCCESS
                else f"Session ended: {outcome.value}"
            ),
        }
        if error_message:
            payload["error"] = error_message
        return payload


# ==========================================================================
# Event Log
# ==========================================================================

class SessionEventLog:
    """Stores and queries session events."""

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

    async def _require_session(self, session_id: UUID) -> AgentSession:
        session = await self.db.get(AgentSession, session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def emit(
        self,
        session_id: UUID,
        event_type: SessionEventType | str,
        data: Optional[dict[str, Any]] = None,
    ) -> SessionEventView:
        """Append one event and commit."""
        try:
            event_type = SessionEventType(event_type)
        except ValueError as e:
            raise ValidationError(
                f"Invalid event type: {event_type}. "
                f"Must be one of: {', '.join(t.value for t in SessionEventType)}",
                fields=["type"],
            ) from e

        await self._require_session(session_id)

        result = await self.db.execute(
            select(func.max(SessionEvent.sequence)).where(SessionEvent.session_id == session_id)
        )
        last = result.scalar_one_or_none() or 0

        event = SessionEvent(
            id=self.id_factory(),
            session_id=session_id,
            type=event_type,
            data=data,
            sequence=last + 1,
            created_at=self.clock(),
        )
        self.db.add(event)
        await self.db.commit()

        logger.debug("Session event emitted", session_id=str(session_id), type=event_type.value)
        return SessionEventView.from_model(event)

    async def get_events(
        self,
        session_id: UUID,
        since: Optional[datetime | str] = None,
        limit: Optional[int] = None,
    ) -> list[SessionEventView]:
        """Events in emission order, optionally only those strictly after `since`."""
        await self._require_session(session_id)
        limit = limit or self.settings.EVENTS_DEFAULT_LIMIT

        query = select(SessionEvent).where(SessionEvent.session_id == session_id)
        if since is not None:
            query = query.where(SessionEvent.created_at > parse_timestamp(since))
        query = query.order_by(SessionEvent.created_at, SessionEvent.sequence).limit(limit)

        result = await self.db.execute(query)
        return [SessionEventView.from_model(e) for e in result.scalars().all()]

    async def clear_events(self, session_id: UUID) -> int:
        """Delete all events of a session. Returns the number removed."""
        await self._require_session(session_id)
        result = await self.db.execute(
            delete(SessionEvent).where(SessionEvent.session_id == session_id)
        )
        await self.db.commit()
        logger.info("Session events cleared", session_id=str(session_id), count=result.rowcount)
        return result.rowcount
