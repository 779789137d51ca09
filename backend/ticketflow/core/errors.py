"""
Ticketflow - Errors
===================

Exception hierarchy raised by the core. The API layer maps each family to
an HTTP status; advisory failures never reach here (they become warnings).
"""

from typing import Any, Optional


class CoreError(Exception):
    """Base class for all business errors."""

    code = "CORE_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


# ==========================================================================
# Not Found
# ==========================================================================

class NotFoundError(CoreError):
    """A referenced entity does not exist."""

    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Any, remedy: str):
        super().__init__(
            f"{resource} not found: {identifier}. {remedy}",
            details={"resource": resource.lower(), "id": str(identifier)},
        )


class TicketNotFoundError(NotFoundError):
    code = "TICKET_NOT_FOUND"

    def __init__(self, ticket_id: Any):
        super().__init__("Ticket", ticket_id, "List tickets to find the correct ID.")


class EpicNotFoundError(NotFoundError):
    code = "EPIC_NOT_FOUND"

    def __init__(self, epic_id: Any):
        super().__init__("Epic", epic_id, "List epics to find the correct ID.")


class ProjectNotFoundError(NotFoundError):
    code = "PROJECT_NOT_FOUND"

    def __init__(self, project_id: Any):
        super().__init__("Project", project_id, "List projects to see registered projects.")


class SessionNotFoundError(NotFoundError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: Any):
        super().__init__("Session", session_id, "Create a session before updating it.")


class FindingNotFoundError(NotFoundError):
    code = "FINDING_NOT_FOUND"

    def __init__(self, finding_id: Any):
        super().__init__("Review finding", finding_id, "List the ticket's findings to see valid IDs.")


class DemoScriptNotFoundError(NotFoundError):
    code = "DEMO_NOT_FOUND"

    def __init__(self, identifier: Any):
        super().__init__("Demo script", identifier, "Generate a demo script first.")


# ==========================================================================
# Invalid State
# ==========================================================================

class InvalidStateError(CoreError):
    """Operation is not allowed in the entity's current state."""

    code = "INVALID_STATE"

    def __init__(self, resource: str, current: str, required: str, action: str):
        super().__init__(
            f"Cannot {action}: {resource} is in '{current}' state, must be '{required}'.",
            details={
                "resource": resource,
                "current": current,
                "required": required,
                "action": action,
            },
        )
        self.resource = resource
        self.current = current
        self.required = required


class InvalidTransitionError(InvalidStateError):
    """Session state edge is not in the adjacency table."""

    code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str, allowed: list[str]):
        super().__init__(
            "session",
            current,
            " or ".join(allowed) or "active",
            f"transition to '{target}'",
        )
        self.details["target"] = target
        self.details["allowed"] = allowed


class ActiveSessionExistsError(InvalidStateError):
    """A ticket already has an uncompleted session."""

    code = "ACTIVE_SESSION_EXISTS"

    def __init__(self, ticket_id: Any, session_id: Any):
        super().__init__(
            "ticket",
            "has active session",
            "no active session",
            "create session",
        )
        self.message = (
            f"Ticket {ticket_id} already has an active session ({session_id}). "
            "Complete it before starting a new one."
        )
        self.details["session_id"] = str(session_id)


# ==========================================================================
# Validation / Git
# ==========================================================================

class ValidationError(CoreError):
    """Input is malformed or semantically empty."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, fields: Optional[list[str]] = None):
        super().__init__(message, details={"fields": fields or []})


class GitOperationError(CoreError):
    """A git command the operation depends on failed."""

    code = "GIT_ERROR"

    def __init__(self, message: str, command: Optional[str] = None):
        super().__init__(
            f"Git operation failed: {message}",
            details={"command": command} if command else {},
        )
        self.command = command
