"""
Ticketflow - Workflow & Session Orchestration
=============================================

Components:
- GitGateway: narrow, never-raising interface over git
- branching: deterministic branch names and epic/ticket branch resolution
- WorkflowController: start/complete work on tickets, start epic work
- AgentSessionManager: persisted agent session state machine
- SessionEventLog: append-only per-session events
- ReviewManager: AI review findings, demo scripts and human feedback
"""

from ticketflow.core.workflow.branching import (
    BranchResolution,
    ensure_ticket_branch,
    epic_branch_name,
    find_base_branch,
    resolve_epic_branch,
    short_id,
    slugify,
    ticket_branch_name,
)
from ticketflow.core.workflow.controller import (
    CompleteWorkResult,
    NextTicketSuggestion,
    StartEpicWorkResult,
    StartWorkResult,
    WorkflowController,
)
from ticketflow.core.workflow.events import SessionEventLog, SessionEventView, StateChangePayload
from ticketflow.core.workflow.git_gateway import GitGateway, GitResult, SubprocessGitGateway
from ticketflow.core.workflow.review import FeedbackResult, ReviewCompletionStatus, ReviewManager
from ticketflow.core.workflow.sessions import (
    ALLOWED_TRANSITIONS,
    AgentSessionManager,
    AgentSessionView,
    CompleteSessionResult,
    CreateSessionResult,
    ListSessionsResult,
    SessionSummary,
    UpdateStateResult,
    is_transition_allowed,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AgentSessionManager",
    "AgentSessionView",
    "BranchResolution",
    "CompleteSessionResult",
    "CompleteWorkResult",
    "CreateSessionResult",
    "FeedbackResult",
    "GitGateway",
    "GitResult",
    "ListSessionsResult",
    "NextTicketSuggestion",
    "ReviewCompletionStatus",
    "ReviewManager",
    "SessionEventLog",
    "SessionEventView",
    "SessionSummary",
    "StartEpicWorkResult",
    "StartWorkResult",
    "StateChangePayload",
    "SubprocessGitGateway",
    "UpdateStateResult",
    "WorkflowController",
    "ensure_ticket_branch",
    "epic_branch_name",
    "find_base_branch",
    "is_transition_allowed",
    "resolve_epic_branch",
    "short_id",
    "slugify",
    "ticket_branch_name",
]
