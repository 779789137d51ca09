"""
Ticketflow - API Dependencies
=============================

Shared dependencies for FastAPI endpoints. Tests override `get_db` and
`get_git_gateway` through `app.dependency_overrides`.
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ticketflow.core.config import Settings, get_settings
from ticketflow.core.database import get_db
from ticketflow.core.workflow import (
    AgentSessionManager,
    GitGateway,
    ReviewManager,
    SessionEventLog,
    SubprocessGitGateway,
    WorkflowController,
)


# ==========================================================================
# Infrastructure
# ==========================================================================

def get_git_gateway() -> GitGateway:
    """Real git gateway backed by the git binary."""
    return SubprocessGitGateway(get_settings())


DbSession = Annotated[AsyncSession, Depends(get_db)]
Git = Annotated[GitGateway, Depends(get_git_gateway)]
AppSettings = Annotated[Settings, Depends(get_settings)]


# ==========================================================================
# Services
# ==========================================================================

def get_workflow_controller(db: DbSession, git: Git, settings: AppSettings) -> WorkflowController:
    return WorkflowController(db, git, settings)


def get_session_manager(db: DbSession, settings: AppSettings) -> AgentSessionManager:
    return AgentSessionManager(db, settings)


def get_event_log(db: DbSession, settings: AppSettings) -> SessionEventLog:
    return SessionEventLog(db, settings)


def get_review_manager(db: DbSession) -> ReviewManager:
    return ReviewManager(db)


# Use these in endpoint signatures for cleaner code
Controller = Annotated[WorkflowController, Depends(get_workflow_controller)]
SessionManager = Annotated[AgentSessionManager, Depends(get_session_manager)]
EventLog = Annotated[SessionEventLog, Depends(get_event_log)]
ReviewService = Annotated[ReviewManager, Depends(get_review_manager)]
