"""
Workflow Controller
===================

Ticket and epic work-cycle operations on top of the git gateway.

Each operation has one primary effect committed in a single step (status and
branch on the ticket, remembered epic branch). Bookkeeping that follows
(workflow state, audit comments, next-ticket suggestion) runs after that
commit; a failure there is rolled back on its own and reported as a warning.

Git failures that leave no usable branch abort before anything is written.
The gateway is synchronous; every call is pushed to a worker thread so a
slow git command never stalls the event loop.
"""

import asyncio
import shlex
from dataclasses import dataclass, field
from typing import Callable, Optional
from uuid import UUID, uuid4

import structlog
from sqlalchemy import case, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketflow.core.board.comments import add_comment
from ticketflow.core.config import Settings, get_settings
from ticketflow.core.errors import (
    EpicNotFoundError,
    GitOperationError,
    InvalidStateError,
    ProjectNotFoundError,
    TicketNotFoundError,
)
from ticketflow.core.models import (
    CommentType,
    Epic,
    EpicWorkflowState,
    Project,
    Ticket,
    TicketPriority,
    TicketStatus,
    TicketWorkflowState,
    WorkflowPhase,
)
from ticketflow.core.workflow.branching import (
    BranchResolution,
    ensure_ticket_branch,
    epic_branch_name,
    find_base_branch,
    resolve_epic_branch,
)
from ticketflow.core.workflow.clock import Clock, utc_now
from ticketflow.core.workflow.git_gateway import GitGateway

logger = structlog.get_logger()

ALREADY_IN_PROGRESS = "Ticket is already in progress."

# Statuses from which work can no longer be completed
REVIEW_OR_DONE = (TicketStatus.AI_REVIEW, TicketStatus.HUMAN_REVIEW, TicketStatus.DONE)


# ==========================================================================
# Result Types
# ==========================================================================

@dataclass
class StartWorkResult:
    ticket: Ticket
    branch: Optional[str]
    branch_created: bool = False
    using_epic_branch: bool = False
    epic_branch: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class NextTicketSuggestion:
    id: UUID
    title: str
    status: TicketStatus
    priority: Optional[TicketPriority]


@dataclass
class CompleteWorkResult:
    ticket: Ticket
    work_summary: str
    next_steps: list[str]
    suggested_next_ticket: Optional[NextTicketSuggestion] = None
    commits_info: str = ""
    changed_files: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class StartEpicWorkResult:
    epic: Epic
    branch: str
    branch_created: bool
    tickets: list[Ticket] = field(default_factory=list)
    tickets_total: int = 0
    tickets_done: int = 0
    warnings: list[str] = field(default_factory=list)


# ==========================================================================
# Controller
# ==========================================================================

class WorkflowController:
    """
    Usage:
        controller = WorkflowController(db, SubprocessGitGateway())
        result = await controller.start_work(ticket_id)
        ...
        result = await controller.complete_work(ticket_id, summary="...")
    """

    def __init__(
        self,
        db: AsyncSession,
        git: GitGateway,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        id_factory: Optional[Callable[[], UUID]] = None,
    ):
        self.db = db
        self.git = git
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        self.id_factory = id_factory or uuid4

    # ----------------------------------------------------------------------
    # Helpers
    # ----------------------------------------------------------------------

    async def _load_ticket(self, ticket_id: UUID) -> Ticket:
        ticket = await self.db.get(Ticket, ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        return ticket

    async def _project_path(self, project_id: UUID) -> str:
        project = await self.db.get(Project, project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project.path

    async def _require_repository(self, working_dir: str) -> None:
        if not await asyncio.to_thread(self.git.is_repository, working_dir):
            logger.error("Not a git repository", path=working_dir)
            raise GitOperationError(
                f"Not a git repository: {working_dir}. Initialize git first.",
                command=f"{self.settings.GIT_BINARY} rev-parse --git-dir",
            )

    async def _best_effort(self, label: str, step, warnings: list[str], **context) -> None:
        """Run one post-commit DB step; on failure roll it back and warn."""
        try:
            await step()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"{label} failed", error=str(e), **context)
            warnings.append(f"{label} failed: {e}")

    async def _workflow_state(self, ticket_id: UUID) -> Optional[TicketWorkflowState]:
        result = await self.db.execute(
            select(TicketWorkflowState).where(TicketWorkflowState.ticket_id == ticket_id)
        )
        return result.scalar_one_or_none()

    async def _epic_tickets(self, epic_id: UUID) -> list[Ticket]:
        result = await self.db.execute(
            select(Ticket).where(Ticket.epic_id == epic_id).order_by(Ticket.position)
        )
        return list(result.scalars().all())

    # ----------------------------------------------------------------------
    # Start Work
    # ----------------------------------------------------------------------

    async def start_work(self, ticket_id: UUID) -> StartWorkResult:
        """
        Put a ticket in progress on its branch.

        Calling it again on a ticket already in progress with a branch is a
        no-op that returns the recorded branch and a warning.

        Raises:
            TicketNotFoundError: unknown ticket
            GitOperationError: not a repository, or the ticket branch could
                not be created
        """
        ticket = await self._load_ticket(ticket_id)

        if ticket.status == TicketStatus.IN_PROGRESS and ticket.branch_name:
            is_epic = ticket.branch_name.startswith("feature/epic-")
            return StartWorkResult(
                ticket=ticket,
                branch=ticket.branch_name,
                using_epic_branch=is_epic,
                epic_branch=ticket.branch_name if is_epic else None,
                warnings=[ALREADY_IN_PROGRESS],
            )

        working_dir = await self._project_path(ticket.project_id)
        await self._require_repository(working_dir)

        try:
            resolution = await resolve_epic_branch(
                self.db, self.git, ticket, working_dir, self.clock(), self.id_factory
            )
            if resolution.branch_name is None:
                fallback = await asyncio.to_thread(
                    ensure_ticket_branch, self.git, ticket.id, ticket.title, working_dir
                )
                fallback.warnings[:0] = resolution.warnings
                resolution = fallback
        except GitOperationError:
            # Drop any staged epic state
            await self.db.rollback()
            raise

        # Primary effect
        ticket.status = TicketStatus.IN_PROGRESS
        ticket.branch_name = resolution.branch_name
        ticket.completed_at = None
        await self.db.commit()

        logger.info(
            "Work started",
            ticket_id=str(ticket_id),
            branch=resolution.branch_name,
            created=resolution.branch_created,
            epic_branch=resolution.using_epic_branch,
        )

        warnings = list(resolution.warnings)
        await self._best_effort(
            "Workflow state tracking",
            lambda: self._reset_workflow_state(ticket_id),
            warnings,
            ticket_id=str(ticket_id),
        )
        await self._best_effort(
            "Posting starting comment",
            lambda: self._post_start_comment(ticket_id, resolution),
            warnings,
            ticket_id=str(ticket_id),
        )

        await self.db.refresh(ticket)
        return StartWorkResult(
            ticket=ticket,
            branch=resolution.branch_name,
            branch_created=resolution.branch_created,
            using_epic_branch=resolution.using_epic_branch,
            epic_branch=resolution.branch_name if resolution.using_epic_branch else None,
            warnings=warnings,
        )

    async def _reset_workflow_state(self, ticket_id: UUID) -> None:
        """Fresh attempt: phase implementation, counters zeroed."""
        state = await self._workflow_state(ticket_id)
        if state is None:
            state = TicketWorkflowState(id=self.id_factory(), ticket_id=ticket_id)
            self.db.add(state)
        state.current_phase = WorkflowPhase.IMPLEMENTATION
        state.review_iteration = 0
        state.findings_count = 0
        state.findings_fixed = 0
        state.demo_generated = False
        await self.db.commit()

    async def _post_start_comment(self, ticket_id: UUID, resolution: BranchResolution) -> None:
        suffix = " (epic branch)" if resolution.using_epic_branch else ""
        await add_comment(
            self.db,
            ticket_id,
            f"Started work on ticket. Branch: `{resolution.branch_name}`{suffix}",
            author=self.settings.COMMENT_AUTHOR,
            comment_type=CommentType.PROGRESS,
        )

    # ----------------------------------------------------------------------
    # Complete Work
    # ----------------------------------------------------------------------

    async def complete_work(self, ticket_id: UUID, summary: Optional[str] = None) -> CompleteWorkResult:
        """
        Hand a ticket over to AI review.

        Raises:
            TicketNotFoundError: unknown ticket
            InvalidStateError: ticket already in review or done
        """
        ticket = await self._load_ticket(ticket_id)
        if ticket.status in REVIEW_OR_DONE:
            raise InvalidStateError("ticket", ticket.status.value, "in_progress", "complete work")

        title = ticket.title
        project_id = ticket.project_id
        working_dir = await self._project_path(project_id)
        commits_info, changed_files = await asyncio.to_thread(self._gather_git_info, working_dir)

        # Primary effect
        ticket.status = TicketStatus.AI_REVIEW
        await self.db.commit()
        logger.info("Work completed", ticket_id=str(ticket_id), commits=len(commits_info.splitlines()))

        warnings: list[str] = []
        await self._best_effort(
            "Workflow state tracking",
            lambda: self._advance_review_iteration(ticket_id),
            warnings,
            ticket_id=str(ticket_id),
        )

        work_summary = self._format_work_summary(title, summary, commits_info, changed_files)
        await self._best_effort(
            "Saving work summary",
            lambda: add_comment(
                self.db,
                ticket_id,
                work_summary,
                author=self.settings.AGENT_COMMENT_AUTHOR,
                comment_type=CommentType.WORK_SUMMARY,
            ),
            warnings,
            ticket_id=str(ticket_id),
        )

        suggestion = await self._suggest_next_ticket(project_id, ticket_id)

        await self.db.refresh(ticket)
        return CompleteWorkResult(
            ticket=ticket,
            work_summary=work_summary,
            next_steps=list(self.settings.NEXT_STEPS),
            suggested_next_ticket=suggestion,
            commits_info=commits_info,
            changed_files=changed_files,
            warnings=warnings,
        )

    def _gather_git_info(self, working_dir: str) -> tuple[str, list[str]]:
        """Commits and changed files since the base branch; empty when unavailable."""
        base = find_base_branch(self.git, working_dir)
        git = shlex.quote(self.settings.GIT_BINARY)

        commits = self.git.run(
            f"{git} log {base}..HEAD --oneline --no-decorate 2>/dev/null"
            f" || {git} log -10 --oneline --no-decorate",
            working_dir,
        )
        files = self.git.run(
            f"{git} diff {base}..HEAD --name-only 2>/dev/null"
            f" || {git} diff HEAD~5..HEAD --name-only 2>/dev/null",
            working_dir,
        )

        commits_info = commits.output.strip() if commits.success else ""
        changed_files = (
            [line.strip() for line in files.output.splitlines() if line.strip()]
            if files.success
            else []
        )
        return commits_info, changed_files

    @staticmethod
    def _format_work_summary(
        title: str,
        summary: Optional[str],
        commits_info: str,
        changed_files: list[str],
    ) -> str:
        commits = commits_info or "No commits found"
        if summary:
            text = f"## Work Summary\n\n{summary}\n\n### Commits\n```\n{commits}\n```"
        else:
            text = f"Completed work on: {title}\n\nCommits:\n{commits}"
        if changed_files:
            text += "\n\n### Changed Files\n" + "\n".join(f"- {f}" for f in changed_files)
        return text

    async def _advance_review_iteration(self, ticket_id: UUID) -> None:
        state = await self._workflow_state(ticket_id)
        if state is None:
            self.db.add(
                TicketWorkflowState(
                    id=self.id_factory(),
                    ticket_id=ticket_id,
                    current_phase=WorkflowPhase.AI_REVIEW,
                    review_iteration=1,
                    findings_count=0,
                    findings_fixed=0,
                    demo_generated=False,
                )
            )
        else:
            state.current_phase = WorkflowPhase.AI_REVIEW
            state.review_iteration += 1
        await self.db.commit()

    async def _suggest_next_ticket(
        self,
        project_id: UUID,
        exclude_id: UUID,
    ) -> Optional[NextTicketSuggestion]:
        """Ready before backlog, then by position. Failures are swallowed."""
        ready_first = case((Ticket.status == TicketStatus.READY, 0), else_=1)
        try:
            result = await self.db.execute(
                select(Ticket)
                .where(
                    Ticket.project_id == project_id,
                    Ticket.id != exclude_id,
                    Ticket.status.in_([TicketStatus.READY, TicketStatus.BACKLOG]),
                )
                .order_by(ready_first, Ticket.position)
                .limit(1)
            )
            candidate = result.scalars().first()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning("Next ticket suggestion failed", project_id=str(project_id), error=str(e))
            return None

        if candidate is None:
            return None
        return NextTicketSuggestion(
            id=candidate.id,
            title=candidate.title,
            status=candidate.status,
            priority=candidate.priority,
        )

    # ----------------------------------------------------------------------
    # Start Epic Work
    # ----------------------------------------------------------------------

    async def start_epic_work(self, epic_id: UUID) -> StartEpicWorkResult:
        """
        Check out (or create) the epic's shared branch.

        Every git failure here is fatal: an epic without a working branch
        cannot be launched.

        Raises:
            EpicNotFoundError: unknown epic
            GitOperationError: not a repository, or checkout/creation failed
        """
        epic = await self.db.get(Epic, epic_id)
        if epic is None:
            raise EpicNotFoundError(epic_id)

        working_dir = await self._project_path(epic.project_id)
        await self._require_repository(working_dir)

        result = await self.db.execute(
            select(EpicWorkflowState).where(EpicWorkflowState.epic_id == epic_id)
        )
        state = result.scalar_one_or_none()
        remembered = state.epic_branch_name if state else None

        # Live remembered branch: check out, no mutation
        if remembered and await asyncio.to_thread(self.git.branch_exists, remembered, working_dir):
            await self._checkout_or_raise(remembered, working_dir)
            tickets = await self._epic_tickets(epic_id)
            return StartEpicWorkResult(
                epic=epic,
                branch=remembered,
                branch_created=False,
                tickets=tickets,
                tickets_total=state.tickets_total,
                tickets_done=state.tickets_done,
            )

        warnings: list[str] = []
        if remembered:
            warnings.append(f"Epic branch {remembered} no longer exists. It has been superseded.")

        name = epic_branch_name(epic.id, epic.title)
        created = False
        if await asyncio.to_thread(self.git.branch_exists, name, working_dir):
            await self._checkout_or_raise(name, working_dir)
        else:
            base = await asyncio.to_thread(find_base_branch, self.git, working_dir)
            checkout = await asyncio.to_thread(self.git.checkout, base, working_dir)
            if not checkout.success:
                logger.error("Base branch checkout failed", base=base, error=checkout.error)
                raise GitOperationError(
                    f"Failed to checkout base branch '{base}': {checkout.error}. "
                    "Commit or stash changes first.",
                    command=checkout.command or f"{self.settings.GIT_BINARY} checkout {base}",
                )
            create = await asyncio.to_thread(self.git.create_branch, name, working_dir)
            if not create.success:
                logger.error("Epic branch creation failed", branch=name, error=create.error)
                raise GitOperationError(
                    f"Failed to create epic branch {name}: {create.error}",
                    command=create.command or f"{self.settings.GIT_BINARY} checkout -b {name}",
                )
            created = True

        tickets = await self._epic_tickets(epic_id)
        now = self.clock()
        if state is None:
            state = EpicWorkflowState(id=self.id_factory(), epic_id=epic_id)
            self.db.add(state)
        state.epic_branch_name = name
        if created or remembered != name or state.epic_branch_created_at is None:
            state.epic_branch_created_at = now
        state.tickets_total = len(tickets)
        state.tickets_done = sum(1 for t in tickets if t.status == TicketStatus.DONE)
        await self.db.commit()

        logger.info(
            "Epic work started",
            epic_id=str(epic_id),
            branch=name,
            created=created,
            tickets_total=state.tickets_total,
        )
        return StartEpicWorkResult(
            epic=epic,
            branch=name,
            branch_created=created,
            tickets=tickets,
            tickets_total=state.tickets_total,
            tickets_done=state.tickets_done,
            warnings=warnings,
        )

    async def _checkout_or_raise(self, name: str, working_dir: str) -> None:
        checkout = await asyncio.to_thread(self.git.checkout, name, working_dir)
        if not checkout.success:
            logger.error("Epic branch checkout failed", branch=name, error=checkout.error)
            raise GitOperationError(
                f"Failed to checkout epic branch {name}: {checkout.error}",
                command=checkout.command or f"{self.settings.GIT_BINARY} checkout {name}",
            )
