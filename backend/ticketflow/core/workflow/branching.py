"""
Branch Naming & Resolution
==========================

Deterministic branch names and the decision of which branch a ticket's work
lands on: the epic's shared branch when the ticket belongs to an epic, a
dedicated ticket branch otherwise.

Resolution order for a ticket in an epic:
1. Remembered epic branch still exists -> check it out.
2. Remembered branch is gone -> warn, fall through to 4.
3. Nothing remembered -> derive the epic branch, create it from base
   (or check it out) and remember it.
4. No epic, or 3 failed to create -> ticket branch.
"""

import asyncio
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketflow.core.errors import GitOperationError
from ticketflow.core.models import Epic, EpicWorkflowState, Ticket
from ticketflow.core.workflow.git_gateway import GitGateway

logger = structlog.get_logger()

SLUG_MAX_LENGTH = 50
SHORT_ID_LENGTH = 8

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


# ==========================================================================
# Naming
# ==========================================================================

def slugify(text: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to '-', trim, cap at 50 chars."""
    slug = _NON_ALNUM.sub("-", text.lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH]


def short_id(identifier: Any) -> str:
    return str(identifier)[:SHORT_ID_LENGTH]


def ticket_branch_name(ticket_id: Any, title: str) -> str:
    return f"feature/{short_id(ticket_id)}-{slugify(title)}"


def epic_branch_name(epic_id: Any, title: str) -> str:
    return f"feature/epic-{short_id(epic_id)}-{slugify(title)}"


def find_base_branch(git: GitGateway, working_dir: str) -> str:
    """`main` if present, else `master`, else `main`."""
    if git.branch_exists("main", working_dir):
        return "main"
    if git.branch_exists("master", working_dir):
        return "master"
    return "main"


# ==========================================================================
# Resolution
# ==========================================================================

@dataclass
class BranchResolution:
    """Branch chosen for a ticket, plus non-fatal problems met on the way."""
    branch_name: Optional[str] = None
    branch_created: bool = False
    using_epic_branch: bool = False
    warnings: list[str] = field(default_factory=list)


async def resolve_epic_branch(
    db: AsyncSession,
    git: GitGateway,
    ticket: Ticket,
    working_dir: str,
    now: datetime,
    id_factory=None,
) -> BranchResolution:
    """
    Try to place the ticket on its epic's shared branch.

    Git calls run in a worker thread. Epic workflow state changes are
    staged on `db`; the caller commits them
    together with the ticket update. Returns an empty resolution (no branch)
    when the ticket should fall back to its own branch.
    """
    resolution = BranchResolution()
    if ticket.epic_id is None:
        return resolution

    epic = await db.get(Epic, ticket.epic_id)
    if epic is None:
        return resolution

    result = await db.execute(
        select(EpicWorkflowState).where(EpicWorkflowState.epic_id == epic.id)
    )
    state = result.scalar_one_or_none()

    # Case 1/2: remembered branch
    remembered = state.epic_branch_name if state else None
    if remembered:
        if await asyncio.to_thread(git.branch_exists, remembered, working_dir):
            checkout = await asyncio.to_thread(git.checkout, remembered, working_dir)
            if not checkout.success:
                resolution.warnings.append(
                    f"Failed to checkout epic branch {remembered}: {checkout.error}"
                )
            state.current_ticket_id = ticket.id
            resolution.branch_name = remembered
            resolution.using_epic_branch = True
            return resolution

        # Stale: never recreate implicitly, start-epic-work supersedes it
        logger.warning("Remembered epic branch is gone", branch=remembered, epic_id=str(epic.id))
        resolution.warnings.append(
            f"Epic branch {remembered} no longer exists. "
            "Creating ticket-specific branch instead."
        )
        return resolution

    # Case 3: derive, create or check out, remember
    name = epic_branch_name(epic.id, epic.title)
    created = False
    if await asyncio.to_thread(git.branch_exists, name, working_dir):
        checkout = await asyncio.to_thread(git.checkout, name, working_dir)
        if not checkout.success:
            resolution.warnings.append(f"Failed to checkout epic branch {name}: {checkout.error}")
    else:
        base = await asyncio.to_thread(find_base_branch, git, working_dir)
        base_checkout = await asyncio.to_thread(git.checkout, base, working_dir)
        if not base_checkout.success:
            resolution.warnings.append(
                f"Failed to checkout base branch {base}: {base_checkout.error}"
            )
        create = await asyncio.to_thread(git.create_branch, name, working_dir)
        if not create.success:
            logger.warning("Epic branch creation failed", branch=name, error=create.error)
            resolution.warnings.append(
                f"Failed to create epic branch {name}: {create.error}. "
                "Using a ticket-specific branch instead."
            )
            return resolution
        created = True

    if state is None:
        state = EpicWorkflowState(epic_id=epic.id)
        if id_factory is not None:
            state.id = id_factory()
        db.add(state)
    state.epic_branch_name = name
    state.current_ticket_id = ticket.id
    if created or state.epic_branch_created_at is None:
        state.epic_branch_created_at = now

    resolution.branch_name = name
    resolution.branch_created = created
    resolution.using_epic_branch = True
    return resolution


def ensure_ticket_branch(
    git: GitGateway,
    ticket_id: UUID,
    title: str,
    working_dir: str,
) -> BranchResolution:
    """
    Check out the ticket's own branch, creating it from the base branch.

    Raises:
        GitOperationError: if the branch has to be created and creation fails
    """
    name = ticket_branch_name(ticket_id, title)
    resolution = BranchResolution(branch_name=name)

    if git.branch_exists(name, working_dir):
        checkout = git.checkout(name, working_dir)
        if not checkout.success:
            resolution.warnings.append(f"Failed to checkout branch {name}: {checkout.error}")
        return resolution

    base = find_base_branch(git, working_dir)
    base_checkout = git.checkout(base, working_dir)
    if not base_checkout.success:
        resolution.warnings.append(f"Failed to checkout base branch {base}: {base_checkout.error}")

    create = git.create_branch(name, working_dir)
    if not create.success:
        logger.error("Ticket branch creation failed", branch=name, error=create.error)
        raise GitOperationError(
            f"Failed to create branch {name}: {create.error}",
            command=create.command,
        )

    resolution.branch_created = True
    return resolution
