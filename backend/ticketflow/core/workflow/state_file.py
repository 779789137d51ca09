"""
Projected Session File
======================

Best-effort JSON mirror of the active session, written inside the project
checkout so out-of-process hooks can read the current state without the
database. The database stays authoritative; nothing in the core reads this
file back to make decisions.
"""

import json
from pathlib import Path
from typing import Any, Optional

import structlog

from ticketflow.core.models import AgentSession
from ticketflow.core.workflow.clock import as_utc

logger = structlog.get_logger()


def state_file_path(project_path: str, relative_path: str) -> Path:
    return Path(project_path) / relative_path


def build_state_document(session: AgentSession, updated_at: str) -> dict[str, Any]:
    return {
        "session_id": str(session.id),
        "ticket_id": str(session.ticket_id),
        "current_state": session.current_state.value,
        "state_history": [entry["state"] for entry in session.state_history],
        "started_at": as_utc(session.started_at).isoformat(),
        "updated_at": updated_at,
    }


def write_state_file(
    project_path: Optional[str],
    relative_path: str,
    document: dict[str, Any],
) -> bool:
    """
    Write the projected file. Returns False instead of raising.

    The project directory itself must exist; only the intermediate
    directories under it (e.g. `.claude/`) are created.
    """
    if not project_path or not Path(project_path).is_dir():
        logger.warning("Project directory missing, state file not written", path=project_path)
        return False

    target = state_file_path(project_path, relative_path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(document, indent=2), encoding="utf-8")
    except OSError as e:
        logger.warning("Failed to write state file", path=str(target), error=str(e))
        return False
    return True


def remove_state_file(project_path: Optional[str], relative_path: str) -> bool:
    """Delete the projected file. True when no file is left behind."""
    if not project_path:
        return True

    target = state_file_path(project_path, relative_path)
    try:
        target.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Failed to remove state file", path=str(target), error=str(e))
        return False
    return True


def read_state_file(project_path: str, relative_path: str) -> Optional[dict[str, Any]]:
    """Read the projected file, None if absent or unreadable."""
    target = state_file_path(project_path, relative_path)
    try:
        return json.loads(target.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
