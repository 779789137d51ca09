"""
Ticketflow - Review & Demo Loop Tests
=====================================

Findings during AI review, demo scripts, and the human verdict that closes
the ticket.
"""

from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketflow.core.board import delete_ticket
from ticketflow.core.errors import (
    DemoScriptNotFoundError,
    FindingNotFoundError,
    InvalidStateError,
    TicketNotFoundError,
    ValidationError,
)
from ticketflow.core.models import (
    DemoScript,
    FindingStatus,
    ReviewFinding,
    Ticket,
    TicketStatus,
    TicketWorkflowState,
    WorkflowPhase,
)

API = "/api/v1"

STEPS = [
    {"order": 2, "description": "Submit the login form", "expected_outcome": "Dashboard loads"},
    {"order": 1, "description": "Open /login", "expected_outcome": "Form is shown", "type": "visual"},
]


async def workflow_state(db: AsyncSession, ticket: Ticket) -> TicketWorkflowState:
    result = await db.execute(
        select(TicketWorkflowState).where(TicketWorkflowState.ticket_id == ticket.id)
    )
    return result.scalar_one_or_none()


@pytest_asyncio.fixture
async def reviewed(ticket_factory) -> Ticket:
    """Ticket waiting in AI review."""
    return await ticket_factory("Fix login redirect", status=TicketStatus.AI_REVIEW)


async def file_finding(review_manager, ticket: Ticket, severity: str = "major", **kwargs):
    return await review_manager.submit_finding(
        ticket.id,
        kwargs.pop("agent", "code-reviewer"),
        severity,
        kwargs.pop("category", "logic"),
        kwargs.pop("description", "Redirect loop when session expires"),
        **kwargs,
    )


# ==========================================================================
# Findings
# ==========================================================================

class TestFindings:
    """Filing and resolving review findings."""

    async def test_submit_records_iteration_and_count(self, review_manager, db_session, reviewed):
        finding = await file_finding(
            review_manager, reviewed, file_path="src/login.py", line_number=42, suggested_fix="Check expiry"
        )

        assert finding.status == FindingStatus.OPEN
        assert finding.iteration == 1
        assert finding.file_path == "src/login.py"
        assert finding.line_number == 42

        state = await workflow_state(db_session, reviewed)
        assert state.findings_count == 1
        assert state.findings_fixed == 0
        assert state.current_phase == WorkflowPhase.AI_REVIEW

    async def test_iteration_follows_workflow_state(self, review_manager, db_session, reviewed):
        db_session.add(
            TicketWorkflowState(
                ticket_id=reviewed.id,
                current_phase=WorkflowPhase.AI_REVIEW,
                review_iteration=3,
            )
        )
        await db_session.commit()

        finding = await file_finding(review_manager, reviewed)

        assert finding.iteration == 3

    async def test_requires_ai_review(self, review_manager, ticket):
        with pytest.raises(InvalidStateError) as exc_info:
            await file_finding(review_manager, ticket)

        assert (exc_info.value.current, exc_info.value.required) == ("backlog", "ai_review")

    async def test_unknown_ticket(self, review_manager):
        with pytest.raises(TicketNotFoundError):
            await review_manager.submit_finding(uuid4(), "code-reviewer", "minor", "style", "Naming")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"severity": "blocker"},
            {"agent": "linter"},
            {"description": "   "},
            {"category": ""},
        ],
    )
    async def test_rejects_bad_input(self, review_manager, reviewed, overrides):
        kwargs = {"severity": "major", **overrides}
        with pytest.raises(ValidationError):
            await file_finding(review_manager, reviewed, **kwargs)

    async def test_fixed_is_counted_once(self, review_manager, db_session, reviewed):
        finding = await file_finding(review_manager, reviewed)

        await review_manager.mark_finding(finding.id, FindingStatus.FIXED)
        await review_manager.mark_finding(finding.id, "fixed")

        state = await workflow_state(db_session, reviewed)
        assert state.findings_fixed == 1
        assert finding.fixed_at is not None

        await review_manager.mark_finding(finding.id, FindingStatus.WONT_FIX)
        assert finding.status == FindingStatus.WONT_FIX
        assert finding.fixed_at is None
        assert state.findings_fixed == 1

    async def test_cannot_reopen(self, review_manager, reviewed):
        finding = await file_finding(review_manager, reviewed)

        with pytest.raises(ValidationError):
            await review_manager.mark_finding(finding.id, FindingStatus.OPEN)

    async def test_unknown_finding(self, review_manager):
        with pytest.raises(FindingNotFoundError) as exc_info:
            await review_manager.mark_finding(uuid4(), FindingStatus.FIXED)

        assert exc_info.value.code == "FINDING_NOT_FOUND"

    async def test_filters_newest_first(self, review_manager, reviewed):
        first = await file_finding(review_manager, reviewed, severity="minor")
        second = await file_finding(
            review_manager, reviewed, severity="major", agent="silent-failure-hunter"
        )

        assert [f.id for f in await review_manager.get_findings(reviewed.id)] == [second.id, first.id]
        assert [f.id for f in await review_manager.get_findings(reviewed.id, severity="minor")] == [first.id]
        assert [
            f.id for f in await review_manager.get_findings(reviewed.id, agent="silent-failure-hunter")
        ] == [second.id]
        assert await review_manager.get_findings(reviewed.id, status="fixed") == []


# ==========================================================================
# Review Completion
# ==========================================================================

class TestReviewCompletion:
    """Critical and major findings gate human review."""

    async def test_no_findings_is_complete(self, review_manager, reviewed):
        result = await review_manager.check_complete(reviewed.id)

        assert result.complete is True
        assert result.can_proceed_to_human_review is True
        assert result.message == (
            "Review complete. All critical and major findings are resolved. Total: 0, Fixed: 0."
        )

    async def test_open_major_blocks(self, review_manager, reviewed):
        await file_finding(review_manager, reviewed, severity="critical")
        await file_finding(review_manager, reviewed, severity="major")
        await file_finding(review_manager, reviewed, severity="minor")
        await file_finding(review_manager, reviewed, severity="suggestion")

        result = await review_manager.check_complete(reviewed.id)

        assert result.complete is False
        assert (result.open_critical, result.open_major) == (1, 1)
        assert (result.open_minor, result.open_suggestion) == (1, 1)
        assert result.total_findings == 4
        assert result.message == "Cannot proceed. Open critical: 1, Open major: 1. Fix these first."

    async def test_minor_findings_do_not_block(self, review_manager, reviewed):
        major = await file_finding(review_manager, reviewed, severity="major")
        await file_finding(review_manager, reviewed, severity="minor")
        await review_manager.mark_finding(major.id, FindingStatus.FIXED)

        result = await review_manager.check_complete(reviewed.id)

        assert result.complete is True
        assert result.open_minor == 1
        assert (result.total_findings, result.fixed_findings) == (2, 1)


# ==========================================================================
# Demo Script
# ==========================================================================

class TestDemoScript:
    """Demo generation and step tracking."""

    async def test_generate_moves_to_human_review(self, review_manager, db_session, reviewed):
        demo = await review_manager.generate_demo(reviewed.id, STEPS)

        assert [s["order"] for s in demo.steps] == [1, 2]
        assert demo.steps[0]["type"] == "visual"
        assert demo.steps[1]["type"] == "manual"
        assert {s["status"] for s in demo.steps} == {"pending"}
        assert reviewed.status == TicketStatus.HUMAN_REVIEW

        state = await workflow_state(db_session, reviewed)
        assert state.demo_generated is True
        assert state.current_phase == WorkflowPhase.HUMAN_REVIEW

    async def test_open_findings_block_generation(self, review_manager, reviewed):
        await file_finding(review_manager, reviewed, severity="critical")

        with pytest.raises(ValidationError) as exc_info:
            await review_manager.generate_demo(reviewed.id, STEPS)

        assert str(exc_info.value) == (
            "Cannot generate demo: 1 critical and 0 major findings are still open."
        )
        assert reviewed.status == TicketStatus.AI_REVIEW

    async def test_requires_ai_review(self, review_manager, ticket):
        with pytest.raises(InvalidStateError):
            await review_manager.generate_demo(ticket.id, STEPS)

    async def test_no_second_demo_while_pending(self, review_manager, reviewed):
        await review_manager.generate_demo(reviewed.id, STEPS)

        with pytest.raises(InvalidStateError):
            await review_manager.generate_demo(reviewed.id, STEPS)

    @pytest.mark.parametrize(
        "steps",
        [
            [],
            [{"description": "No order", "expected_outcome": "x"}],
            [{"order": 1, "description": "", "expected_outcome": "x"}],
            [
                {"order": 1, "description": "a", "expected_outcome": "x"},
                {"order": 1, "description": "b", "expected_outcome": "y"},
            ],
            [{"order": 1, "description": "a", "expected_outcome": "x", "type": "scripted"}],
        ],
    )
    async def test_malformed_steps(self, review_manager, reviewed, steps):
        with pytest.raises(ValidationError):
            await review_manager.generate_demo(reviewed.id, steps)

    async def test_update_step(self, review_manager, reviewed):
        demo = await review_manager.generate_demo(reviewed.id, STEPS)

        updated = await review_manager.update_demo_step(demo.id, 2, "failed", notes="Spinner never stops")

        step = next(s for s in updated.steps if s["order"] == 2)
        assert step["status"] == "failed"
        assert step["notes"] == "Spinner never stops"
        assert next(s for s in updated.steps if s["order"] == 1)["status"] == "pending"

    async def test_update_unknown_step(self, review_manager, reviewed):
        demo = await review_manager.generate_demo(reviewed.id, STEPS)

        with pytest.raises(ValidationError):
            await review_manager.update_demo_step(demo.id, 9, "passed")

    async def test_update_unknown_demo(self, review_manager):
        with pytest.raises(DemoScriptNotFoundError):
            await review_manager.update_demo_step(uuid4(), 1, "passed")

    async def test_get_demo_without_one(self, review_manager, reviewed):
        with pytest.raises(DemoScriptNotFoundError):
            await review_manager.get_demo(reviewed.id)


# ==========================================================================
# Feedback
# ==========================================================================

class TestFeedback:
    """Human verdict on the demo."""

    async def test_passed_closes_ticket(self, review_manager, db_session, reviewed):
        await review_manager.generate_demo(reviewed.id, STEPS)

        result = await review_manager.submit_feedback(
            reviewed.id,
            passed=True,
            feedback="Works as described",
            step_results=[{"order": 1, "passed": True}, {"order": 2, "passed": True, "notes": "Fast"}],
        )

        assert result.passed is True
        assert result.new_status == TicketStatus.DONE
        assert reviewed.status == TicketStatus.DONE
        assert reviewed.completed_at is not None

        demo = await review_manager.get_demo(reviewed.id)
        assert demo.passed is True
        assert demo.feedback == "Works as described"
        assert [s["status"] for s in demo.steps] == ["passed", "passed"]
        assert demo.steps[1]["notes"] == "Fast"

        state = await workflow_state(db_session, reviewed)
        assert state.current_phase == WorkflowPhase.DONE

    async def test_rejected_allows_new_demo(self, review_manager, db_session, reviewed):
        first = await review_manager.generate_demo(reviewed.id, STEPS)

        result = await review_manager.submit_feedback(
            reviewed.id, passed=False, feedback="Step 2 fails", step_results=[{"order": 2, "passed": False}]
        )

        assert result.new_status == TicketStatus.HUMAN_REVIEW
        assert first.passed is False
        assert next(s for s in first.steps if s["order"] == 2)["status"] == "failed"
        state = await workflow_state(db_session, reviewed)
        assert state.demo_generated is False

        second = await review_manager.generate_demo(reviewed.id, STEPS[:1])

        assert (await review_manager.get_demo(reviewed.id)).id == second.id
        assert state.demo_generated is True

    async def test_requires_human_review(self, review_manager, reviewed):
        with pytest.raises(InvalidStateError):
            await review_manager.submit_feedback(reviewed.id, passed=True, feedback="ok")

    async def test_requires_demo(self, review_manager, ticket_factory):
        waiting = await ticket_factory("No demo yet", status=TicketStatus.HUMAN_REVIEW)

        with pytest.raises(ValidationError) as exc_info:
            await review_manager.submit_feedback(waiting.id, passed=True, feedback="ok")

        assert "No demo script found" in str(exc_info.value)


# ==========================================================================
# Full Loop
# ==========================================================================

class TestReviewLoop:
    """From start-work to done."""

    async def test_ticket_reaches_done(self, controller, review_manager, db_session, ticket):
        await controller.start_work(ticket.id)
        await controller.complete_work(ticket.id, summary="Fixed redirect")

        finding = await file_finding(review_manager, ticket, severity="critical")
        assert (await review_manager.check_complete(ticket.id)).complete is False
        await review_manager.mark_finding(finding.id, FindingStatus.FIXED)
        assert (await review_manager.check_complete(ticket.id)).complete is True

        await review_manager.generate_demo(ticket.id, STEPS)
        result = await review_manager.submit_feedback(ticket.id, passed=True, feedback="Ship it")

        assert result.new_status == TicketStatus.DONE
        state = await workflow_state(db_session, ticket)
        assert state.review_iteration == 1
        assert (state.findings_count, state.findings_fixed) == (1, 1)
        assert state.current_phase == WorkflowPhase.DONE
        assert finding.iteration == 1

    async def test_delete_ticket_removes_review_records(self, review_manager, db_session, reviewed):
        await file_finding(review_manager, reviewed, severity="minor")
        await review_manager.generate_demo(reviewed.id, STEPS)

        await delete_ticket(db_session, reviewed.id, confirm=True)

        findings = await db_session.execute(select(func.count()).select_from(ReviewFinding))
        demos = await db_session.execute(select(func.count()).select_from(DemoScript))
        assert findings.scalar_one() == 0
        assert demos.scalar_one() == 0


# ==========================================================================
# HTTP
# ==========================================================================

class TestReviewApi:
    """Review and demo endpoints."""

    async def test_review_flow(self, client: AsyncClient, reviewed):
        response = await client.post(
            f"{API}/tickets/{reviewed.id}/findings",
            json={
                "agent": "code-reviewer",
                "severity": "major",
                "category": "logic",
                "description": "Redirect loop",
                "line_number": 12,
            },
        )
        assert response.status_code == 201
        finding = response.json()
        assert finding["status"] == "open"

        blocked = await client.post(f"{API}/tickets/{reviewed.id}/demo", json={"steps": STEPS})
        assert blocked.status_code == 422
        assert blocked.json()["details"] == {"fields": ["findings"]}

        response = await client.patch(f"{API}/findings/{finding['id']}", json={"status": "fixed"})
        assert response.json()["status"] == "fixed"

        response = await client.get(f"{API}/tickets/{reviewed.id}/review-status")
        assert response.json()["can_proceed_to_human_review"] is True

        response = await client.get(f"{API}/tickets/{reviewed.id}/findings", params={"status": "fixed"})
        assert [f["id"] for f in response.json()] == [finding["id"]]

        response = await client.post(f"{API}/tickets/{reviewed.id}/demo", json={"steps": STEPS})
        assert response.status_code == 201
        demo = response.json()
        assert [s["order"] for s in demo["steps"]] == [1, 2]

        response = await client.patch(
            f"{API}/demos/{demo['id']}/steps/1", json={"status": "passed", "notes": "Looks right"}
        )
        assert response.json()["steps"][0]["notes"] == "Looks right"

        response = await client.post(
            f"{API}/tickets/{reviewed.id}/demo/feedback", json={"passed": True, "feedback": "Ship it"}
        )
        assert response.status_code == 200
        assert response.json()["new_status"] == "done"

        response = await client.get(f"{API}/tickets/{reviewed.id}")
        assert response.json()["status"] == "done"
        assert response.json()["completed_at"] is not None

    async def test_wrong_state_is_conflict(self, client: AsyncClient, ticket):
        response = await client.post(
            f"{API}/tickets/{ticket.id}/findings",
            json={"agent": "code-simplifier", "severity": "minor", "category": "style", "description": "x"},
        )
        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_STATE"

    async def test_missing_demo_is_not_found(self, client: AsyncClient, reviewed):
        response = await client.get(f"{API}/tickets/{reviewed.id}/demo")
        assert response.status_code == 404
        assert response.json()["code"] == "DEMO_NOT_FOUND"

    async def test_unknown_finding(self, client: AsyncClient):
        response = await client.patch(f"{API}/findings/{uuid4()}", json={"status": "fixed"})
        assert response.status_code == 404
        assert response.json()["code"] == "FINDING_NOT_FOUND"
