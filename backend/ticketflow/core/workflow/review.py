"""
Review & Demo Loop
==================

What happens to a ticket after `complete_work` hands it to AI review:

    ai_review --(findings filed, critical/major resolved)--> generate demo
              --> human_review --(feedback: passed)--> done
                               --(feedback: rejected)--> regenerate demo

Findings and demo scripts drive the counters on the ticket's workflow state
(`findings_count`, `findings_fixed`, `demo_generated`, `current_phase`).
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketflow.core.errors import (
    DemoScriptNotFoundError,
    FindingNotFoundError,
    InvalidStateError,
    TicketNotFoundError,
    ValidationError,
)
from ticketflow.core.models import (
    DemoScript,
    DemoStepStatus,
    DemoStepType,
    FindingAgent,
    FindingSeverity,
    FindingStatus,
    ReviewFinding,
    Ticket,
    TicketStatus,
    TicketWorkflowState,
    WorkflowPhase,
)
from ticketflow.core.workflow.clock import Clock, utc_now

logger = structlog.get_logger()


def _parse(enum_type, value: Any, field_name: str):
    try:
        return enum_type(value)
    except ValueError as e:
        raise ValidationError(
            f"Invalid {field_name}: {value}. "
            f"Must be one of: {', '.join(v.value for v in enum_type)}",
            fields=[field_name],
        ) from e


# ==========================================================================
# Result Types
# ==========================================================================

@dataclass
class ReviewCompletionStatus:
    ticket_id: UUID
    complete: bool
    open_critical: int
    open_major: int
    open_minor: int
    open_suggestion: int
    total_findings: int
    fixed_findings: int
    message: str

    @property
    def can_proceed_to_human_review(self) -> bool:
        return self.complete


@dataclass
class FeedbackResult:
    ticket_id: UUID
    passed: bool
    new_status: TicketStatus
    feedback: str


# ==========================================================================
# Review Manager
# ==========================================================================

class ReviewManager:
    """
    Usage:
        review = ReviewManager(db)
        finding = await review.submit_finding(ticket.id, "code-reviewer", "major", "logic", "...")
        await review.mark_finding(finding.id, FindingStatus.FIXED)
        demo = await review.generate_demo(ticket.id, steps)
        await review.submit_feedback(ticket.id, passed=True, feedback="Works")
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Optional[Clock] = None,
        id_factory: Optional[Callable[[], UUID]] = None,
    ):
        self.db = db
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

    async def _workflow_state(self, ticket_id: UUID) -> TicketWorkflowState:
        """Existing state, or a new one staged in AI review at iteration 1."""
        result = await self.db.execute(
            select(TicketWorkflowState).where(TicketWorkflowState.ticket_id == ticket_id)
        )
        state = result.scalar_one_or_none()
        if state is None:
            state = TicketWorkflowState(
                id=self.id_factory(),
                ticket_id=ticket_id,
                current_phase=WorkflowPhase.AI_REVIEW,
                review_iteration=1,
                findings_count=0,
                findings_fixed=0,
                demo_generated=False,
            )
            self.db.add(state)
        return state

    async def _findings(self, ticket_id: UUID) -> list[ReviewFinding]:
        result = await self.db.execute(
            select(ReviewFinding).where(ReviewFinding.ticket_id == ticket_id)
        )
        return list(result.scalars().all())

    async def _latest_demo(self, ticket_id: UUID) -> Optional[DemoScript]:
        result = await self.db.execute(
            select(DemoScript)
            .where(DemoScript.ticket_id == ticket_id)
            .order_by(DemoScript.generated_at.desc())
            .limit(1)
        )
        return result.scalars().first()

    @staticmethod
    def _open_count(findings: list[ReviewFinding], severity: FindingSeverity) -> int:
        return sum(1 for f in findings if f.severity == severity and f.status == FindingStatus.OPEN)

    # ----------------------------------------------------------------------
    # Findings
    # ----------------------------------------------------------------------

    async def submit_finding(
        self,
        ticket_id: UUID,
        agent: FindingAgent | str,
        severity: FindingSeverity | str,
        category: str,
        description: str,
        file_path: Optional[str] = None,
        line_number: Optional[int] = None,
        suggested_fix: Optional[str] = None,
    ) -> ReviewFinding:
        """
        File a finding against a ticket in AI review.

        Raises:
            TicketNotFoundError: unknown ticket
            InvalidStateError: ticket is not in ai_review
            ValidationError: unknown agent/severity, empty category or description
        """
        agent = _parse(FindingAgent, agent, "agent")
        severity = _parse(FindingSeverity, severity, "severity")
        if not category.strip() or not description.strip():
            raise ValidationError(
                "Finding category and description must not be empty.",
                fields=["category", "description"],
            )

        ticket = await self._load_ticket(ticket_id)
        if ticket.status != TicketStatus.AI_REVIEW:
            raise InvalidStateError(
                "ticket", ticket.status.value, TicketStatus.AI_REVIEW.value, "submit review finding"
            )

        state = await self._workflow_state(ticket_id)
        finding = ReviewFinding(
            id=self.id_factory(),
            ticket_id=ticket_id,
            iteration=state.review_iteration,
            agent=agent,
            severity=severity,
            category=category.strip(),
            description=description.strip(),
            file_path=file_path,
            line_number=line_number,
            suggested_fix=suggested_fix,
            status=FindingStatus.OPEN,
            created_at=self.clock(),
        )
        self.db.add(finding)
        state.findings_count += 1
        await self.db.commit()

        logger.info(
            "Review finding submitted",
            ticket_id=str(ticket_id),
            finding_id=str(finding.id),
            agent=agent.value,
            severity=severity.value,
            iteration=finding.iteration,
        )
        return finding

    async def mark_finding(self, finding_id: UUID, status: FindingStatus | str) -> ReviewFinding:
        """
        Resolve a finding as fixed, won't fix or duplicate.

        `findings_fixed` counts each finding once, however often it is marked.
        """
        status = _parse(FindingStatus, status, "status")
        if status == FindingStatus.OPEN:
            raise ValidationError("A finding can only be resolved, not reopened.", fields=["status"])

        finding = await self.db.get(ReviewFinding, finding_id)
        if finding is None:
            raise FindingNotFoundError(finding_id)
        await self._load_ticket(finding.ticket_id)

        newly_fixed = status == FindingStatus.FIXED and finding.status != FindingStatus.FIXED
        finding.status = status
        finding.fixed_at = self.clock() if status == FindingStatus.FIXED else None
        if newly_fixed:
            state = await self._workflow_state(finding.ticket_id)
            state.findings_fixed += 1
        await self.db.commit()

        logger.info("Review finding resolved", finding_id=str(finding_id), status=status.value)
        return finding

    async def get_findings(
        self,
        ticket_id: UUID,
        status: Optional[FindingStatus | str] = None,
        severity: Optional[FindingSeverity | str] = None,
        agent: Optional[FindingAgent | str] = None,
    ) -> list[ReviewFinding]:
        """Findings for a ticket, newest first, optionally filtered."""
        await self._load_ticket(ticket_id)

        query = select(ReviewFinding).where(ReviewFinding.ticket_id == ticket_id)
        if status is not None:
            query = query.where(ReviewFinding.status == _parse(FindingStatus, status, "status"))
        if severity is not None:
            query = query.where(ReviewFinding.severity == _parse(FindingSeverity, severity, "severity"))
        if agent is not None:
            query = query.where(ReviewFinding.agent == _parse(FindingAgent, agent, "agent"))

        result = await self.db.execute(query.order_by(ReviewFinding.created_at.desc()))
        return list(result.scalars().all())

    async def check_complete(self, ticket_id: UUID) -> ReviewCompletionStatus:
        """Review is complete once no critical or major finding is open."""
        await self._load_ticket(ticket_id)
        findings = await self._findings(ticket_id)

        open_critical = self._open_count(findings, FindingSeverity.CRITICAL)
        open_major = self._open_count(findings, FindingSeverity.MAJOR)
        fixed = sum(1 for f in findings if f.status == FindingStatus.FIXED)
        complete = open_critical == 0 and open_major == 0

        if complete:
            message = (
                "Review complete. All critical and major findings are resolved. "
                f"Total: {len(findings)}, Fixed: {fixed}."
            )
        else:
            message = (
                f"Cannot proceed. Open critical: {open_critical}, "
                f"Open major: {open_major}. Fix these first."
            )

        return ReviewCompletionStatus(
            ticket_id=ticket_id,
            complete=complete,
            open_critical=open_critical,
            open_major=open_major,
            open_minor=self._open_count(findings, FindingSeverity.MINOR),
            open_suggestion=self._open_count(findings, FindingSeverity.SUGGESTION),
            total_findings=len(findings),
            fixed_findings=fixed,
            message=message,
        )

    # ----------------------------------------------------------------------
    # Demo Scripts
    # ----------------------------------------------------------------------

    @staticmethod
    def _normalize_steps(steps: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not steps:
            raise ValidationError("A demo script needs at least one step.", fields=["steps"])

        normalized = []
        for step in steps:
            if not isinstance(step.get("order"), int):
                raise ValidationError("Every demo step needs an integer order.", fields=["steps"])
            description = (step.get("description") or "").strip()
            expected = (step.get("expected_outcome") or "").strip()
            if not description or not expected:
                raise ValidationError(
                    f"Demo step {step.get('order')} needs a description and an expected outcome.",
                    fields=["steps"],
                )
            normalized.append(
                {
                    "order": step["order"],
                    "description": description,
                    "expected_outcome": expected,
                    "type": _parse(DemoStepType, step.get("type", "manual"), "type").value,
                    "status": DemoStepStatus.PENDING.value,
                }
            )

        orders = [s["order"] for s in normalized]
        if len(set(orders)) != len(orders):
            raise ValidationError("Demo step orders must be unique.", fields=["steps"])
        return sorted(normalized, key=lambda s: s["order"])

    async def generate_demo(self, ticket_id: UUID, steps: list[dict[str, Any]]) -> DemoScript:
        """
        Write the demo script and move the ticket to human review.

        Allowed from ai_review, or again from human_review after the previous
        demo was rejected.

        Raises:
            TicketNotFoundError: unknown ticket
            InvalidStateError: ticket not awaiting a demo
            ValidationError: open critical/major findings, or malformed steps
        """
        normalized = self._normalize_steps(steps)
        ticket = await self._load_ticket(ticket_id)
        state = await self._workflow_state(ticket_id)

        regenerating = ticket.status == TicketStatus.HUMAN_REVIEW and not state.demo_generated
        if ticket.status != TicketStatus.AI_REVIEW and not regenerating:
            raise InvalidStateError(
                "ticket", ticket.status.value, TicketStatus.AI_REVIEW.value, "generate demo script"
            )

        findings = await self._findings(ticket_id)
        open_critical = self._open_count(findings, FindingSeverity.CRITICAL)
        open_major = self._open_count(findings, FindingSeverity.MAJOR)
        if open_critical or open_major:
            raise ValidationError(
                f"Cannot generate demo: {open_critical} critical and {open_major} "
                "major findings are still open.",
                fields=["findings"],
            )

        demo = DemoScript(
            id=self.id_factory(),
            ticket_id=ticket_id,
            steps=normalized,
            generated_at=self.clock(),
        )
        self.db.add(demo)
        state.demo_generated = True
        state.current_phase = WorkflowPhase.HUMAN_REVIEW
        ticket.status = TicketStatus.HUMAN_REVIEW
        await self.db.commit()

        logger.info(
            "Demo script generated",
            ticket_id=str(ticket_id),
            demo_id=str(demo.id),
            steps=len(normalized),
        )
        return demo

    async def get_demo(self, ticket_id: UUID) -> DemoScript:
        await self._load_ticket(ticket_id)
        demo = await self._latest_demo(ticket_id)
        if demo is None:
            raise DemoScriptNotFoundError(ticket_id)
        return demo

    async def update_demo_step(
        self,
        demo_id: UUID,
        order: int,
        status: DemoStepStatus | str,
        notes: Optional[str] = None,
    ) -> DemoScript:
        """Record the reviewer's result for one step."""
        status = _parse(DemoStepStatus, status, "status")
        demo = await self.db.get(DemoScript, demo_id)
        if demo is None:
            raise DemoScriptNotFoundError(demo_id)

        steps = [dict(s) for s in demo.steps]
        step = next((s for s in steps if s["order"] == order), None)
        if step is None:
            raise ValidationError(f"Step {order} not found in demo script {demo_id}.", fields=["order"])

        step["status"] = status.value
        if notes:
            step["notes"] = notes
        demo.steps = steps
        demo.completed_at = self.clock()
        await self.db.commit()
        return demo

    async def submit_feedback(
        self,
        ticket_id: UUID,
        passed: bool,
        feedback: str,
        step_results: Optional[list[dict[str, Any]]] = None,
    ) -> FeedbackResult:
        """
        Final verdict from the human reviewer.

        Passed: ticket and workflow phase move to done. Rejected: the ticket
        stays in human review and the demo must be regenerated.

        Raises:
            TicketNotFoundError: unknown ticket
            InvalidStateError: ticket is not in human_review
            ValidationError: no demo script exists for the ticket
        """
        ticket = await self._load_ticket(ticket_id)
        if ticket.status != TicketStatus.HUMAN_REVIEW:
            raise InvalidStateError(
                "ticket", ticket.status.value, TicketStatus.HUMAN_REVIEW.value, "submit demo feedback"
            )

        demo = await self._latest_demo(ticket_id)
        if demo is None:
            raise ValidationError(f"No demo script found for ticket {ticket_id}.", fields=["demo"])

        now = self.clock()
        demo.feedback = feedback
        demo.passed = passed
        demo.completed_at = now

        if step_results:
            steps = [dict(s) for s in demo.steps]
            by_order = {s["order"]: s for s in steps}
            for result in step_results:
                step = by_order.get(result["order"])
                if step is None:
                    continue
                step["status"] = (
                    DemoStepStatus.PASSED.value if result["passed"] else DemoStepStatus.FAILED.value
                )
                if result.get("notes"):
                    step["notes"] = result["notes"]
            demo.steps = steps

        state = await self._workflow_state(ticket_id)
        if passed:
            ticket.status = TicketStatus.DONE
            ticket.completed_at = now
            state.current_phase = WorkflowPhase.DONE
        else:
            state.demo_generated = False
        await self.db.commit()

        logger.info("Demo feedback submitted", ticket_id=str(ticket_id), passed=passed)
        return FeedbackResult(
            ticket_id=ticket_id,
            passed=passed,
            new_status=ticket.status,
            feedback=feedback,
        )
