import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from fris.policy.packs import DEFAULT_POLICY_VERSION
from fris.services.declaration_service import has_adverse_findings, update_declaration_status
from fris.workflow.constants import (
    ACTION_TYPES,
    DEFAULT_PRIORITY,
    PRIORITY_LEVELS,
    REVIEW_OUTCOMES,
    STATUS_VALUES,
    SYSTEM_ACTOR,
)
from fris.workflow.errors import IllegalTransitionError, WorkflowConflictError, WorkflowNotFoundError
from fris.workflow.models import HoldStopWorkflow, WorkflowAction
from fris.workflow.notifier import LoggingNotifier, Notifier
from fris.workflow.sla import SLATable

logger = logging.getLogger(__name__)

REVIEWABLE_STATUSES = ("PENDING", "ACTIVE", "ESCALATED")
SLA_WARNING_BAND = 5
AUTO_RELEASE_REASON = "Auto-released: No adverse findings found within SLA period"
AUTO_RELEASE_NOTES = "Automatically released due to SLA expiration with no adverse findings"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def validate_workflow_request(declaration_id, action_type, reason, created_by, priority, sla_minutes=None) -> None:
    if not declaration_id or not reason or not created_by:
        raise ValueError("declaration_id, reason and created_by are required")
    if action_type not in ACTION_TYPES:
        raise ValueError(f"action_type must be one of {', '.join(ACTION_TYPES)}")
    if priority not in PRIORITY_LEVELS:
        raise ValueError(f"priority must be one of {', '.join(PRIORITY_LEVELS)}")
    if sla_minutes is not None and int(sla_minutes) <= 0:
        raise ValueError("sla_minutes must be positive")


@dataclass
class SweepResult:
    expired: List[str] = field(default_factory=list)
    auto_released: List[str] = field(default_factory=list)
    warnings: List[Tuple[str, int]] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expired": list(self.expired),
            "auto_released": list(self.auto_released),
            "warnings": [{"workflow_id": wf_id, "threshold": threshold} for wf_id, threshold in self.warnings],
            "conflicts": list(self.conflicts),
        }


class HoldStopWorkflowManager:
    """
    Owns the HOLD/STOP enforcement lifecycle of declarations.

    Every transition reads the workflow row, applies the change and appends the
    matching WorkflowAction inside one database transaction. The row carries an
    optimistic version counter, so a writer that raced another transition gets
    a WorkflowConflictError instead of applying the change twice. Notifications
    go out only after the commit and never fail the transition.
    """

    def __init__(
        self,
        session_factory,
        sla_table: Optional[SLATable] = None,
        notifier: Optional[Notifier] = None,
        policy_version: str = DEFAULT_POLICY_VERSION,
        declaration_status_updater: Callable = update_declaration_status,
        adverse_findings_check: Callable = has_adverse_findings,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._session_factory = session_factory
        self.sla_table = sla_table or SLATable()
        self.notifier = notifier or LoggingNotifier()
        self.policy_version = policy_version
        self._update_declaration_status = declaration_status_updater
        self._has_adverse_findings = adverse_findings_check
        self._clock = clock or _utcnow

    # -- lifecycle -----------------------------------------------------------

    def create_workflow(
        self,
        declaration_id: str,
        action_type: str,
        reason: str,
        created_by: str,
        priority: str = DEFAULT_PRIORITY,
        sla_minutes: Optional[int] = None,
        assigned_to: Optional[str] = None,
        rule_ids: Optional[Iterable[str]] = None,
        policy_version: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> HoldStopWorkflow:
        session = self._session_factory()
        try:
            workflow = self.add_workflow(
                session,
                declaration_id,
                action_type,
                reason,
                created_by,
                priority=priority,
                sla_minutes=sla_minutes,
                assigned_to=assigned_to,
                rule_ids=rule_ids,
                policy_version=policy_version,
                metadata=metadata,
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        self.announce_created(workflow)
        return workflow

    def add_workflow(
        self,
        session,
        declaration_id: str,
        action_type: str,
        reason: str,
        created_by: str,
        priority: str = DEFAULT_PRIORITY,
        sla_minutes: Optional[int] = None,
        assigned_to: Optional[str] = None,
        rule_ids: Optional[Iterable[str]] = None,
        policy_version: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> HoldStopWorkflow:
        """
        Stage a new ACTIVE workflow and its CREATE action in the caller's session.

        Nothing is committed here. Once the caller commits it should pass the
        workflow to `announce_created`.
        """
        validate_workflow_request(declaration_id, action_type, reason, created_by, priority, sla_minutes)

        now = self._clock()
        minutes = self.sla_table.resolve_minutes(action_type, priority, sla_minutes)
        workflow = HoldStopWorkflow(
            id=f"workflow_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}",
            declaration_id=declaration_id,
            action_type=action_type,
            status="ACTIVE",
            created_at=now,
            expires_at=now + timedelta(minutes=minutes),
            created_by=created_by,
            assigned_to=assigned_to,
            priority=priority,
            reason=reason,
            policy_version=policy_version or self.policy_version,
            rule_ids=list(rule_ids or []),
            sla_minutes=minutes,
            review_required=action_type == "STOP",
            workflow_metadata=dict(metadata or {}),
            updated_at=now,
        )

        session.add(workflow)
        session.flush()
        self._log_action(
            session,
            workflow,
            "CREATE",
            created_by,
            "Workflow created",
            {"sla_minutes": minutes, "priority": priority, "expires_at": workflow.expires_at.isoformat()},
            at=now,
        )
        return workflow

    def announce_created(self, workflow: HoldStopWorkflow) -> None:
        logger.info(
            "Created %s workflow %s for declaration %s (priority=%s, sla=%dmin)",
            workflow.action_type,
            workflow.id,
            workflow.declaration_id,
            workflow.priority,
            workflow.sla_minutes,
        )
        self._notify(workflow, "created")

    def release_workflow(self, workflow_id: str, authorized_by: str, reason: str, notes: Optional[str] = None) -> HoldStopWorkflow:
        if not authorized_by or not reason:
            raise ValueError("authorized_by and reason are required")

        def _release(session, workflow):
            if workflow.status != "ACTIVE":
                raise IllegalTransitionError(workflow.id, workflow.status, "only ACTIVE workflows can be released")
            self._apply_release(session, workflow, authorized_by, reason, notes)

        workflow = self._transition(workflow_id, _release)
        logger.info("Released workflow %s (authorized by %s)", workflow.id, authorized_by)
        self._notify(workflow, "released")
        return workflow

    def escalate_workflow(self, workflow_id: str, escalated_by: str, reason: str, level: Optional[int] = None) -> HoldStopWorkflow:
        if not escalated_by or not reason:
            raise ValueError("escalated_by and reason are required")
        if level is not None and int(level) < 1:
            raise ValueError("escalation level must be at least 1")

        def _escalate(session, workflow):
            if workflow.status != "ACTIVE":
                raise IllegalTransitionError(workflow.id, workflow.status, "only ACTIVE workflows can be escalated")
            workflow.escalation_level = int(level) if level is not None else (workflow.escalation_level or 0) + 1
            workflow.status = "ESCALATED"
            workflow.updated_at = self._clock()
            escalated_to = self.sla_table.escalation_role(workflow.action_type, workflow.priority, workflow.escalation_level)
            self._log_action(
                session,
                workflow,
                "ESCALATE",
                escalated_by,
                reason,
                {"escalation_level": workflow.escalation_level, "escalated_to": escalated_to},
            )

        workflow = self._transition(workflow_id, _escalate)
        logger.info("Escalated workflow %s to level %d", workflow.id, workflow.escalation_level)
        self._notify(workflow, "escalated")
        return workflow

    def review_workflow(self, workflow_id: str, reviewed_by: str, outcome: str, notes: str) -> HoldStopWorkflow:
        if not reviewed_by:
            raise ValueError("reviewed_by is required")
        if outcome not in REVIEW_OUTCOMES:
            raise ValueError(f"outcome must be one of {', '.join(REVIEW_OUTCOMES)}")

        def _review(session, workflow):
            if workflow.status not in REVIEWABLE_STATUSES:
                raise IllegalTransitionError(workflow.id, workflow.status, "terminal workflows cannot be reviewed")
            now = self._clock()
            workflow.reviewed_by = reviewed_by
            workflow.reviewed_at = now
            workflow.review_notes = notes
            workflow.updated_at = now
            if outcome == "APPROVED":
                workflow.status = "ACTIVE"
            elif outcome == "REJECTED":
                workflow.status = "RELEASED"
                workflow.release_authorized_by = reviewed_by
                workflow.release_authorized_at = now
                self._update_declaration_status(session, workflow.declaration_id, "RELEASED")
            self._log_action(
                session,
                workflow,
                "REVIEW",
                reviewed_by,
                f"Review outcome: {outcome}",
                {"outcome": outcome, "notes": notes},
            )

        workflow = self._transition(workflow_id, _review)
        logger.info("Reviewed workflow %s: %s -> %s", workflow.id, outcome, workflow.status)
        self._notify(workflow, "reviewed")
        return workflow

    def check_expired_workflows(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Expire ACTIVE workflows past their deadline and emit SLA warnings for the rest.

        Only ACTIVE rows are considered and each one is re-read under its own
        transaction, so repeated or overlapping sweeps are harmless.
        """
        now = now or self._clock()
        result = SweepResult()
        for workflow_id in self._active_workflow_ids():
            try:
                self._sweep_one(workflow_id, now, result)
            except WorkflowConflictError:
                logger.warning("Workflow %s changed during expiration sweep; skipped", workflow_id)
                result.conflicts.append(workflow_id)
        if result.expired or result.warnings:
            logger.info(
                "Expiration sweep: %d expired, %d auto-released, %d SLA warnings",
                len(result.expired),
                len(result.auto_released),
                len(result.warnings),
            )
        return result

    # -- queries -------------------------------------------------------------

    def get_workflow(self, workflow_id: str) -> HoldStopWorkflow:
        session = self._session_factory()
        try:
            workflow = session.get(HoldStopWorkflow, workflow_id)
            if workflow is None:
                raise WorkflowNotFoundError(workflow_id)
            return workflow
        finally:
            session.close()

    def list_workflows(self, status: Optional[str] = None, declaration_id: Optional[str] = None) -> List[HoldStopWorkflow]:
        if status is not None and status not in STATUS_VALUES:
            raise ValueError(f"status must be one of {', '.join(STATUS_VALUES)}")
        session = self._session_factory()
        try:
            query = select(HoldStopWorkflow).order_by(HoldStopWorkflow.created_at.desc())
            if status:
                query = query.where(HoldStopWorkflow.status == status)
            if declaration_id:
                query = query.where(HoldStopWorkflow.declaration_id == declaration_id)
            return session.execute(query).scalars().all()
        finally:
            session.close()

    def list_actions(self, workflow_id: str) -> List[WorkflowAction]:
        session = self._session_factory()
        try:
            if session.get(HoldStopWorkflow, workflow_id) is None:
                raise WorkflowNotFoundError(workflow_id)
            return session.execute(
                select(WorkflowAction).where(WorkflowAction.workflow_id == workflow_id).order_by(WorkflowAction.id.asc())
            ).scalars().all()
        finally:
            session.close()

    def get_workflow_stats(self, period_start: datetime, period_end: datetime) -> Dict[str, Any]:
        session = self._session_factory()
        try:
            workflows = session.execute(
                select(HoldStopWorkflow).where(
                    HoldStopWorkflow.created_at >= period_start,
                    HoldStopWorkflow.created_at <= period_end,
                )
            ).scalars().all()
        finally:
            session.close()

        def _bucket():
            return {"total": 0, "released": 0, "expired": 0}

        stats = {
            "total_workflows": len(workflows),
            "active_workflows": 0,
            "expired_workflows": 0,
            "released_workflows": 0,
            "escalated_workflows": 0,
            "average_sla_compliance": 0,
            "by_priority": {p: _bucket() for p in PRIORITY_LEVELS},
            "by_action_type": {a: _bucket() for a in ACTION_TYPES},
        }
        resolved = 0
        within_sla = 0
        for wf in workflows:
            status_key = f"{wf.status.lower()}_workflows"
            if status_key in stats:
                stats[status_key] += 1
            for bucket in (stats["by_priority"][wf.priority], stats["by_action_type"][wf.action_type]):
                bucket["total"] += 1
                if wf.status == "RELEASED":
                    bucket["released"] += 1
                elif wf.status == "EXPIRED":
                    bucket["expired"] += 1
            if wf.status in ("RELEASED", "EXPIRED"):
                resolved += 1
                if wf.status == "RELEASED" and wf.release_authorized_at and wf.release_authorized_at <= wf.expires_at:
                    within_sla += 1
        if resolved:
            stats["average_sla_compliance"] = round(within_sla / resolved * 100, 2)
        return stats

    # -- internals -----------------------------------------------------------

    def _transition(self, workflow_id: str, apply: Callable) -> HoldStopWorkflow:
        session = self._session_factory()
        try:
            workflow = self._load_for_update(session, workflow_id)
            apply(session, workflow)
            session.commit()
            return workflow
        except StaleDataError as exc:
            session.rollback()
            raise WorkflowConflictError(workflow_id) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _load_for_update(self, session, workflow_id: str) -> HoldStopWorkflow:
        workflow = session.execute(
            select(HoldStopWorkflow).where(HoldStopWorkflow.id == workflow_id).with_for_update()
        ).scalar_one_or_none()
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    def _active_workflow_ids(self) -> List[str]:
        session = self._session_factory()
        try:
            return session.execute(
                select(HoldStopWorkflow.id).where(HoldStopWorkflow.status == "ACTIVE").order_by(HoldStopWorkflow.expires_at)
            ).scalars().all()
        finally:
            session.close()

    def _sweep_one(self, workflow_id: str, now: datetime, result: SweepResult) -> None:
        outcome = {}

        def _expire(session, workflow):
            if workflow.status != "ACTIVE":
                return
            if workflow.expires_at > now:
                outcome["sla_percent"] = workflow.sla_percent(now)
                return
            workflow.status = "EXPIRED"
            workflow.updated_at = now
            self._log_action(session, workflow, "EXPIRE", SYSTEM_ACTOR, "Workflow expired due to SLA", at=now)
            outcome["expired"] = True
            if workflow.action_type == "HOLD" and not self._has_adverse_findings(session, workflow):
                self._apply_release(session, workflow, SYSTEM_ACTOR, AUTO_RELEASE_REASON, AUTO_RELEASE_NOTES, at=now)
                outcome["auto_released"] = True

        workflow = self._transition(workflow_id, _expire)

        if outcome.get("expired"):
            result.expired.append(workflow.id)
            logger.info("Workflow %s expired (sla=%dmin)", workflow.id, workflow.sla_minutes)
            self._notify(workflow, "expired")
            if outcome.get("auto_released"):
                result.auto_released.append(workflow.id)
                logger.info("Workflow %s auto-released: no adverse findings", workflow.id)
                self._notify(workflow, "released")
        elif "sla_percent" in outcome:
            threshold = self._warning_threshold(workflow, outcome["sla_percent"])
            if threshold is not None:
                result.warnings.append((workflow.id, threshold))
                self._send_sla_warning(workflow, outcome["sla_percent"], threshold)

    def _warning_threshold(self, workflow: HoldStopWorkflow, sla_percent: float) -> Optional[int]:
        config = self.sla_table.lookup(workflow.action_type, workflow.priority)
        if not config:
            return None
        for threshold in config.escalation_thresholds:
            if threshold <= sla_percent < threshold + SLA_WARNING_BAND:
                return threshold
        return None

    def _apply_release(
        self,
        session,
        workflow: HoldStopWorkflow,
        authorized_by: str,
        reason: str,
        notes: Optional[str],
        at: Optional[datetime] = None,
    ) -> None:
        now = at or self._clock()
        workflow.status = "RELEASED"
        workflow.release_authorized_by = authorized_by
        workflow.release_authorized_at = now
        workflow.updated_at = now
        if notes is not None:
            workflow.review_notes = notes
        self._log_action(session, workflow, "RELEASE", authorized_by, reason, {"notes": notes}, at=now)
        self._update_declaration_status(session, workflow.declaration_id, "RELEASED")

    def _log_action(
        self,
        session,
        workflow: HoldStopWorkflow,
        action_type: str,
        performed_by: str,
        notes: Optional[str],
        details: Optional[Dict[str, Any]] = None,
        at: Optional[datetime] = None,
    ) -> WorkflowAction:
        action = WorkflowAction(
            event_id=f"{workflow.id}_{action_type}_{uuid.uuid4().hex[:12]}",
            workflow_id=workflow.id,
            declaration_id=workflow.declaration_id,
            action_type=action_type,
            performed_by=performed_by,
            performed_at=at or self._clock(),
            notes=notes,
            details=details,
        )
        session.add(action)
        return action

    def _notify(self, workflow: HoldStopWorkflow, event_type: str) -> None:
        try:
            self.notifier.notify(workflow, event_type)
        except Exception:
            logger.exception("Failed to deliver %s notification for workflow %s", event_type, workflow.id)

    def _send_sla_warning(self, workflow: HoldStopWorkflow, sla_percent: float, threshold: int) -> None:
        try:
            self.notifier.sla_warning(workflow, sla_percent, threshold)
        except Exception:
            logger.exception("Failed to deliver SLA warning for workflow %s", workflow.id)
