import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from fris.models import PolicyDecision
from fris.policy import PolicyContext, PolicyResult
from fris.services.declaration_service import (
    DeclarationNotFoundError,
    get_declaration,
    update_declaration_status,
)

logger = logging.getLogger(__name__)

# decision action -> (declaration status, channel); None keeps the current status
DECLARATION_OUTCOME = {
    "ALLOW": ("RELEASED", "GREEN"),
    "HOLD": ("HELD", "YELLOW"),
    "STOP": ("STOPPED", "RED"),
    "ESCALATE": (None, "YELLOW"),
    "NOTIFY": (None, "YELLOW"),
}
HIGH_CONFIDENCE = 0.9


@dataclass
class IngestOutcome:
    decision: PolicyDecision
    workflow: Optional[object] = None
    result: Optional[PolicyResult] = None
    replayed: bool = False


def _find_by_key(session, idempotency_key: str) -> Optional[PolicyDecision]:
    return session.execute(
        select(PolicyDecision).where(PolicyDecision.idempotency_key == idempotency_key)
    ).scalar_one_or_none()


def _workflow_priority(action_type: str, confidence: float) -> str:
    if action_type == "STOP":
        return "CRITICAL"
    return "HIGH" if confidence >= HIGH_CONFIDENCE else "MEDIUM"


def _ttl_minutes(action, global_settings) -> Optional[int]:
    ttl = action.parameters.get("ttl")
    if ttl is not None:
        return int(ttl)
    if action.type == "HOLD":
        return global_settings.default_hold_ttl
    if action.type == "STOP":
        return global_settings.default_stop_ttl
    return None


def _replay(manager, decision: PolicyDecision) -> IngestOutcome:
    workflow = manager.get_workflow(decision.workflow_id) if decision.workflow_id else None
    logger.info("Decision ingest replayed for key %s (decision %s)", decision.idempotency_key, decision.id)
    return IngestOutcome(decision=decision, workflow=workflow, replayed=True)


def _workflow_reason(action, result: PolicyResult) -> str:
    reason = action.parameters.get("reason") or result.reason
    if reason:
        return reason
    return f"Policy {action.type} ({', '.join(result.rule_ids) or 'no rule'})"


def ingest_decision(session_factory, engine, manager, declaration_id: str, idempotency_key: Optional[str] = None, actor: str = "system") -> IngestOutcome:
    """
    Evaluate a declaration, record the decision and open a HOLD/STOP workflow.

    The decision, the declaration status and the workflow share one
    transaction, so a failure at any step leaves nothing behind and the same
    idempotency key can be retried. A key that was already used returns the
    stored decision instead.
    """
    if not actor or not str(actor).strip():
        raise ValueError("actor is required")

    session = session_factory()
    workflow = None
    try:
        if idempotency_key:
            existing = _find_by_key(session, idempotency_key)
            if existing is not None:
                return _replay(manager, existing)

        declaration = get_declaration(session, declaration_id)
        if declaration is None:
            raise DeclarationNotFoundError(declaration_id)

        result = engine.evaluate(
            PolicyContext(
                declaration=declaration.policy_view(),
                risk_scores=dict(declaration.risk_scores or {}),
                items=list(declaration.items or []),
                user={"id": actor},
            )
        )
        pack = engine.get_policy_pack()
        action = result.primary_action()
        ttl = _ttl_minutes(action, pack.global_settings)

        decision = PolicyDecision(
            declaration_id=declaration_id,
            action=action.type,
            reason=result.reason,
            policy_version=pack.version,
            ttl_minutes=ttl,
            confidence=result.confidence,
            rule_ids=list(result.rule_ids),
            idempotency_key=idempotency_key,
        )
        session.add(decision)

        status, channel = DECLARATION_OUTCOME.get(action.type, (None, None))
        if status:
            update_declaration_status(session, declaration_id, status)
        if channel:
            declaration.channel = channel

        if action.type in ("HOLD", "STOP"):
            session.flush()
            workflow = manager.add_workflow(
                session,
                declaration_id=declaration_id,
                action_type=action.type,
                reason=_workflow_reason(action, result),
                created_by=actor,
                priority=_workflow_priority(action.type, result.confidence),
                sla_minutes=ttl,
                rule_ids=result.rule_ids,
                policy_version=pack.version,
                metadata={"decision_id": decision.id, "confidence": result.confidence},
            )
            decision.workflow_id = workflow.id

        session.commit()
    except IntegrityError:
        session.rollback()
        # another request stored the same key first
        existing = _find_by_key(session, idempotency_key) if idempotency_key else None
        if existing is None:
            raise
        return _replay(manager, existing)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    logger.info(
        "Ingested %s for declaration %s (rules=%s, confidence=%.2f)",
        decision.action,
        declaration_id,
        ",".join(decision.rule_ids) or "-",
        decision.confidence,
    )
    if workflow is not None:
        manager.announce_created(workflow)
    return IngestOutcome(decision=decision, workflow=workflow, result=result)
