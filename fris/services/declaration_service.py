import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from fris.models import Declaration, PolicyDecision

logger = logging.getLogger(__name__)

ADVERSE_DECISIONS = ("HOLD", "STOP")


class DeclarationNotFoundError(LookupError):
    def __init__(self, declaration_id: str):
        super().__init__(f"Declaration {declaration_id} not found")
        self.declaration_id = declaration_id


def get_declaration(session, declaration_id: str) -> Optional[Declaration]:
    return session.execute(
        select(Declaration).where(Declaration.declaration_id == declaration_id)
    ).scalar_one_or_none()


def create_declaration(
    session,
    declaration_id: str,
    items: List[Dict[str, Any]],
    lodgement_ts: Optional[str] = None,
    arrival_port: Optional[str] = None,
    risk_scores: Optional[Dict[str, Any]] = None,
    channel: str = "GREEN",
) -> Declaration:
    if not declaration_id:
        raise ValueError("declaration_id is required")
    if not isinstance(items, list) or not items:
        raise ValueError("items must be a non-empty list")
    if get_declaration(session, declaration_id):
        raise ValueError(f"Declaration {declaration_id} already exists")
    declaration = Declaration(
        declaration_id=declaration_id,
        arrival_port=arrival_port,
        lodgement_ts=lodgement_ts,
        channel=channel,
        status="FILED",
        items=items,
        risk_scores=risk_scores or {},
    )
    session.add(declaration)
    session.commit()
    return declaration


def update_declaration_status(session, declaration_id: str, status: str) -> bool:
    """
    Record a new status on a locally tracked declaration, inside the caller's
    transaction. Declarations filed in another system are skipped.
    """
    declaration = get_declaration(session, declaration_id)
    if not declaration:
        logger.warning("Declaration %s is not tracked locally; status %s not recorded", declaration_id, status)
        return False
    declaration.status = status
    if status == "RELEASED":
        declaration.released_at = datetime.now(timezone.utc).replace(tzinfo=None)
    session.add(declaration)
    return True


def has_adverse_findings(session, workflow) -> bool:
    """
    Whether anything beyond the workflow's own trigger argues against releasing
    the declaration: an escalation on this workflow, another HOLD/STOP decision
    for the declaration, or a sibling workflow that was a STOP or escalated.
    """
    from fris.workflow.models import HoldStopWorkflow

    if workflow.escalation_level:
        return True

    decisions = session.execute(
        select(PolicyDecision).where(
            PolicyDecision.declaration_id == workflow.declaration_id,
            PolicyDecision.action.in_(ADVERSE_DECISIONS),
        )
    ).scalars().all()
    if any(d.workflow_id != workflow.id for d in decisions):
        return True

    siblings = session.execute(
        select(HoldStopWorkflow).where(
            HoldStopWorkflow.declaration_id == workflow.declaration_id,
            HoldStopWorkflow.id != workflow.id,
        )
    ).scalars().all()
    return any(s.action_type == "STOP" or s.status == "ESCALATED" for s in siblings)
