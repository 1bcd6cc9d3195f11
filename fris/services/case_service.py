import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select

from fris.models import Case, CaseAction
from fris.models.case import CASE_OUTCOMES, CASE_TYPES
from fris.services.declaration_service import DeclarationNotFoundError, get_declaration

logger = logging.getLogger(__name__)


class CaseNotFoundError(LookupError):
    def __init__(self, case_id: str):
        super().__init__(f"Case {case_id} not found")
        self.case_id = case_id


class CaseClosedError(Exception):
    def __init__(self, case_id: str):
        super().__init__(f"Case {case_id} is already closed")
        self.case_id = case_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _amount(value, name: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number")
    if value < 0:
        raise ValueError(f"{name} cannot be negative")
    return float(value)


def new_case_id(now: datetime, prefix: str = "CASE") -> str:
    return f"{prefix}-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:6].upper()}"


def get_case(session, case_id: str) -> Optional[Case]:
    return session.execute(select(Case).where(Case.case_id == case_id)).scalar_one_or_none()


def find_open_case(session, declaration_id: str) -> Optional[Case]:
    return session.execute(
        select(Case).where(Case.declaration_id == declaration_id, Case.status == "OPEN").limit(1)
    ).scalar_one_or_none()


def stage_case(
    session,
    declaration_id: str,
    case_type: str,
    expected_recovery=None,
    assigned_to: Optional[str] = None,
    performed_by: Optional[str] = None,
    audit_action: str = "CASE_OPENED",
    notes: Optional[str] = None,
    case_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Case:
    """
    Add an OPEN case and its opening audit record to the caller's session.
    The caller commits.
    """
    if case_type not in CASE_TYPES:
        raise ValueError(f"Invalid case type: {case_type}")
    expected = _amount(expected_recovery, "expected_recovery")
    if assigned_to is not None and (not isinstance(assigned_to, str) or len(assigned_to) > 100):
        raise ValueError("assigned_to must be a string of at most 100 characters")
    if get_declaration(session, declaration_id) is None:
        raise DeclarationNotFoundError(declaration_id)

    now = now or _utcnow()
    case = Case(
        case_id=case_id or new_case_id(now),
        declaration_id=declaration_id,
        type=case_type,
        status="OPEN",
        expected_recovery=expected,
        assigned_to=assigned_to,
        opened_at=now,
    )
    case.actions.append(
        CaseAction(
            action=audit_action,
            performed_by=performed_by or assigned_to or "system",
            notes=notes,
            details={"case_id": case.case_id, "type": case_type},
            created_at=now,
        )
    )
    session.add(case)
    return case


def open_case(
    session,
    declaration_id: str,
    case_type: str,
    expected_recovery=None,
    assigned_to: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Case:
    if not declaration_id:
        raise ValueError("declaration_id is required")
    case = stage_case(session, declaration_id, case_type, expected_recovery, assigned_to, now=now)
    session.commit()
    logger.info("Opened %s case %s for declaration %s", case.type, case.case_id, declaration_id)
    return case


def close_case(
    session,
    case_id: str,
    outcome: Optional[str] = None,
    recovery_amount=None,
    actor: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Case:
    if outcome is not None and outcome not in CASE_OUTCOMES:
        raise ValueError(f"Invalid outcome: {outcome}")
    recovered = _amount(recovery_amount, "recovery_amount")

    case = session.execute(select(Case).where(Case.case_id == case_id).with_for_update()).scalar_one_or_none()
    if case is None:
        raise CaseNotFoundError(case_id)
    if case.status == "CLOSED":
        raise CaseClosedError(case_id)

    now = now or _utcnow()
    case.status = "CLOSED"
    case.outcome = outcome
    case.recovery_amount = recovered
    case.closed_at = now
    case.actions.append(
        CaseAction(
            action="CASE_CLOSED",
            performed_by=actor or "system",
            details={"case_id": case_id, "outcome": outcome, "recovery_amount": recovered},
            created_at=now,
        )
    )
    session.commit()
    logger.info("Closed case %s (outcome=%s, recovered=%s)", case_id, outcome or "-", recovered)
    return case


def list_cases(
    session,
    status: Optional[str] = None,
    case_type: Optional[str] = None,
    assigned_to: Optional[str] = None,
) -> List[Case]:
    query = select(Case)
    if status:
        query = query.where(Case.status == status)
    if case_type:
        query = query.where(Case.type == case_type)
    if assigned_to:
        query = query.where(Case.assigned_to == assigned_to)
    return session.execute(query.order_by(Case.opened_at.desc(), Case.id.desc())).scalars().all()


def list_case_actions(session, case_id: str) -> List[CaseAction]:
    case = get_case(session, case_id)
    if case is None:
        raise CaseNotFoundError(case_id)
    return session.execute(
        select(CaseAction).where(CaseAction.case_id == case.id).order_by(CaseAction.created_at.asc(), CaseAction.id.asc())
    ).scalars().all()
