import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from fris.models import Case, Payment
from fris.models.payment import PAYMENT_STATUS
from fris.services.case_service import find_open_case, new_case_id, stage_case
from fris.services.declaration_service import DeclarationNotFoundError, get_declaration

logger = logging.getLogger(__name__)

# shortfalls above this open a post-clearance audit case
RECOVERY_CASE_THRESHOLD = 1000.0
SHORTFALL_STATUSES = ("SHORT", "DELAYED")
PERIODS = ("TODAY", "MTD", "YTD")


@dataclass
class ReconOutcome:
    payment: Payment
    case: Optional[Case] = None
    replayed: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _non_negative(value, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number")
    if value < 0:
        raise ValueError(f"{name} cannot be negative")
    return float(value)


def _find_payment(session, declaration_id: str, bank_ref: str) -> Optional[Payment]:
    return session.execute(
        select(Payment).where(Payment.declaration_id == declaration_id, Payment.bank_ref == bank_ref)
    ).scalar_one_or_none()


def reconcile_payment(
    session,
    declaration_id: str,
    bank_ref: str,
    assessed,
    paid,
    status: str,
    fx_rate=None,
    now: Optional[datetime] = None,
) -> ReconOutcome:
    """
    Record a bank payment against the assessed duty of a declaration.

    A bank reference is recorded once per declaration; a repeat returns the
    stored payment. A SHORT or DELAYED payment more than the threshold below
    assessment opens a PCA case in the same transaction, unless the
    declaration already has an open case.
    """
    if not declaration_id:
        raise ValueError("declaration_id is required")
    if not bank_ref or not isinstance(bank_ref, str) or len(bank_ref) > 100:
        raise ValueError("bank_ref must be a string of 1 to 100 characters")
    if status not in PAYMENT_STATUS:
        raise ValueError(f"Invalid payment status: {status}")
    assessed = _non_negative(assessed, "assessed")
    paid = _non_negative(paid, "paid")
    if fx_rate is not None:
        if isinstance(fx_rate, bool) or not isinstance(fx_rate, (int, float)) or fx_rate <= 0:
            raise ValueError("fx_rate must be a positive number")
        fx_rate = float(fx_rate)

    existing = _find_payment(session, declaration_id, bank_ref)
    if existing is not None:
        logger.info("Payment %s for declaration %s already reconciled", bank_ref, declaration_id)
        return ReconOutcome(payment=existing, replayed=True)
    if get_declaration(session, declaration_id) is None:
        raise DeclarationNotFoundError(declaration_id)

    now = now or _utcnow()
    payment = Payment(
        declaration_id=declaration_id,
        bank_ref=bank_ref,
        assessed=assessed,
        paid=paid,
        fx_rate=fx_rate,
        status=status,
        created_at=now,
    )
    session.add(payment)

    case = None
    delta = payment.delta
    if status in SHORTFALL_STATUSES and abs(delta) > RECOVERY_CASE_THRESHOLD and find_open_case(session, declaration_id) is None:
        case = stage_case(
            session,
            declaration_id,
            "PCA",
            expected_recovery=abs(delta),
            audit_action="CASE_AUTO_CREATED",
            notes="Payment reconciliation",
            case_id=new_case_id(now, prefix="CASE-RECON"),
            now=now,
        )
        case.actions[0].details = {"case_id": case.case_id, "type": "PCA", "bank_ref": bank_ref, "delta": delta}

    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        # a concurrent request recorded the same bank reference
        existing = _find_payment(session, declaration_id, bank_ref)
        if existing is None:
            raise
        return ReconOutcome(payment=existing, replayed=True)

    logger.info(
        "Reconciled payment %s for declaration %s: %s (delta=%.2f)",
        bank_ref,
        declaration_id,
        status,
        delta,
    )
    if case is not None:
        logger.warning("Opened PCA case %s for declaration %s: shortfall %.2f", case.case_id, declaration_id, abs(delta))
    return ReconOutcome(payment=payment, case=case)


def period_start(period: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Start of a reporting period; anything other than TODAY, MTD or YTD means the last 30 days."""
    now = now or _utcnow()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "TODAY":
        return midnight
    if period == "MTD":
        return midnight.replace(day=1)
    if period == "YTD":
        return midnight.replace(month=1, day=1)
    return now - timedelta(days=30)


def payment_summary(session, period: Optional[str] = "MTD", status: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    if status is not None and status not in PAYMENT_STATUS:
        raise ValueError(f"Invalid payment status: {status}")
    query = select(Payment).where(Payment.created_at >= period_start(period, now))
    if status:
        query = query.where(Payment.status == status)
    payments: List[Payment] = session.execute(
        query.order_by(Payment.created_at.desc(), Payment.id.desc())
    ).scalars().all()

    summary = {
        "total_payments": len(payments),
        "total_assessed": sum(p.assessed for p in payments),
        "total_paid": sum(p.paid for p in payments),
        "total_delta": sum(p.delta for p in payments),
    }
    for value in PAYMENT_STATUS:
        summary[f"{value.lower()}_count"] = sum(1 for p in payments if p.status == value)
    return {"summary": summary, "payments": payments}
