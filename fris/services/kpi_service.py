from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select

from fris.models import Case, Declaration, Payment, PolicyDecision

# assumed duty rate on the undervalued share of a held declaration
ASSUMED_DUTY_RATE = 0.2
UNDERVALUATION_THRESHOLD = 0.5
REVENUE_BASELINE_USD = 1_000_000.0
RECOVERED_OUTCOMES = ("ADVERSE", "SETTLED")


def parse_timestamp(value: Optional[str], name: str) -> datetime:
    """ISO-8601 date or timestamp as naive UTC."""
    if not value:
        raise ValueError(f"Missing required parameter: {name}")
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValueError(f"Invalid {name} timestamp: {value}") from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _declared_value(declaration: Declaration) -> float:
    return sum(float(item.get("invoice_value_usd") or 0) for item in declaration.items or [])


def _savings_from_decisions(session, decisions):
    ids = {d.declaration_id for d in decisions}
    declarations = {}
    if ids:
        declarations = {
            d.declaration_id: d
            for d in session.execute(select(Declaration).where(Declaration.declaration_id.in_(ids))).scalars()
        }

    total = 0.0
    details = []
    for decision in decisions:
        declaration = declarations.get(decision.declaration_id)
        if declaration is None:
            continue
        scores = declaration.risk_scores or {}
        undervaluation = scores.get("undervaluation") or 0
        if undervaluation <= UNDERVALUATION_THRESHOLD:
            continue
        saved = _declared_value(declaration) * undervaluation * ASSUMED_DUTY_RATE
        total += saved
        details.append(
            {
                "declaration_id": decision.declaration_id,
                "action": decision.action,
                "reason": decision.reason,
                "estimated_savings": saved,
                "risk_score": scores.get("overall"),
            }
        )
    return total, details


def money_saved(session, start: datetime, end: datetime, baseline: float = REVENUE_BASELINE_USD) -> Dict[str, Any]:
    """
    Money-saved attribution for [start, end].

    Interventions count the estimated duty protected on HOLD/STOP decisions
    for declarations with a strong undervaluation score. Closed cases count
    what was recovered, and SHORT/DELAYED payments count their shortfall.
    """
    if start > end:
        raise ValueError("from must not be after to")

    decisions = session.execute(
        select(PolicyDecision).where(
            PolicyDecision.action.in_(("HOLD", "STOP")),
            PolicyDecision.created_at >= start,
            PolicyDecision.created_at <= end,
        )
    ).scalars().all()
    from_actions, action_details = _savings_from_decisions(session, decisions)

    closed_cases = session.execute(
        select(Case).where(
            Case.status == "CLOSED",
            Case.outcome.in_(RECOVERED_OUTCOMES),
            Case.closed_at >= start,
            Case.closed_at <= end,
        )
    ).scalars().all()
    recovered = [c for c in closed_cases if c.recovery_amount and c.recovery_amount > 0]
    from_cases = sum(c.recovery_amount for c in recovered)

    payments = session.execute(
        select(Payment).where(
            Payment.status.in_(("SHORT", "DELAYED")),
            Payment.created_at >= start,
            Payment.created_at <= end,
        )
    ).scalars().all()
    short_paid = [p for p in payments if p.assessed - p.paid > 0]
    from_payments = sum(p.assessed - p.paid for p in short_paid)

    held_ids = {d.declaration_id for d in decisions if d.action == "HOLD"}
    released_after_hold = 0
    if held_ids:
        released_after_hold = len(
            session.execute(
                select(Declaration.id).where(
                    Declaration.declaration_id.in_(held_ids),
                    Declaration.status == "RELEASED",
                    Declaration.released_at >= start,
                    Declaration.released_at <= end,
                )
            ).all()
        )

    total_actions = len(decisions)
    return {
        "period": {"from": start.isoformat(), "to": end.isoformat()},
        "money_saved": {
            "total": from_actions + from_cases + from_payments,
            "from_actions": from_actions,
            "from_cases": from_cases,
            "from_payment_reconciliation": from_payments,
        },
        "revenue_uplift": from_cases + from_payments - baseline,
        "performance_metrics": {
            "total_actions": total_actions,
            "holds": sum(1 for d in decisions if d.action == "HOLD"),
            "stops": sum(1 for d in decisions if d.action == "STOP"),
            "hit_rate": released_after_hold / total_actions * 100 if total_actions else 0.0,
            "cases_closed": len(closed_cases),
            "payment_discrepancies": len(payments),
        },
        "breakdown": {
            "actions": action_details,
            "cases": [
                {
                    "case_id": c.case_id,
                    "declaration_id": c.declaration_id,
                    "type": c.type,
                    "outcome": c.outcome,
                    "recovery_amount": c.recovery_amount,
                }
                for c in recovered
            ],
            "payments": [
                {
                    "declaration_id": p.declaration_id,
                    "bank_ref": p.bank_ref,
                    "status": p.status,
                    "delta": p.assessed - p.paid,
                }
                for p in short_paid
            ],
        },
    }
