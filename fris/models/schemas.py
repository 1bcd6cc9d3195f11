from datetime import datetime
from typing import Any, Dict, Optional


def _ts(val: Optional[datetime]) -> Optional[str]:
    return val.isoformat() if val else None


def declaration_to_dict(model) -> Dict[str, Any]:
    if model is None:
        return {}
    return {
        "id": model.id,
        "declaration_id": model.declaration_id,
        "arrival_port": model.arrival_port,
        "lodgement_ts": model.lodgement_ts,
        "status": model.status,
        "channel": model.channel,
        "items": model.items or [],
        "risk_scores": model.risk_scores or {},
        "released_at": _ts(model.released_at),
        "created_at": _ts(model.created_at),
        "updated_at": _ts(model.updated_at),
    }


def policy_decision_to_dict(model) -> Dict[str, Any]:
    if model is None:
        return {}
    return {
        "id": model.id,
        "declaration_id": model.declaration_id,
        "action": model.action,
        "reason": model.reason,
        "policy_version": model.policy_version,
        "ttl_minutes": model.ttl_minutes,
        "confidence": model.confidence,
        "rule_ids": model.rule_ids or [],
        "idempotency_key": model.idempotency_key,
        "workflow_id": model.workflow_id,
        "created_at": _ts(model.created_at),
    }


def case_to_dict(model) -> Dict[str, Any]:
    if model is None:
        return {}
    return {
        "case_id": model.case_id,
        "declaration_id": model.declaration_id,
        "type": model.type,
        "status": model.status,
        "outcome": model.outcome,
        "expected_recovery": model.expected_recovery,
        "recovery_amount": model.recovery_amount,
        "assigned_to": model.assigned_to,
        "opened_at": _ts(model.opened_at),
        "closed_at": _ts(model.closed_at),
    }


def case_action_to_dict(model) -> Dict[str, Any]:
    return {
        "id": model.id,
        "action": model.action,
        "performed_by": model.performed_by,
        "notes": model.notes,
        "details": model.details or {},
        "created_at": _ts(model.created_at),
    }


def payment_to_dict(model) -> Dict[str, Any]:
    if model is None:
        return {}
    return {
        "declaration_id": model.declaration_id,
        "bank_ref": model.bank_ref,
        "assessed": model.assessed,
        "paid": model.paid,
        "delta": model.delta,
        "fx_rate": model.fx_rate,
        "status": model.status,
        "created_at": _ts(model.created_at),
    }
