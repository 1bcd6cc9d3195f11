from datetime import datetime
from typing import Any, Dict, Optional


def _ts(val: Optional[datetime]) -> Optional[str]:
    return val.isoformat() if val else None


def workflow_to_dict(model) -> Dict[str, Any]:
    if model is None:
        return {}
    return {
        "id": model.id,
        "declaration_id": model.declaration_id,
        "action_type": model.action_type,
        "status": model.status,
        "created_at": _ts(model.created_at),
        "expires_at": _ts(model.expires_at),
        "created_by": model.created_by,
        "assigned_to": model.assigned_to,
        "priority": model.priority,
        "reason": model.reason,
        "policy_version": model.policy_version,
        "rule_ids": list(model.rule_ids or []),
        "sla_minutes": model.sla_minutes,
        "escalation_level": model.escalation_level,
        "review_required": model.review_required,
        "review_notes": model.review_notes,
        "reviewed_by": model.reviewed_by,
        "reviewed_at": _ts(model.reviewed_at),
        "release_authorized_by": model.release_authorized_by,
        "release_authorized_at": _ts(model.release_authorized_at),
        "metadata": model.workflow_metadata or {},
        "updated_at": _ts(model.updated_at),
    }


def workflow_action_to_dict(model) -> Dict[str, Any]:
    if model is None:
        return {}
    return {
        "id": model.id,
        "event_id": model.event_id,
        "workflow_id": model.workflow_id,
        "declaration_id": model.declaration_id,
        "action_type": model.action_type,
        "performed_by": model.performed_by,
        "performed_at": _ts(model.performed_at),
        "notes": model.notes,
        "details": model.details,
    }
