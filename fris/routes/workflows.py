from datetime import datetime, timedelta, timezone

from flask import Blueprint, abort, current_app, jsonify, request

from fris.workflow import (
    IllegalTransitionError,
    WorkflowConflictError,
    WorkflowNotFoundError,
    workflow_action_to_dict,
    workflow_to_dict,
)


workflows_bp = Blueprint("workflows", __name__)

DEFAULT_STATS_WINDOW_DAYS = 30


def _manager():
    return current_app.extensions["fris"]["manager"]


def _call(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except WorkflowNotFoundError as exc:
        abort(404, description=str(exc))
    except (IllegalTransitionError, WorkflowConflictError) as exc:
        abort(409, description=str(exc))
    except ValueError as exc:
        abort(400, description=str(exc))


def _parse_ts(value, default):
    if not value:
        return default
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        abort(400, description=f"Invalid timestamp: {value}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@workflows_bp.route("/workflows", methods=["POST"])
def create_workflow():
    payload = request.get_json(force=True)
    workflow = _call(
        _manager().create_workflow,
        declaration_id=payload.get("declaration_id"),
        action_type=payload.get("action_type"),
        reason=payload.get("reason"),
        created_by=payload.get("created_by", "system"),
        priority=payload.get("priority", "MEDIUM"),
        sla_minutes=payload.get("sla_minutes"),
        assigned_to=payload.get("assigned_to"),
        rule_ids=payload.get("rule_ids"),
        policy_version=payload.get("policy_version"),
        metadata=payload.get("metadata"),
    )
    return jsonify(workflow_to_dict(workflow)), 201


@workflows_bp.route("/workflows", methods=["GET"])
def list_workflows():
    rows = _call(
        _manager().list_workflows,
        status=request.args.get("status"),
        declaration_id=request.args.get("declaration_id"),
    )
    return jsonify([workflow_to_dict(row) for row in rows])


@workflows_bp.route("/workflows/stats", methods=["GET"])
def workflow_stats():
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    start = _parse_ts(request.args.get("start"), now - timedelta(days=DEFAULT_STATS_WINDOW_DAYS))
    end = _parse_ts(request.args.get("end"), now)
    stats = _manager().get_workflow_stats(start, end)
    stats["period_start"] = start.isoformat()
    stats["period_end"] = end.isoformat()
    return jsonify(stats)


@workflows_bp.route("/workflows/check-expired", methods=["POST"])
def check_expired():
    result = _manager().check_expired_workflows()
    return jsonify(result.to_dict())


@workflows_bp.route("/workflows/<workflow_id>", methods=["GET"])
def get_workflow(workflow_id: str):
    workflow = _call(_manager().get_workflow, workflow_id)
    return jsonify(workflow_to_dict(workflow))


@workflows_bp.route("/workflows/<workflow_id>/actions", methods=["GET"])
def list_workflow_actions(workflow_id: str):
    rows = _call(_manager().list_actions, workflow_id)
    return jsonify([workflow_action_to_dict(row) for row in rows])


@workflows_bp.route("/workflows/<workflow_id>/release", methods=["POST"])
def release_workflow(workflow_id: str):
    payload = request.get_json(force=True)
    workflow = _call(
        _manager().release_workflow,
        workflow_id,
        authorized_by=payload.get("authorized_by", "system"),
        reason=payload.get("reason"),
        notes=payload.get("notes"),
    )
    return jsonify(workflow_to_dict(workflow))


@workflows_bp.route("/workflows/<workflow_id>/escalate", methods=["POST"])
def escalate_workflow(workflow_id: str):
    payload = request.get_json(force=True)
    level = payload.get("level")
    if level is not None and (isinstance(level, bool) or not isinstance(level, int)):
        abort(400, description="level must be an integer")
    workflow = _call(
        _manager().escalate_workflow,
        workflow_id,
        escalated_by=payload.get("escalated_by", "system"),
        reason=payload.get("reason"),
        level=level,
    )
    return jsonify(workflow_to_dict(workflow))


@workflows_bp.route("/workflows/<workflow_id>/review", methods=["POST"])
def review_workflow(workflow_id: str):
    payload = request.get_json(force=True)
    workflow = _call(
        _manager().review_workflow,
        workflow_id,
        reviewed_by=payload.get("reviewed_by"),
        outcome=payload.get("outcome"),
        notes=payload.get("notes", ""),
    )
    return jsonify(workflow_to_dict(workflow))
