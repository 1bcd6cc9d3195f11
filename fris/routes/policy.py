from flask import Blueprint, abort, current_app, jsonify, request

from fris.policy import PolicyPackError


policy_bp = Blueprint("policy", __name__)


def _engine():
    return current_app.extensions["fris"]["engine"]


def _json_object():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        abort(400, description="Request body must be a JSON object")
    return payload


@policy_bp.route("/policy", methods=["GET"])
def get_policy():
    return jsonify(_engine().get_policy_pack().to_dict())


@policy_bp.route("/policy", methods=["PUT"])
def replace_policy():
    payload = _json_object()
    engine = _engine()
    try:
        engine.update_policy_pack(payload)
    except PolicyPackError as exc:
        abort(400, description=str(exc))
    return jsonify(engine.get_policy_pack().to_dict())


@policy_bp.route("/policy/evaluate", methods=["POST"])
def evaluate_policy():
    payload = _json_object()
    result = _engine().evaluate(payload)
    return jsonify(result.to_dict())


@policy_bp.route("/policy/rules", methods=["POST"])
def add_rule():
    payload = _json_object()
    engine = _engine()
    try:
        engine.add_rule(payload)
    except PolicyPackError as exc:
        abort(400, description=str(exc))
    rule = engine.get_policy_pack().find_rule(str(payload["id"]))
    return jsonify(rule.to_dict()), 201


@policy_bp.route("/policy/rules/<rule_id>", methods=["DELETE"])
def remove_rule(rule_id: str):
    if not _engine().remove_rule(rule_id):
        abort(404, description=f"Rule {rule_id} not found")
    return jsonify({"removed": rule_id})


@policy_bp.route("/policy/rules/<rule_id>/enable", methods=["POST"])
def enable_rule(rule_id: str):
    return _toggle(rule_id, True)


@policy_bp.route("/policy/rules/<rule_id>/disable", methods=["POST"])
def disable_rule(rule_id: str):
    return _toggle(rule_id, False)


def _toggle(rule_id: str, enabled: bool):
    engine = _engine()
    found = engine.enable_rule(rule_id) if enabled else engine.disable_rule(rule_id)
    if not found:
        abort(404, description=f"Rule {rule_id} not found")
    return jsonify(engine.get_policy_pack().find_rule(rule_id).to_dict())
