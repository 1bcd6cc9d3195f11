from flask import Blueprint, abort, current_app, jsonify, request
from sqlalchemy import select

from fris.models import PolicyDecision
from fris.models.schemas import declaration_to_dict, policy_decision_to_dict
from fris.services.decision_service import ingest_decision
from fris.services.declaration_service import DeclarationNotFoundError, create_declaration, get_declaration
from fris.workflow import workflow_to_dict


declarations_bp = Blueprint("declarations", __name__)


def _services():
    return current_app.extensions["fris"]


@declarations_bp.route("/declarations", methods=["POST"])
def create_declaration_route():
    payload = request.get_json(force=True)
    session = _services()["session_factory"]()
    try:
        declaration = create_declaration(
            session,
            declaration_id=payload.get("declaration_id"),
            items=payload.get("items"),
            lodgement_ts=payload.get("lodgement_ts"),
            arrival_port=payload.get("arrival_port"),
            risk_scores=payload.get("risk_scores"),
        )
        return jsonify(declaration_to_dict(declaration)), 201
    except ValueError as exc:
        session.rollback()
        abort(400, description=str(exc))
    finally:
        session.close()


@declarations_bp.route("/declarations/<declaration_id>", methods=["GET"])
def get_declaration_route(declaration_id: str):
    session = _services()["session_factory"]()
    try:
        declaration = get_declaration(session, declaration_id)
        if not declaration:
            abort(404, description="Declaration not found")
        decisions = session.execute(
            select(PolicyDecision)
            .where(PolicyDecision.declaration_id == declaration_id)
            .order_by(PolicyDecision.created_at.desc(), PolicyDecision.id.desc())
        ).scalars().all()
        body = declaration_to_dict(declaration)
        body["decisions"] = [policy_decision_to_dict(d) for d in decisions]
        return jsonify(body)
    finally:
        session.close()


@declarations_bp.route("/decision/ingest", methods=["POST"])
def ingest():
    payload = request.get_json(force=True)
    declaration_id = payload.get("declaration_id")
    if not declaration_id:
        abort(400, description="declaration_id is required")
    services = _services()
    try:
        outcome = ingest_decision(
            services["session_factory"],
            services["engine"],
            services["manager"],
            declaration_id,
            idempotency_key=request.headers.get("Idempotency-Key"),
            actor=payload.get("actor", "system"),
        )
    except DeclarationNotFoundError as exc:
        abort(404, description=str(exc))
    except ValueError as exc:
        abort(400, description=str(exc))
    body = {
        "declaration_id": declaration_id,
        "decision": policy_decision_to_dict(outcome.decision),
        "result": outcome.result.to_dict() if outcome.result else None,
        "workflow": workflow_to_dict(outcome.workflow) if outcome.workflow else None,
        "replayed": outcome.replayed,
    }
    return jsonify(body), 200 if outcome.replayed else 201
