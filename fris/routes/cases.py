from flask import Blueprint, abort, current_app, jsonify, request

from fris.models.schemas import case_action_to_dict, case_to_dict
from fris.services.case_service import (
    CaseClosedError,
    CaseNotFoundError,
    close_case,
    get_case,
    list_case_actions,
    list_cases,
    open_case,
)
from fris.services.declaration_service import DeclarationNotFoundError

cases_bp = Blueprint("cases", __name__)


def _session():
    return current_app.extensions["fris"]["session_factory"]()


@cases_bp.route("/cases", methods=["POST"])
def create_case():
    payload = request.get_json(force=True)
    session = _session()
    try:
        case = open_case(
            session,
            declaration_id=payload.get("declaration_id"),
            case_type=payload.get("type"),
            expected_recovery=payload.get("expected_recovery"),
            assigned_to=payload.get("assigned_to"),
        )
        return jsonify(case_to_dict(case)), 201
    except DeclarationNotFoundError as exc:
        session.rollback()
        abort(404, description=str(exc))
    except ValueError as exc:
        session.rollback()
        abort(400, description=str(exc))
    finally:
        session.close()


@cases_bp.route("/cases", methods=["GET"])
def get_cases():
    session = _session()
    try:
        cases = list_cases(
            session,
            status=request.args.get("status"),
            case_type=request.args.get("type"),
            assigned_to=request.args.get("assigned_to"),
        )
        return jsonify([case_to_dict(c) for c in cases])
    finally:
        session.close()


@cases_bp.route("/cases/<case_id>", methods=["GET"])
def get_case_route(case_id: str):
    session = _session()
    try:
        case = get_case(session, case_id)
        if not case:
            abort(404, description="Case not found")
        return jsonify(case_to_dict(case))
    finally:
        session.close()


@cases_bp.route("/cases/<case_id>/close", methods=["POST"])
def close_case_route(case_id: str):
    payload = request.get_json(force=True)
    session = _session()
    try:
        case = close_case(
            session,
            case_id,
            outcome=payload.get("outcome"),
            recovery_amount=payload.get("recovery_amount"),
            actor=payload.get("actor"),
        )
        return jsonify(case_to_dict(case))
    except CaseNotFoundError as exc:
        session.rollback()
        abort(404, description=str(exc))
    except CaseClosedError as exc:
        session.rollback()
        abort(409, description=str(exc))
    except ValueError as exc:
        session.rollback()
        abort(400, description=str(exc))
    finally:
        session.close()


@cases_bp.route("/cases/<case_id>/audit", methods=["GET"])
def get_audit(case_id: str):
    session = _session()
    try:
        actions = list_case_actions(session, case_id)
        return jsonify([case_action_to_dict(a) for a in actions])
    except CaseNotFoundError as exc:
        abort(404, description=str(exc))
    finally:
        session.close()
