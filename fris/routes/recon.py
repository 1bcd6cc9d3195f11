from flask import Blueprint, abort, current_app, jsonify, request

from fris.models.schemas import case_to_dict, payment_to_dict
from fris.services.declaration_service import DeclarationNotFoundError
from fris.services.payment_service import payment_summary, reconcile_payment

recon_bp = Blueprint("recon", __name__)


def _session():
    return current_app.extensions["fris"]["session_factory"]()


@recon_bp.route("/recon/payment", methods=["POST"])
def reconcile():
    payload = request.get_json(force=True)
    session = _session()
    try:
        outcome = reconcile_payment(
            session,
            declaration_id=payload.get("declaration_id"),
            bank_ref=payload.get("bank_ref"),
            assessed=payload.get("assessed"),
            paid=payload.get("paid"),
            status=payload.get("status"),
            fx_rate=payload.get("fx_rate"),
        )
        body = {
            "payment": payment_to_dict(outcome.payment),
            "case": case_to_dict(outcome.case) if outcome.case else None,
            "replayed": outcome.replayed,
        }
        return jsonify(body), 200 if outcome.replayed else 201
    except DeclarationNotFoundError as exc:
        session.rollback()
        abort(404, description=str(exc))
    except ValueError as exc:
        session.rollback()
        abort(400, description=str(exc))
    finally:
        session.close()


@recon_bp.route("/recon/payment", methods=["GET"])
def list_payments():
    session = _session()
    try:
        data = payment_summary(
            session,
            period=request.args.get("period", "MTD"),
            status=request.args.get("status"),
        )
        return jsonify({"summary": data["summary"], "payments": [payment_to_dict(p) for p in data["payments"]]})
    except ValueError as exc:
        abort(400, description=str(exc))
    finally:
        session.close()
