from flask import Blueprint, abort, current_app, jsonify, request

from fris.services.kpi_service import money_saved, parse_timestamp

kpi_bp = Blueprint("kpi", __name__)


@kpi_bp.route("/kpi/money_saved", methods=["GET"])
def money_saved_route():
    try:
        start = parse_timestamp(request.args.get("from"), "from")
        end = parse_timestamp(request.args.get("to"), "to")
    except ValueError as exc:
        abort(400, description=str(exc))

    session = current_app.extensions["fris"]["session_factory"]()
    try:
        return jsonify(money_saved(session, start, end))
    except ValueError as exc:
        abort(400, description=str(exc))
    finally:
        session.close()
