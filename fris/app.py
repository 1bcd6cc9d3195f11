import atexit
import logging
import os

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_cors import CORS
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from fris.config import Config
from fris.db.session import build_engine, build_session_factory
from fris.models import Base
from fris.policy import PolicyEngine, default_policy_pack, load_policy_pack
from fris.routes import cases_bp, declarations_bp, kpi_bp, policy_bp, recon_bp, workflows_bp
from fris.workflow import HoldStopWorkflowManager, WorkflowSweeper, build_notifier

logger = logging.getLogger(__name__)


def create_app(overrides=None):
    load_dotenv()
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    CORS(app)

    @app.after_request
    def add_cors_headers(response):
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization, Idempotency-Key"
        return response

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify({"error": exc.name, "message": exc.description}), exc.code

    db_engine = build_engine(app.config["DATABASE_URL"], echo=app.config["SQLALCHEMY_ECHO"])
    session_factory = build_session_factory(db_engine)
    init_db(db_engine)

    pack_path = app.config.get("POLICY_PACK_PATH")
    policy_pack = load_policy_pack(pack_path) if pack_path else default_policy_pack()
    policy_engine = PolicyEngine(policy_pack)
    manager = HoldStopWorkflowManager(
        session_factory,
        notifier=build_notifier(app.config.get("TELEGRAM_BOT_TOKEN"), app.config.get("TELEGRAM_CHAT_ID")),
        policy_version=policy_pack.version,
    )

    sweeper = None
    if app.config["SWEEP_ENABLED"] and not app.config.get("TESTING"):
        sweeper = WorkflowSweeper(manager, app.config["SWEEP_INTERVAL_SECONDS"])
        sweeper.start()
        atexit.register(sweeper.stop)

    app.extensions["fris"] = {
        "db_engine": db_engine,
        "session_factory": session_factory,
        "engine": policy_engine,
        "manager": manager,
        "sweeper": sweeper,
    }

    app.register_blueprint(policy_bp, url_prefix="/api")
    app.register_blueprint(workflows_bp, url_prefix="/api")
    app.register_blueprint(declarations_bp, url_prefix="/api")
    app.register_blueprint(cases_bp, url_prefix="/api")
    app.register_blueprint(recon_bp, url_prefix="/api")
    app.register_blueprint(kpi_bp, url_prefix="/api")

    @app.route("/api/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok", "policy_version": policy_engine.version})

    @app.route("/api/db-health", methods=["GET"])
    def db_health():
        try:
            verify_database_connection(db_engine)
            return jsonify({"status": "ok"})
        except Exception as exc:
            return jsonify({"status": "error", "message": str(exc)}), 500

    logger.info("FRIS backend ready (policy pack %s)", policy_engine.version)
    return app


def init_db(db_engine):
    # Workflow tables register on Base through the fris.workflow import above
    Base.metadata.create_all(bind=db_engine)


def verify_database_connection(db_engine):
    with db_engine.connect() as connection:
        connection.execute(text("SELECT 1"))


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=int(os.getenv("PORT", 5000)), debug=True)
