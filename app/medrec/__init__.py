import logging
from datetime import timedelta

from flask import Flask, g, jsonify
from dotenv import load_dotenv

from app.medrec.config import load_config
from app.medrec.db import init_db, teardown_db_session
from app.medrec.routes import bp as routes_bp
from app.medrec.auth import load_current_user
from app.medrec.identity import identity_from_app
from app.medrec.ledger import ledger_from_config
from app.medrec.storage import StorageError, file_store_from_config
from app.medrec.modules.patient_records.api import bp as patients_bp
from app.medrec.modules.patient_records.errors import RecordError
from app.medrec.modules.patient_records.service import RecordService
from app.medrec.modules.patient_records.store import store_from_app


def create_app(config_overrides: dict | None = None) -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    if config_overrides:
        app.config.update(config_overrides)
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    ledger = ledger_from_config(app.config)
    if not getattr(ledger, "enabled", False):
        app.logger.info("LEDGER_URL not set; external ledger submissions disabled")

    app.extensions["record_service"] = RecordService(
        store=store_from_app(app),
        identity=identity_from_app(app),
        files=file_store_from_config(app.config),
        ledger=ledger,
    )

    app.register_blueprint(routes_bp)
    app.register_blueprint(patients_bp, url_prefix="/api/v1/patients")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(RecordError)
    def _record_error(e: RecordError):  # type: ignore[no-redef]
        app.logger.info(
            "Record operation refused: %s (%s) request_id=%s",
            e.kind,
            e.message,
            getattr(g, "request_id", None),
        )
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(StorageError)
    def _storage_error(e: StorageError):  # type: ignore[no-redef]
        app.logger.error("Storage failure request_id=%s: %s", getattr(g, "request_id", None), e)
        return jsonify({"error": "storage_unavailable", "message": "File storage is unavailable."}), 503

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return jsonify({"error": "not_found", "message": "Not found"}), 404

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "internal", "message": "Internal server error"}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
