import os

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from agency.config import Config
from agency.db import close_db, init_db
from agency.db_migrations import register_db_cli
from agency.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
    prometheus_metrics_text,
)


def create_app(config_class=Config, *, store=None, cache=None):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    _ensure_database_dir(app)
    _register_error_handlers(app)
    _register_runtime(app, store=store, cache=cache)
    _register_auth(app)
    _register_blueprints(app)
    _register_health(app)
    register_db_cli(app)
    schema_ready = _maybe_init_schema(app)
    _maybe_seed_catalog(app, schema_ready)

    _register_scheduler(app)
    app.teardown_appcontext(close_db)
    return app


def _ensure_database_dir(app: Flask) -> None:
    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)


def _maybe_init_schema(app: Flask) -> bool:
    if _document_backend(app) == "memory":
        return True
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        # Testes continuam isolados sem depender de migration externa.
        auto_init = True
    if not auto_init:
        return False

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignorado fora de development.")
        return False

    with app.app_context():
        init_db()
    return True


def _document_backend(app: Flask) -> str:
    return str(app.config.get("DOCUMENT_STORE_BACKEND") or "sql").strip().lower()


def _register_runtime(app: Flask, *, store=None, cache=None) -> None:
    from agency.routes.route_helpers import close_request_repositories
    from agency.runtime import build_runtime

    app.extensions["agency_runtime"] = build_runtime(app.config, store=store, cache=cache)
    app.teardown_request(close_request_repositories)


def _maybe_seed_catalog(app: Flask, schema_ready: bool) -> None:
    from agency.errors import AppError
    from agency.runtime import get_runtime

    if not schema_ready or not app.config.get("CATALOG_SEED_ENABLED", True):
        return
    runtime = get_runtime(app)
    repos = runtime.system_repositories()
    try:
        runtime.catalog.seed_defaults(repos)
    except AppError as exc:
        app.logger.warning("catalog_seed_failed", extra={"error_code": exc.code, "details": exc.details})
    finally:
        repos.close()


def _register_blueprints(app: Flask) -> None:
    from agency.routes.admin_routes import admin_bp
    from agency.routes.portal_routes import portal_bp

    app.register_blueprint(admin_bp)
    app.register_blueprint(portal_bp)


def _register_auth(app: Flask) -> None:
    from agency.auth import register_auth

    register_auth(app)


def _register_scheduler(app: Flask) -> None:
    from agency.scheduler import start_project_refresh_scheduler

    start_project_refresh_scheduler(app)


def _register_error_handlers(app: Flask) -> None:
    from agency.errors import AppError, SystemError

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)

    def _log_error(error: AppError, request_id: str) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
                "request_path": request.path,
                "http_method": request.method,
            },
            exc_info=error.critical,
        )

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        _log_error(exc, request_id)
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        request_id = ensure_request_id()
        mapped = SystemError(
            code="unexpected_error",
            message_key="unexpected_error",
            http_status=500,
            critical=True,
            details=str(exc),
        )
        app.logger.exception(
            "unexpected_exception",
            extra={
                "request_id": request_id,
                "error_code": mapped.code,
                "request_path": request.path,
                "http_method": request.method,
            },
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_health(app: Flask) -> None:
    from agency.routes.route_helpers import critical_actions_bundle
    from agency.runtime import get_runtime
    from agency.ui_strings import frontend_bundle

    @app.route("/health")
    def health():
        runtime = get_runtime(app)
        db_path = app.config.get("DB_PATH") or "unknown"
        backend = "postgres" if str(db_path).startswith("postgres") else "sqlite"
        if _document_backend(app) == "memory":
            backend = "memory"
        breaker = runtime.breaker.snapshot()
        payload = {
            "status": "degraded" if breaker["state"] == "open" else "ok",
            "db": backend,
            "env": app.config.get("ENV", "unknown"),
            "store": {"circuit_breaker": breaker},
            "metrics": {
                "http": metrics_snapshot(),
            },
        }
        return payload, 200

    @app.route("/metrics")
    def metrics():
        return Response(prometheus_metrics_text(), mimetype="text/plain; version=0.0.4")

    @app.route("/api/ui-config")
    def ui_config():
        bundle = dict(frontend_bundle())
        bundle["critical_actions"] = critical_actions_bundle()
        return jsonify(bundle), 200
