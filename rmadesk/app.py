from __future__ import annotations

import os
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from rmadesk.errors import NotFoundError, StoreError, ValidationError
from rmadesk.mailer import EmailSender
from rmadesk.observability.metrics_collector import metrics_collector
from rmadesk.observability.structured_logger import app_logger
from rmadesk.web import SENDER_EXTENSION, close_store, error_response


def load_config() -> Dict[str, Any]:
    """Settings taken from the environment."""
    root = Path(__file__).resolve().parents[1]
    return {
        "SECRET_KEY": os.environ.get("APP_SECRET_KEY", "dev-insecure-secret"),
        "DB_PATH": os.environ.get("APP_DB_PATH", str(root / "rmadesk.sqlite")),
        "BREVO_API_KEY": os.environ.get("BREVO_API_KEY", ""),
        "BREVO_API_URL": os.environ.get("BREVO_API_URL", "https://api.brevo.com/v3/smtp/email"),
        "WEB3FORMS_ACCESS_KEY": os.environ.get("WEB3FORMS_ACCESS_KEY", ""),
        "WEB3FORMS_API_URL": os.environ.get("WEB3FORMS_API_URL", "https://api.web3forms.com/submit"),
        "EMAIL_SENDER_ADDRESS": os.environ.get("EMAIL_SENDER_ADDRESS", "no-reply@example.com"),
        "EMAIL_SENDER_NAME": os.environ.get("EMAIL_SENDER_NAME", "RMA Desk"),
        "EMAIL_TIMEOUT_SECONDS": float(os.environ.get("EMAIL_TIMEOUT_SECONDS", "10")),
        "LOG_LEVEL": os.environ.get("LOG_LEVEL", "INFO"),
        "LOGIN_DISABLED": False,
    }


def create_app(config: Optional[Dict[str, Any]] = None) -> Flask:
    app = Flask(__name__)
    app.config.update(load_config())
    if config:
        app.config.update(config)
    app.secret_key = app.config["SECRET_KEY"]
    app_logger.logger.setLevel(app.config["LOG_LEVEL"].upper())

    app.extensions[SENDER_EXTENSION] = EmailSender.from_config(app.config)

    from rmadesk.auth import bp as auth_bp
    from rmadesk.monitoring_routes import monitoring_bp
    from rmadesk.reference.routes import BLUEPRINTS
    from rmadesk.rma.routes import bp as rma_bp

    app.register_blueprint(auth_bp)
    for bp in BLUEPRINTS:
        app.register_blueprint(bp)
    app.register_blueprint(rma_bp)
    app.register_blueprint(monitoring_bp)

    app.teardown_appcontext(close_store)

    # ============================================
    # OBSERVABILITY MIDDLEWARE
    # ============================================

    @app.before_request
    def before_request_observability():
        """Initialize request tracking for observability"""
        g.request_id = request.headers.get('X-Request-Id') or str(uuid.uuid4())
        g.start_time = time.time()
        app_logger.debug(
            f"Request started: {request.method} {request.path}",
            method=request.method,
            path=request.path,
            remote_addr=request.remote_addr
        )

    @app.after_request
    def after_request_observability(response):
        """Record metrics after each request"""
        if not hasattr(g, 'start_time'):
            return response
        duration = time.time() - g.start_time

        metrics_collector.observe(
            'http_request_duration_seconds',
            duration,
            labels={
                'endpoint': request.endpoint or 'unknown',
                'method': request.method,
                'status': response.status_code
            }
        )
        app_logger.info(
            f"Request completed: {request.method} {request.path}",
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2)
        )

        if response.status_code >= 400:
            metrics_collector.increment_counter('errors_total')
            metrics_collector.record_event('errors_total')
            if response.status_code < 500:
                metrics_collector.increment_counter('http_errors', labels={'type': '4xx'})
            else:
                metrics_collector.increment_counter('http_errors', labels={'type': '5xx'})

        response.headers['X-Request-Id'] = g.request_id
        return response

    # ============================================
    # ERROR HANDLERS
    # ============================================

    @app.errorhandler(ValidationError)
    def validation_error(error):
        app_logger.info("Request rejected", path=request.path, reason=str(error))
        return error_response("ValidationError", str(error), 400)

    @app.errorhandler(NotFoundError)
    def not_found_error(error):
        app_logger.warning(f"Not found: {error}", path=request.path)
        return error_response("NotFound", str(error), 404)

    @app.errorhandler(StoreError)
    def store_error(error):
        app_logger.error("Document store failure", path=request.path, error=str(error),
                         cause=str(error.cause) if error.cause else None)
        return error_response("StoreError", "store unavailable", 503)

    @app.errorhandler(HTTPException)
    def http_error(error):
        return error_response(error.name.replace(" ", ""), error.description, error.code)

    @app.errorhandler(Exception)
    def internal_error(error):
        app_logger.error("Unhandled exception", path=request.path, error=str(error),
                         exception_type=type(error).__name__)
        return error_response("ServerError", str(error), 500)

    @app.route("/health")
    def health_check():
        """Liveness check"""
        return {'status': 'healthy', 'timestamp': time.time(), 'version': '1.0.0'}, 200

    return app


if __name__ == "__main__":
    create_app().run(debug=True)
