"""
polarcraft/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, so tests can build isolated
         app instances and Alembic can import the models without a server.

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Initialise SQLAlchemy and the per-app stateful services (CAPTCHA store,
     rate limiter) in app.extensions
  3. Install request hooks: ProxyFix, rate limiting, CSRF
  4. Register all route blueprints under /api
  5. Register global error handlers (every error leaves as the envelope)
  6. Register maintenance CLI commands

shutdown_app(app) is the matching teardown: it disposes the connection pool,
stops the CAPTCHA sweeper and drops rate-limit counters.
"""

from __future__ import annotations

import logging
import traceback

from flask import Flask, request
from marshmallow import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException, MethodNotAllowed, NotFound
from werkzeug.middleware.proxy_fix import ProxyFix

from backend.config import config_by_name, validate_production_config, warn_on_default_secrets


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Unknown names fall back to "development".
    """
    app = Flask(__name__)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)
    app.json.sort_keys = app.config.get("JSON_SORT_KEYS", False)
    app.logger.setLevel(getattr(logging, app.config.get("LOG_LEVEL", "INFO"), logging.INFO))

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured
    else:
        warn_on_default_secrets(app)

    x_for = app.config.get("PROXY_FIX_X_FOR", 0)
    if x_for > 0:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=x_for, x_proto=1)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from backend.polarcraft.extensions import CAPTCHA_KEY, RATE_LIMITER_KEY, db
    from backend.polarcraft.middleware.rate_limit import RateLimiter
    from backend.polarcraft.services.captcha_service import CaptchaService

    db.init_app(app)

    captcha = CaptchaService.from_config(app.config)
    captcha.start()
    app.extensions[CAPTCHA_KEY] = captcha
    app.extensions[RATE_LIMITER_KEY] = RateLimiter.from_config(app.config)

    # ── Model registration ─────────────────────────────────────────────────
    # Populates SQLAlchemy's MetaData for create_all() and Alembic.
    with app.app_context():
        from backend.polarcraft.models import password_reset, refresh_token, user  # noqa: F401

    # ── Request hooks ──────────────────────────────────────────────────────
    # Registration order is execution order: the rate limit is applied
    # before the CSRF check so rejected CSRF attempts still count.
    from backend.polarcraft.middleware.csrf import configure_csrf
    from backend.polarcraft.middleware.rate_limit import configure_rate_limits

    configure_rate_limits(app)
    configure_csrf(app)

    _register_blueprints(app)
    _register_error_handlers(app)

    from backend.polarcraft.cli import register_cli
    register_cli(app)

    return app


def shutdown_app(app: Flask) -> None:
    """Releases everything create_app() acquired. Safe to call twice."""
    from backend.polarcraft.extensions import CAPTCHA_KEY, RATE_LIMITER_KEY, db

    with app.app_context():
        db.engine.dispose()

    captcha = app.extensions.get(CAPTCHA_KEY)
    if captcha is not None:
        captcha.close()

    limiter = app.extensions.get(RATE_LIMITER_KEY)
    if limiter is not None:
        limiter.close()

    app.logger.info("Application resources released")


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api prefix.

    The url_prefix is set here so individual route files only specify the
    path relative to their resource (e.g. "/login", "/sessions/<id>").
    """
    from backend.polarcraft.routes.admin import admin_bp
    from backend.polarcraft.routes.auth import auth_bp
    from backend.polarcraft.routes.system import system_bp
    from backend.polarcraft.routes.users import users_bp

    app.register_blueprint(system_bp, url_prefix="/api")
    app.register_blueprint(auth_bp,   url_prefix="/api/auth")
    app.register_blueprint(users_bp,  url_prefix="/api/users")
    app.register_blueprint(admin_bp,  url_prefix="/api/admin")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError          → its own code and status
      ValidationError   → VALIDATION_ERROR (400), every field listed in details
      SQLAlchemyError   → DATABASE_ERROR (500)
      404 / 405         → NOT_FOUND / METHOD_NOT_ALLOWED
      Exception         → INTERNAL_ERROR (500)

    Stack traces never leave the server; 5xx responses only carry the
    exception text when DEBUG is on.
    """
    from backend.polarcraft.errors import AppError, ErrorCode
    from backend.polarcraft.extensions import db
    from backend.polarcraft.utils.responses import error_response

    def _log_context() -> str:
        return f"{request.method} {request.url} ip={request.remote_addr}"

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """
        Converts an AppError raised anywhere in the request lifecycle
        (hooks, middleware, service, route) into the error envelope.
        Routes never catch AppError; they let it propagate here.
        """
        db.session.rollback()
        if error.http_status >= 500:
            app.logger.error("%s failed: %s %s", _log_context(), error.code, error.message)
        return error_response(error.code, error.message, error.http_status, error.details)

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """Collects every marshmallow field error into details=[{field, message}]."""
        return error_response(
            ErrorCode.VALIDATION_ERROR,
            "Request validation failed.",
            400,
            flatten_validation_messages(error.messages),
        )

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(error: SQLAlchemyError):
        db.session.rollback()
        app.logger.error("Database error on %s: %s\n%s", _log_context(), error, traceback.format_exc())
        return error_response(
            ErrorCode.DATABASE_ERROR,
            "A database error occurred.",
            500,
            str(error) if app.debug else None,
        )

    @app.errorhandler(NotFound)
    def handle_not_found(error: NotFound):
        return error_response(ErrorCode.NOT_FOUND, f"Route {request.method} {request.path} not found.", 404)

    @app.errorhandler(MethodNotAllowed)
    def handle_method_not_allowed(error: MethodNotAllowed):
        return error_response(
            ErrorCode.METHOD_NOT_ALLOWED,
            f"Method {request.method} is not allowed for {request.path}.",
            405,
        )

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        """Any other werkzeug abort (malformed body, oversized payload, ...)."""
        code = ErrorCode.VALIDATION_ERROR if error.code and error.code < 500 else ErrorCode.INTERNAL_ERROR
        return error_response(code, error.description or error.name, error.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions and returns a generic 500 response.
        The full traceback is written to the application logger.
        """
        db.session.rollback()
        app.logger.error(
            "Unhandled exception on %s: %s\n%s",
            _log_context(),
            error,
            traceback.format_exc(),
        )
        return error_response(
            ErrorCode.INTERNAL_ERROR,
            "An unexpected error occurred. Please try again later.",
            500,
            str(error) if app.debug else None,
        )


def flatten_validation_messages(messages, prefix: str = "") -> list[dict]:
    """
    {"username": ["Too short."], "_schema": ["..."]}
        → [{"field": "username", "message": "Too short."},
           {"field": "body", "message": "..."}]
    """
    details: list[dict] = []

    if isinstance(messages, dict):
        for key, value in messages.items():
            name = "body" if key == "_schema" else f"{prefix}{key}"
            if isinstance(value, dict):
                details.extend(flatten_validation_messages(value, prefix=f"{name}."))
            elif isinstance(value, list):
                for message in value:
                    if isinstance(message, (dict, list)):
                        details.extend(flatten_validation_messages(message, prefix=f"{name}."))
                    else:
                        details.append({"field": name, "message": str(message)})
            else:
                details.append({"field": name, "message": str(value)})
    elif isinstance(messages, list):
        for message in messages:
            details.append({"field": prefix.rstrip(".") or "body", "message": str(message)})
    else:
        details.append({"field": prefix.rstrip(".") or "body", "message": str(messages)})

    return details
