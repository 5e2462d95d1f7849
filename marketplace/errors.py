from __future__ import annotations

import logging

from flask import Flask, jsonify
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from marketplace.database import get_db
from marketplace.observability import increment_counter

logger = logging.getLogger(__name__)


def error_response(message: str, code: str, status: int):
    return jsonify({"error": message, "code": code}), status


def register_error_handlers(app: Flask) -> None:
    """Render every HTTP error as ``{"error": ..., "code": ...}``."""

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        if exc.code and exc.code >= 500:
            logger.error("HTTP %s: %s", exc.code, exc.description)
        return error_response(exc.description, exc.name.replace(" ", ""), exc.code or 500)

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(exc: IntegrityError):
        # Unique constraints raced past the service-level checks.
        get_db().rollback()
        increment_counter("db_integrity_errors_total")
        logger.warning("Integrity error: %s", exc.orig)
        return error_response("Resource conflicts with an existing record", "Conflict", 409)

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        get_db().rollback()
        increment_counter("unhandled_exceptions_total", labels={"type": type(exc).__name__})
        logger.exception("Unhandled error: %s", exc)
        return error_response("Internal server error", "InternalServerError", 500)
