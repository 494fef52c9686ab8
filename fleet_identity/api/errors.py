"""Error handlers for the application. Every error is rendered as JSON."""
import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

from fleet_identity.core.errors import ReconciliationError

logger = logging.getLogger(__name__)


def error_response(status: int, error: str, details: str, code: str):
    return jsonify({"error": error, "details": details, "code": code}), status


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(ReconciliationError)
    def reconciliation_error(error: ReconciliationError):
        """Render service errors with their own status and code."""
        if error.status >= 500:
            logger.error("[api] %s %s failed: %s", error.code, error.status, error.detail)
        return jsonify(error.to_dict()), error.status

    @app.errorhandler(HTTPException)
    def http_error(error: HTTPException):
        """Render werkzeug errors (404 route, 405, aborts) as JSON."""
        code = (error.name or "error").lower().replace(" ", "_")
        return error_response(error.code or 500, error.name, error.description or error.name, code)

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions."""
        logger.error("Unhandled exception: %s", error, exc_info=True)
        return error_response(500, "Internal Server Error", "An unexpected error occurred", "internal_error")
