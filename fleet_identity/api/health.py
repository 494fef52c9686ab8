"""Health check endpoints."""
from flask import Blueprint

bp = Blueprint("health", __name__)


@bp.route("/health")
def health_check():
    """Liveness check."""
    return ("ok", 200, {"Content-Type": "text/plain"})


@bp.route("/ready")
def readiness_check():
    """Readiness check. Provider reachability is not checked here."""
    return ("ready", 200, {"Content-Type": "text/plain"})
