"""Flask application factory and bootstrap.

This module provides the create_app() factory function for initializing
the Flask application with all blueprints, middleware, and configuration.
"""
from __future__ import annotations
import ipaddress
import logging
from typing import Optional

from flask import Flask, request, abort
from werkzeug.middleware.proxy_fix import ProxyFix

from fleet_identity.config import AppConfig, load_settings
from fleet_identity.core.registry import Services, build_services

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(cfg: Optional[AppConfig] = None, services: Optional[Services] = None) -> Flask:
    """Create and configure Flask application.

    Args:
        cfg: Configuration (loaded from the environment when omitted)
        services: Prebuilt services (built from ``cfg`` when omitted)
    """
    cfg = cfg or load_settings()

    app = Flask(__name__)
    app.config["APP_CONFIG"] = cfg
    app.config["DEMO_MODE"] = cfg.demo_mode
    app.config["SERVICES"] = services or build_services(cfg)
    app.json.sort_keys = False

    # Trust X-Forwarded-* headers from proxy (nginx)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)  # type: ignore

    trusted_proxy_networks = parse_trusted_networks(cfg.trusted_proxy_ips)
    app.config["TRUSTED_PROXY_NETWORKS"] = trusted_proxy_networks

    from fleet_identity.api import admin, errors, health

    app.register_blueprint(health.bp)
    app.register_blueprint(admin.bp, url_prefix="/admin")

    errors.register_error_handlers(app)
    _register_middleware(app, trusted_proxy_networks)

    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    logger.info("[flask_app] Mode=%s; admin API registered at /admin", mode_label)
    if cfg.demo_mode:
        logger.warning("[flask_app] Demo mode active - do not deploy with demo credentials")

    return app


def parse_trusted_networks(raw: str) -> list:
    networks = []
    for entry in (raw or "").split(","):
        entry = entry.strip()
        if not entry:
            continue
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.warning("[flask_app] Ignoring invalid TRUSTED_PROXY_IPS entry %r", entry)
    return networks


def _register_middleware(app: Flask, trusted_proxy_networks: list):
    """Register before_request middleware."""

    @app.before_request
    def enforce_proxy_headers() -> None:
        """Validate proxy headers from trusted sources only."""
        original_remote = request.environ.get("werkzeug.proxy_fix.orig", {}).get("REMOTE_ADDR")
        if original_remote and request.headers.get("X-Forwarded-For"):
            try:
                address = ipaddress.ip_address(original_remote)
            except ValueError:
                abort(400, description="Invalid proxy address")
            if not any(address in network for network in trusted_proxy_networks):
                abort(400, description="Untrusted proxy")

        forwarded_proto = request.headers.get("X-Forwarded-Proto")
        if forwarded_proto and forwarded_proto != "https":
            abort(400, description="Invalid forwarded protocol")

        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for and "," in forwarded_for:
            abort(400, description="Multiple forwarded clients not permitted")
