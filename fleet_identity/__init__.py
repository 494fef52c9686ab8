"""Identity & credential reconciliation service.

To use the Flask app:
    from fleet_identity.flask_app import create_app

To use the services directly:
    from fleet_identity.core.registry import build_services
"""
