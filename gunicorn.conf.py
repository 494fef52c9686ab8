"""Gunicorn configuration.

Run with:
    gunicorn -c gunicorn.conf.py "fleet_identity.flask_app:create_app()"

Secrets are read by ``load_settings()`` in each worker (``/run/secrets`` first,
then the environment), so nothing secret is loaded here.
"""
import os

bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:8000")
workers = int(os.environ.get("GUNICORN_WORKERS", "2"))
worker_class = "sync"
# Upper bound on one request: a full identity scan plus the create/update call
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "120"))
loglevel = os.environ.get("LOG_LEVEL", "info")
accesslog = "-"
errorlog = "-"


def post_fork(server, worker):
    """
    Called just after a worker has been forked.

    Reports whether Docker secrets are mounted so a worker running on
    environment-only secrets is visible in the logs.
    """
    from pathlib import Path

    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"
    if demo_mode:
        worker.log.warning("DEMO_MODE=true: demo credentials may be in use")

    secrets_dir = Path("/run/secrets")
    if secrets_dir.exists() and secrets_dir.is_dir():
        secret_files = list(secrets_dir.glob("*"))
        if secret_files:
            worker.log.info(f"Found {len(secret_files)} secrets in /run/secrets")
            return
    worker.log.info("No /run/secrets mount; secrets come from the environment")
