"""Operator CLI for identity provisioning, password resets and drift audits.

Runs with the service role key from the environment and acts as a trusted
caller, so every command is audited under the shared-secret actor.

    python -m scripts.admin_ops provision --email driver@example.com
    python -m scripts.admin_ops sync-audit --repair
"""
from __future__ import annotations
import argparse
import json
import logging
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fleet_identity.config import load_settings
from fleet_identity.core.errors import ReconciliationError
from fleet_identity.core.models import AUTH_METHOD_SECRET, AuthorizationContext
from fleet_identity.core.registry import build_services


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Identity reconciliation admin helper")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")

    sub = parser.add_subparsers(dest="cmd")

    sp = sub.add_parser("provision", help="Ensure the identity for a profile exists")
    sp.add_argument("--email")
    sp.add_argument("--profile-id")

    sr = sub.add_parser("reset", help="Two-phase password reset")
    target = sr.add_mutually_exclusive_group(required=True)
    target.add_argument("--user-id")
    target.add_argument("--email")
    sr.add_argument("--keep-flag", action="store_true",
                    help="Do not force a password change at next login")

    sc = sub.add_parser("create-user", help="Create profile and identity together")
    sc.add_argument("--email", required=True)
    sc.add_argument("--role")
    sc.add_argument("--first", default="")
    sc.add_argument("--last", default="")
    sc.add_argument("--organization-id")

    sa = sub.add_parser("sync-audit", help="Report profile/identity drift")
    sa.add_argument("--repair", action="store_true", help="Provision missing identities")

    sl = sub.add_parser("logs", help="Show recent administrative operations")
    sl.add_argument("--limit", type=int, default=50)

    sub.add_parser("verify-audit", help="Verify audit log signatures")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Command-line entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )

    services = build_services(load_settings())
    ctx = AuthorizationContext(method=AUTH_METHOD_SECRET)

    try:
        if args.cmd == "provision":
            if not args.email and not args.profile_id:
                parser.error("provision requires --email or --profile-id")
            result = services.provisioning.provision_identity(
                ctx, email=args.email, profile_id=args.profile_id
            )
            _print_json(result.to_response())
        elif args.cmd == "reset":
            result = services.resets.reset_password(
                ctx,
                target_user_id=args.user_id,
                target_email=args.email,
                force_must_change=not args.keep_flag,
            )
            _print_json(result.to_response())
        elif args.cmd == "create-user":
            result = services.provisioning.create_user(
                ctx,
                args.email,
                role=args.role,
                first_name=args.first,
                last_name=args.last,
                organization_id=args.organization_id,
            )
            _print_json(result.to_response())
        elif args.cmd == "sync-audit":
            report = services.sync.audit(ctx, repair=args.repair)
            _print_json(report.to_dict())
            if not report.in_sync and not args.repair:
                sys.exit(2)
        elif args.cmd == "logs":
            _print_json(services.auditor.recent(args.limit))
        elif args.cmd == "verify-audit":
            total, valid = services.auditor.verify()
            print(f"Audit log: {valid}/{total} entries with valid signatures")
            if total != valid:
                sys.exit(1)
        else:
            parser.print_help()
    except ReconciliationError as exc:
        print(f"[{args.cmd}] Error ({exc.code}): {exc.detail}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
