"""Command-line helper for application registrations and their relationships.

This module serves as a CLI wrapper around appreg.core.msgraph services.
"""
from __future__ import annotations
import argparse
import json
import logging
import os
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from appreg.core.msgraph import (
    Application,
    ApplicationService,
    DirectoryClient,
    DirectoryError,
    DirectoryObject,
    Query,
    ReconcileError,
    ReconcileResult,
    RequestContext,
    TokenIssuancePolicy,
    VERSION_BETA,
)
from appreg.config import AppConfig
from appreg.core.msgraph.odata import CONSISTENCY_LEVEL_EVENTUAL
from scripts import audit


def build_service(args: argparse.Namespace) -> ApplicationService:
    """Authenticate with the service principal and return an ApplicationService."""
    cfg = AppConfig(
        demo_mode=os.environ.get("DEMO_MODE", "false").lower() == "true",
        tenant_id=args.tenant_id,
        client_id=args.client_id,
        client_secret=args.client_secret,
        graph_endpoint=args.endpoint.rstrip("/"),
        graph_api_version=args.api_version,
        authority_url=args.authority.rstrip("/"),
    )
    return ApplicationService(DirectoryClient.from_settings(cfg))


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def main() -> None:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(description="Directory application registration helper")
    parser.add_argument("--tenant-id", default=os.environ.get("GRAPH_TENANT_ID"))
    parser.add_argument("--client-id", default=os.environ.get("GRAPH_CLIENT_ID"))
    parser.add_argument("--client-secret", default=os.environ.get("GRAPH_CLIENT_SECRET"))
    parser.add_argument("--endpoint", default=os.environ.get("GRAPH_ENDPOINT", "https://graph.microsoft.com"))
    parser.add_argument("--authority", default=os.environ.get("GRAPH_AUTHORITY_URL", "https://login.microsoftonline.com"))
    parser.add_argument("--api-version", default=os.environ.get("GRAPH_API_VERSION", VERSION_BETA))
    parser.add_argument("--timeout", type=float, default=None,
                        help="Overall deadline in seconds, including consistency retries")
    parser.add_argument("--operator", default="automation",
                        help="Operator identifier for audit logs (default: automation)")
    parser.add_argument("-v", "--verbose", action="store_true")

    sub = parser.add_subparsers(dest="cmd")

    sl = sub.add_parser("list")
    sl.add_argument("--filter")
    sl.add_argument("--search", help="Advanced query, e.g. \"displayName:billing\" (sends ConsistencyLevel: eventual)")
    sl.add_argument("--top", type=int, default=0)
    sl.add_argument("--deleted", action="store_true")

    sg = sub.add_parser("get")
    sg.add_argument("--id", required=True)
    sg.add_argument("--deleted", action="store_true")

    sc = sub.add_parser("create")
    sc.add_argument("--display-name", required=True)
    sc.add_argument("--sign-in-audience", default="AzureADMyOrg")
    sc.add_argument("--owner", action="append", default=[])

    sd = sub.add_parser("delete")
    sd.add_argument("--id", required=True)
    sd.add_argument("--permanently", action="store_true")

    sr = sub.add_parser("restore")
    sr.add_argument("--id", required=True)

    for name in ("add-owners", "remove-owners", "sync-owners"):
        so = sub.add_parser(name)
        so.add_argument("--id", required=True)
        so.add_argument("--owner", action="append", default=[], required=name != "sync-owners")

    for name in ("assign-policy", "remove-policy", "sync-policies"):
        sp = sub.add_parser(name)
        sp.add_argument("--id", required=True)
        sp.add_argument("--policy", action="append", default=[], required=name != "sync-policies")

    sf = sub.add_parser("list-fic")
    sf.add_argument("--id", required=True)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if not args.cmd:
        parser.print_help()
        return

    if not args.tenant_id or not args.client_id:
        parser.error("Missing --tenant-id/--client-id")
    if not args.client_secret:
        parser.error("Missing service principal secret")

    ctx = RequestContext.with_timeout(args.timeout) if args.timeout else RequestContext()
    try:
        service = build_service(args)
        if args.cmd == "list":
            query = Query(filter=args.filter, top=args.top)
            if args.search:
                query = Query(filter=args.filter, top=args.top, search=f'"{args.search}"',
                              count=True, consistency_level=CONSISTENCY_LEVEL_EVENTUAL)
            if args.deleted:
                apps, _ = service.list_deleted(query, ctx)
            else:
                apps, _ = service.list(query, ctx)
            _print_json([a.to_dict() for a in apps])
        elif args.cmd == "get":
            if args.deleted:
                app, _ = service.get_deleted(args.id, ctx=ctx)
            else:
                app, _ = service.get(args.id, ctx=ctx)
            _print_json(app.to_dict())
        elif args.cmd == "list-fic":
            creds, _ = service.list_federated_identity_credentials(args.id, ctx=ctx)
            _print_json([c.to_dict() for c in creds])
        else:
            _run_mutation(service, args, ctx)
    except DirectoryError as e:
        print(f"[{args.cmd}] Error: {e}", file=sys.stderr)
        sys.exit(1)


def _run_mutation(service: ApplicationService, args: argparse.Namespace, ctx: RequestContext) -> None:
    """Run a mutating command and record it in the audit trail."""
    event_type, details, run = _mutation_plan(service, args, ctx)
    try:
        outcome = run()
    except ReconcileError as e:
        details = dict(details, error=str(e), failed_edge=e.target_id,
                       processed=[{"id": x.target_id, "outcome": x.outcome.value} for x in e.processed])
        audit.safe_log_app_event(event_type, getattr(args, "id", ""), operator=args.operator,
                                 tenant=args.tenant_id, details=details, success=False)
        raise
    except DirectoryError as e:
        audit.safe_log_app_event(event_type, getattr(args, "id", ""), operator=args.operator,
                                 tenant=args.tenant_id, details=dict(details, error=str(e)), success=False)
        raise

    application_id = getattr(args, "id", "")
    if isinstance(outcome, ReconcileResult):
        details = audit.reconcile_details(outcome, **details)
        print(f"[{args.cmd}] {len(outcome.applied)} applied, {len(outcome.already_satisfied)} already satisfied, "
              f"{len(outcome.skipped)} skipped", file=sys.stderr)
    elif isinstance(outcome, Application):
        application_id = outcome.id or application_id
        _print_json(outcome.to_dict())
    else:
        print(f"[{args.cmd}] Done (status {outcome})", file=sys.stderr)

    audit.safe_log_app_event(event_type, application_id, operator=args.operator,
                             tenant=args.tenant_id, details=details, success=True)


def _mutation_plan(service: ApplicationService, args: argparse.Namespace, ctx: RequestContext):
    if args.cmd == "create":
        app = Application(
            display_name=args.display_name,
            sign_in_audience=args.sign_in_audience,
            owners=[DirectoryObject(id=o) for o in args.owner] or None,
        )
        return "app_create", {"display_name": args.display_name, "owners": args.owner}, \
            lambda: service.create(app, ctx)[0]
    if args.cmd == "delete":
        if args.permanently:
            return "app_purge", {}, lambda: service.delete_permanently(args.id, ctx)
        return "app_delete", {}, lambda: service.delete(args.id, ctx)
    if args.cmd == "restore":
        return "app_restore", {}, lambda: service.restore_deleted(args.id, ctx)[0]
    if args.cmd == "add-owners":
        app = Application(id=args.id, owners=[DirectoryObject(id=o) for o in args.owner])
        return "owner_add", {"owners": args.owner}, lambda: service.add_owners(app, ctx)
    if args.cmd == "remove-owners":
        return "owner_remove", {"owners": args.owner}, lambda: service.remove_owners(args.id, args.owner, ctx)
    if args.cmd == "sync-owners":
        return "owner_sync", {"owners": args.owner}, lambda: service.sync_owners(args.id, args.owner, ctx)
    if args.cmd == "assign-policy":
        app = Application(id=args.id, token_issuance_policies=[TokenIssuancePolicy(id=p) for p in args.policy])
        return "policy_assign", {"policies": args.policy}, lambda: service.assign_token_issuance_policy(app, ctx)
    if args.cmd == "remove-policy":
        app = Application(id=args.id)
        return "policy_remove", {"policies": args.policy}, \
            lambda: service.remove_token_issuance_policy(app, args.policy, ctx)
    if args.cmd == "sync-policies":
        return "policy_sync", {"policies": args.policy}, \
            lambda: service.sync_token_issuance_policies(args.id, args.policy, ctx)
    raise ValueError(f"unknown command: {args.cmd}")


if __name__ == "__main__":
    main()
