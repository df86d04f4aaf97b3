"""Signed audit trail for application registration changes.

Each mutation made through the CLI appends one JSON line to
``$AUDIT_LOG_DIR/app-events.jsonl``. Lines carry an HMAC-SHA256 signature over
their canonical JSON form so that edits after the fact can be detected with
``python scripts/audit.py``.
"""

from __future__ import annotations
import argparse
import datetime
import hashlib
import hmac
import json
import os
import sys
from pathlib import Path
from typing import Any, Iterator, Literal, Optional

AUDIT_LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"))
AUDIT_LOG_FILE = AUDIT_LOG_DIR / "app-events.jsonl"

DEMO_SIGNING_KEY = "demo-audit-signing-key-change-in-production"

EventType = Literal[
    "app_create", "app_delete", "app_restore", "app_purge",
    "owner_add", "owner_remove", "owner_sync",
    "policy_assign", "policy_remove", "policy_sync",
]


def _key_files() -> list[Path]:
    files = []
    explicit = os.environ.get("AUDIT_LOG_SIGNING_KEY_FILE")
    if explicit:
        files.append(Path(explicit))
    files.append(Path(".runtime/secrets/audit_log_signing_key"))
    return files


def _get_signing_key() -> bytes:
    """Resolve the signing key on every call.

    Order: AUDIT_LOG_SIGNING_KEY (an empty value disables signing), then key
    files, then the demo key.
    """
    if "AUDIT_LOG_SIGNING_KEY" in os.environ:
        return os.environ["AUDIT_LOG_SIGNING_KEY"].strip().encode("utf-8")
    for path in _key_files():
        try:
            if path.is_file():
                return path.read_text(encoding="utf-8").strip().encode("utf-8")
        except OSError as e:
            print(f"[audit] Cannot read signing key {path}: {e}", file=sys.stderr)
    return os.environ.get("AUDIT_LOG_SIGNING_KEY_DEMO", DEMO_SIGNING_KEY).encode("utf-8")


def _signature(event: dict[str, Any]) -> str:
    key = _get_signing_key()
    if not key:
        return ""
    canonical = json.dumps(event, sort_keys=True, separators=(",", ":"))
    return hmac.new(key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def reconcile_details(result, **extra: Any) -> dict[str, Any]:
    """Audit details for a ReconcileResult: one entry per edge plus the batch status."""
    details = dict(extra)
    details["status"] = result.status_code
    details["edges"] = [
        {"id": e.target_id, "outcome": e.outcome.value, "status": e.status_code} for e in result.edges
    ]
    return details


def log_app_event(
    event_type: EventType,
    application_id: str,
    *,
    operator: str = "system",
    tenant: str = "",
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """Append a signed event to the audit trail.

    Args:
        event_type: Kind of change (owner_add, policy_remove, ...)
        application_id: Object ID of the affected application
        operator: Who performed the operation
        tenant: Directory tenant the change was made in
        details: Per-edge outcomes, error text, etc.
        success: Whether the operation succeeded
    """
    AUDIT_LOG_DIR.mkdir(parents=True, exist_ok=True)
    AUDIT_LOG_DIR.chmod(0o700)

    event = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "event_type": event_type,
        "tenant": tenant,
        "application_id": application_id,
        "operator": operator,
        "success": success,
        "details": details or {},
    }
    signature = _signature(event)
    if signature:
        event["signature"] = signature

    line = json.dumps(event, ensure_ascii=False)
    with AUDIT_LOG_FILE.open("a", encoding="utf-8") as f:
        f.write(line + "\n")
    AUDIT_LOG_FILE.chmod(0o600)


def safe_log_app_event(event_type: EventType, application_id: str, **kwargs: Any) -> bool:
    """Log an event; on any failure warn on stderr and return False instead of raising."""
    try:
        log_app_event(event_type, application_id, **kwargs)
    except Exception as e:
        print(
            f"[audit] Warning: Failed to log {event_type} event for {application_id}: {e}",
            file=sys.stderr,
        )
        return False
    return True


def read_events(application_id: Optional[str] = None) -> Iterator[dict[str, Any]]:
    """Yield logged events in order, optionally only those for one application.

    Unparseable lines are yielded as ``{"_raw": line}`` so they still count
    against verification.
    """
    if not AUDIT_LOG_FILE.exists():
        return
    with AUDIT_LOG_FILE.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                event = {"_raw": line.rstrip("\n")}
            if application_id and event.get("application_id") != application_id:
                continue
            yield event


def is_authentic(event: dict[str, Any]) -> bool:
    event = dict(event)
    stored = event.pop("signature", "")
    if not stored or "_raw" in event:
        return False
    return hmac.compare_digest(stored, _signature(event))


def verify_audit_log(application_id: Optional[str] = None) -> tuple[int, int]:
    """Return ``(total_events, valid_signatures)`` for the trail."""
    total = valid = 0
    for event in read_events(application_id):
        total += 1
        valid += is_authentic(event)
    return total, valid


def main() -> None:
    parser = argparse.ArgumentParser(description="Verify the application change audit trail")
    parser.add_argument("--app", help="Only consider events for this application object ID")
    parser.add_argument("--show", action="store_true", help="Print matching events")
    args = parser.parse_args()

    if args.show:
        for event in read_events(args.app):
            mark = "ok " if is_authentic(event) else "BAD"
            print(f"{mark} {event.get('timestamp', '?')} {event.get('event_type', '?')} "
                  f"{event.get('application_id', '?')} by {event.get('operator', '?')}")

    total, valid = verify_audit_log(args.app)
    print(f"Audit log: {valid}/{total} events with valid signatures")
    sys.exit(0 if total == valid else 1)


if __name__ == "__main__":
    main()
