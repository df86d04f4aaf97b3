"""Unit tests for application change audit logging."""

import json
import tempfile
from pathlib import Path

import pytest

from scripts import audit


@pytest.fixture
def temp_audit_dir(monkeypatch):
    """Provide isolated audit directory for each test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        audit_dir = Path(tmpdir) / "audit"
        audit_file = audit_dir / "app-events.jsonl"

        monkeypatch.setattr(audit, "AUDIT_LOG_DIR", audit_dir)
        monkeypatch.setattr(audit, "AUDIT_LOG_FILE", audit_file)
        monkeypatch.setenv("AUDIT_LOG_SIGNING_KEY", "test-signing-key-for-audit-trail")

        yield audit_dir, audit_file


def test_log_app_event_creates_file(temp_audit_dir):
    """Test that logging creates the audit file."""
    _, audit_file = temp_audit_dir

    assert not audit_file.exists()

    audit.log_app_event(
        "owner_add",
        "app-1",
        operator="admin",
        tenant="contoso",
        details={"applied": ["user-a"]},
    )

    assert audit_file.exists()
    assert audit_file.stat().st_mode & 0o777 == 0o600


def test_log_app_event_creates_valid_json(temp_audit_dir):
    _, audit_file = temp_audit_dir

    audit.log_app_event(
        "policy_remove",
        "app-1",
        operator="pipeline",
        tenant="contoso",
        details={"skipped": ["pol-2"]},
    )

    event = json.loads(audit_file.read_text().splitlines()[0])

    assert event["event_type"] == "policy_remove"
    assert event["application_id"] == "app-1"
    assert event["tenant"] == "contoso"
    assert event["operator"] == "pipeline"
    assert event["success"] is True
    assert event["details"] == {"skipped": ["pol-2"]}
    assert "timestamp" in event
    assert "signature" in event


def test_verify_audit_log_with_valid_signatures(temp_audit_dir):
    for event_type in ("app_create", "owner_add", "policy_assign", "app_delete"):
        audit.log_app_event(event_type, "app-1", operator="test")

    assert audit.verify_audit_log() == (4, 4)


def test_verify_audit_log_detects_tampering(temp_audit_dir):
    """Test that signature verification detects tampered events."""
    _, audit_file = temp_audit_dir

    audit.log_app_event("owner_remove", "app-1", operator="test", details={"applied": ["user-a"]})

    event = json.loads(audit_file.read_text())
    event["details"]["applied"] = ["user-b"]
    audit_file.write_text(json.dumps(event) + "\n")

    assert audit.verify_audit_log() == (1, 0)


def test_log_event_without_signing_key(temp_audit_dir, monkeypatch):
    monkeypatch.setenv("AUDIT_LOG_SIGNING_KEY", "")
    _, audit_file = temp_audit_dir

    audit.log_app_event("app_create", "app-1", operator="test")

    event = json.loads(audit_file.read_text())
    assert "signature" not in event


def test_log_failed_operation(temp_audit_dir):
    _, audit_file = temp_audit_dir

    audit.log_app_event(
        "owner_add",
        "app-1",
        operator="test",
        details={"error": "[500] POST /applications/app-1/owners/$ref: Boom"},
        success=False,
    )

    event = json.loads(audit_file.read_text())
    assert event["success"] is False
    assert "error" in event["details"]


def test_audit_directory_permissions(temp_audit_dir):
    audit_dir, _ = temp_audit_dir

    audit.log_app_event("app_purge", "app-1")

    assert audit_dir.stat().st_mode & 0o777 == 0o700


def test_safe_log_reports_write_failure(temp_audit_dir, monkeypatch, capsys, tmp_path):
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("")
    monkeypatch.setattr(audit, "AUDIT_LOG_DIR", blocker / "audit")

    assert audit.safe_log_app_event("app_delete", "app-1") is False
    assert "Failed to log app_delete event for app-1" in capsys.readouterr().err


def test_safe_log_survives_unserialisable_details(temp_audit_dir, capsys):
    _, audit_file = temp_audit_dir

    assert audit.safe_log_app_event("owner_add", "app-1", details={"when": object()}) is False
    assert "Failed to log owner_add event for app-1" in capsys.readouterr().err
    assert not audit_file.exists()


def test_verify_empty_audit_log(temp_audit_dir):
    assert audit.verify_audit_log() == (0, 0)


def test_read_events_filters_by_application(temp_audit_dir):
    audit.log_app_event("owner_add", "app-1")
    audit.log_app_event("owner_add", "app-2")
    audit.log_app_event("policy_sync", "app-1")

    events = list(audit.read_events("app-1"))

    assert [e["event_type"] for e in events] == ["owner_add", "policy_sync"]
    assert audit.verify_audit_log("app-2") == (1, 1)


def test_garbage_line_counts_as_invalid(temp_audit_dir):
    _, audit_file = temp_audit_dir
    audit.log_app_event("app_create", "app-1")
    with audit_file.open("a") as f:
        f.write("{not json\n")

    assert audit.verify_audit_log() == (2, 1)


def test_reconcile_details():
    from appreg.core.msgraph import EdgeOutcome, EdgeResult, ReconcileResult

    result = ReconcileResult(204, [
        EdgeResult("owners", "user-a", EdgeOutcome.ALREADY_SATISFIED, 400),
        EdgeResult("owners", "user-b", EdgeOutcome.APPLIED, 204),
    ])

    details = audit.reconcile_details(result, owners=["user-a", "user-b"])

    assert details == {
        "owners": ["user-a", "user-b"],
        "status": 204,
        "edges": [
            {"id": "user-a", "outcome": "already_satisfied", "status": 400},
            {"id": "user-b", "outcome": "applied", "status": 204},
        ],
    }
