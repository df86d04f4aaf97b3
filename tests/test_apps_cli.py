import json
import sys

import pytest
import requests

import scripts.apps as apps
from scripts import audit
from tests.helpers import ALREADY_EXISTS, make_response, no_content


@pytest.fixture(autouse=True)
def restore_sys_argv():
    """Make sure every test sees a clean CLI invocation."""
    original = sys.argv[:]
    yield
    sys.argv = original


@pytest.fixture
def audit_file(monkeypatch, tmp_path):
    audit_dir = tmp_path / "audit"
    monkeypatch.setattr(audit, "AUDIT_LOG_DIR", audit_dir)
    monkeypatch.setattr(audit, "AUDIT_LOG_FILE", audit_dir / "app-events.jsonl")
    monkeypatch.setenv("AUDIT_LOG_SIGNING_KEY", "cli-test-key")
    return audit_dir / "app-events.jsonl"


@pytest.fixture
def cli_service(monkeypatch, service):
    monkeypatch.setattr(apps, "build_service", lambda args: service)
    return service


def _argv(*command):
    return ["apps.py", "--tenant-id", "contoso", "--client-id", "automation-cli",
            "--client-secret", "super-secret", "--operator", "ci", *command]


def _events(path):
    return [json.loads(line) for line in path.read_text().splitlines()]


def test_requires_client_secret(monkeypatch):
    """CLI must abort before authenticating if the secret is absent."""
    monkeypatch.delenv("GRAPH_CLIENT_SECRET", raising=False)

    def fail_if_called(args):
        raise AssertionError("build_service should not be invoked when secret missing")

    monkeypatch.setattr(apps, "build_service", fail_if_called)
    sys.argv = ["apps.py", "--tenant-id", "contoso", "--client-id", "cli", "list"]

    with pytest.raises(SystemExit):
        apps.main()


def test_add_owners_is_audited(cli_service, session, audit_file, capsys):
    session.queue("POST", "/applications/app-1/owners/$ref", make_response(400, ALREADY_EXISTS), no_content())
    sys.argv = _argv("add-owners", "--id", "app-1", "--owner", "user-a", "--owner", "user-b")

    apps.main()

    assert "1 applied, 1 already satisfied, 0 skipped" in capsys.readouterr().err
    (event,) = _events(audit_file)
    assert event["event_type"] == "owner_add"
    assert event["application_id"] == "app-1"
    assert event["operator"] == "ci"
    assert event["tenant"] == "contoso"
    assert event["success"] is True
    assert [e["outcome"] for e in event["details"]["edges"]] == ["already_satisfied", "applied"]
    assert audit.verify_audit_log() == (1, 1)


def test_failed_edge_is_audited_and_exits(cli_service, session, audit_file, capsys):
    session.queue("GET", "/applications/app-1/tokenIssuancePolicies", make_response(200, {"value": [{"id": "pol-1"}]}))
    session.queue("DELETE", "/applications/app-1/tokenIssuancePolicies/pol-1/$ref",
                  make_response(403, {"error": {"code": "Authorization_RequestDenied", "message": "denied"}}))
    sys.argv = _argv("remove-policy", "--id", "app-1", "--policy", "pol-1")

    with pytest.raises(SystemExit) as exc:
        apps.main()

    assert exc.value.code == 1
    assert "[remove-policy] Error:" in capsys.readouterr().err
    (event,) = _events(audit_file)
    assert event["success"] is False
    assert event["details"]["failed_edge"] == "pol-1"
    assert event["details"]["processed"] == [{"id": "pol-1", "outcome": "failed"}]


def test_list_prints_applications(cli_service, session, capsys):
    session.queue("GET", "/applications", make_response(200, {"value": [{"id": "a", "displayName": "billing"}]}))
    sys.argv = _argv("list", "--filter", "startswith(displayName,'bill')")

    apps.main()

    assert json.loads(capsys.readouterr().out) == [{"id": "a", "displayName": "billing"}]
    assert session.calls[0]["params"] == {"$filter": "startswith(displayName,'bill')"}


def test_authentication_failure_exits(monkeypatch, capsys):
    monkeypatch.setattr(requests, "post", lambda *a, **k: make_response(401, {"error": "invalid_client"}))
    sys.argv = _argv("get", "--id", "app-1")

    with pytest.raises(SystemExit) as exc:
        apps.main()

    assert exc.value.code == 1
    assert "[get] Error:" in capsys.readouterr().err


def test_list_search_uses_eventual_consistency(cli_service, session, capsys):
    session.queue("GET", "/applications", make_response(200, {"@odata.count": 1, "value": [{"id": "a"}]}))
    sys.argv = _argv("list", "--search", "displayName:billing")

    apps.main()

    call = session.calls[0]
    assert call["params"] == {"$search": '"displayName:billing"', "$count": "true"}
    assert call["headers"]["ConsistencyLevel"] == "eventual"


def test_malformed_token_response_exits(monkeypatch, capsys):
    def html_page(*args, **kwargs):
        resp = make_response(200, headers={"Content-Type": "text/html"})
        resp._content = b"<html>proxy</html>"
        return resp

    monkeypatch.setattr(requests, "post", html_page)
    sys.argv = _argv("get", "--id", "app-1")

    with pytest.raises(SystemExit) as exc:
        apps.main()

    assert exc.value.code == 1
    assert "[get] Error:" in capsys.readouterr().err
