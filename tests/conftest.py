"""Pytest shared fixtures for the directory client tests."""
import os
import pathlib
import sys

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DEMO_MODE", "true")

import pytest
import requests

from appreg.core.msgraph import ApplicationService, create_client_with_token
from tests.helpers import GRAPH_ENDPOINT, FakeSession, make_response


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch):
    """Prevent unit tests from reaching a live token endpoint."""

    def _stub_post(url, *args, **kwargs):
        if url.endswith("/oauth2/v2.0/token"):
            return make_response(200, {"access_token": "test-token", "expires_in": 3600})
        raise RuntimeError(f"Unexpected HTTP POST in unit test: {url}")

    def _stub_get(url, *args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP GET in unit test: {url}")

    monkeypatch.setattr(requests, "post", _stub_post)
    monkeypatch.setattr(requests, "get", _stub_get)


# ─────────────────────────────────────────────────────────────────────────────
# Directory client fixtures
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def session():
    return FakeSession()


@pytest.fixture()
def client(session):
    """Pre-authenticated client with instant backoff and three attempts."""
    return create_client_with_token(
        GRAPH_ENDPOINT,
        "test-token",
        session=session,
        consistency_max_attempts=3,
        backoff_base=0.0,
        backoff_max=0.0,
        throttle_max_retries=2,
    )


@pytest.fixture()
def service(client):
    return ApplicationService(client)
