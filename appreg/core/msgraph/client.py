"""Low-level HTTP client for the directory (Microsoft Graph style) API.

Handles authentication, token management, consistency retries, throttling
and paging. Entity shapes and per-operation semantics live in the services
built on top of it.
"""
from __future__ import annotations
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import jwt
import requests

from .consistency import Decision, ResponsePredicate, decide
from .exceptions import (
    AuthenticationError,
    CodecError,
    DirectoryAPIError,
    DirectoryTransportError,
    RequestCancelledError,
)
from .odata import OData, Query

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10

DEFAULT_ENDPOINT = "https://graph.microsoft.com"
DEFAULT_AUTHORITY = "https://login.microsoftonline.com"
VERSION_BETA = "beta"
VERSION_V1 = "v1.0"

DEFAULT_CONSISTENCY_MAX_ATTEMPTS = 8
DEFAULT_BACKOFF_BASE = 1.0
DEFAULT_BACKOFF_MAX = 30.0
DEFAULT_THROTTLE_MAX_RETRIES = 5

THROTTLE_STATUS_CODES = (429, 503)
JSON_CONTENT_TYPE = "application/json; charset=utf-8"


@dataclass
class RequestContext:
    """Cancellation flag and optional deadline for one logical operation.

    The same context is threaded through every HTTP attempt an operation makes,
    including nested lookups performed by the reconciler.
    """

    cancel_event: threading.Event = field(default_factory=threading.Event)
    deadline: Optional[float] = None

    @classmethod
    def with_timeout(cls, seconds: float) -> "RequestContext":
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self.cancel_event.set()

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def reason(self) -> Optional[str]:
        if self.cancel_event.is_set():
            return "cancelled"
        if self.deadline is not None and time.monotonic() >= self.deadline:
            return "deadline exceeded"
        return None

    def check(self, endpoint: str, status_code: int = 0) -> None:
        """Raise RequestCancelledError if the context is done."""
        reason = self.reason
        if reason:
            raise RequestCancelledError(endpoint, reason, status_code)

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if the context finished meanwhile."""
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self.cancel_event.wait(remaining)
            return True
        return self.cancel_event.wait(seconds)


@dataclass
class HttpRequestInput:
    """Everything the transport needs to issue one logical request."""

    method: str
    entity: str
    valid_status_codes: Tuple[int, ...]
    query: Query = field(default_factory=Query)
    body: Optional[bytes] = None
    content_type: str = JSON_CONTENT_TYPE
    consistency_failure_func: Optional[ResponsePredicate] = None
    valid_status_func: Optional[ResponsePredicate] = None
    disable_paging: bool = False


@dataclass
class HttpResult:
    """Final response of a request, after retries and paging."""

    response: requests.Response
    status_code: int
    odata: OData
    decision: Decision
    endpoint: str
    pages: Optional[List[Any]] = None

    @property
    def accepted(self) -> bool:
        """True when a classifier turned a non-success status into success."""
        return self.decision is Decision.ACCEPTED

    def json(self, operation: str) -> Any:
        """Decode the body; paged list results are merged into one envelope."""
        if self.pages is not None:
            return {"value": self.pages}
        try:
            return json.loads(self.response.content or b"null")
        except ValueError as e:
            raise CodecError("decode", operation, e, self.status_code) from e


class DirectoryClient:
    """HTTP client for the directory API with automatic token management.

    Features:
    - Client-credentials authentication with refresh before expiry
    - Consistency retries driven by per-request predicates
    - Throttling retries honouring Retry-After
    - Transparent paging over @odata.nextLink

    Usage:
        client = DirectoryClient(api_version="beta")
        client.authenticate_service_account(tenant_id, client_id, client_secret)
        result = client.get(HttpRequestInput("GET", "/applications", (200,)))
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        api_version: str = VERSION_BETA,
        *,
        authority: str = DEFAULT_AUTHORITY,
        session: Optional[requests.Session] = None,
        consistency_max_attempts: int = DEFAULT_CONSISTENCY_MAX_ATTEMPTS,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        backoff_max: float = DEFAULT_BACKOFF_MAX,
        throttle_max_retries: int = DEFAULT_THROTTLE_MAX_RETRIES,
        request_timeout: float = REQUEST_TIMEOUT,
    ):
        """Initialize directory client.

        Args:
            endpoint: API base URL (defaults to the public Graph endpoint)
            api_version: Path version segment ("beta" or "v1.0")
            authority: OAuth2 authority base URL
            session: Optional requests session (injected by tests)
            consistency_max_attempts: Total attempts for consistency-retried calls
            backoff_base: First consistency backoff delay in seconds
            backoff_max: Upper bound on a single backoff delay
            throttle_max_retries: Retries allowed on 429/503 responses
            request_timeout: Per-attempt socket timeout in seconds
        """
        self.endpoint = (endpoint or DEFAULT_ENDPOINT).rstrip("/")
        self.api_version = api_version
        self.authority = authority.rstrip("/")
        self.session = session or requests.Session()
        self.consistency_max_attempts = max(1, consistency_max_attempts)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.throttle_max_retries = throttle_max_retries
        self.request_timeout = request_timeout
        self._token: Optional[str] = None
        self._token_expires_at: Optional[float] = None
        self._auth_params: Dict[str, str] = {}
        self._token_lock = threading.Lock()

    @classmethod
    def from_settings(cls, cfg, session: Optional[requests.Session] = None) -> "DirectoryClient":
        """Build an authenticated client from an AppConfig."""
        client = cls(
            cfg.graph_endpoint,
            cfg.graph_api_version,
            authority=cfg.authority_url,
            session=session,
            consistency_max_attempts=cfg.consistency_max_attempts,
            backoff_base=cfg.consistency_backoff_base,
            backoff_max=cfg.consistency_backoff_max,
            throttle_max_retries=cfg.throttle_max_retries,
            request_timeout=cfg.request_timeout,
        )
        client.authenticate_service_account(cfg.tenant_id, cfg.client_id, cfg.client_secret_resolved)
        return client

    # ─────────────────────────────────────────────────────────────────────
    # Authentication
    # ─────────────────────────────────────────────────────────────────────
    def authenticate_service_account(self, tenant_id: str, client_id: str, client_secret: str) -> str:
        """Authenticate with the client credentials grant and store credentials for auto-refresh.

        Args:
            tenant_id: Directory tenant ID or domain
            client_id: Application (client) ID of the calling service principal
            client_secret: Client secret

        Returns:
            Access token
        """
        self._auth_params = {
            "tenant_id": tenant_id,
            "client_id": client_id,
            "client_secret": client_secret,
        }
        with self._token_lock:
            self._refresh_token()
        return self._token

    def _ensure_authenticated(self) -> str:
        """Return a valid token, refreshing if expired or expiring within 60 seconds."""
        with self._token_lock:
            if not self._token or self._token_expires_at is None:
                raise AuthenticationError(401, "Not authenticated - call authenticate_service_account first", "")
            if time.time() >= self._token_expires_at - 60:
                if self._auth_params:
                    self._refresh_token()
                elif time.time() >= self._token_expires_at:
                    raise AuthenticationError(401, "Access token expired and no credentials to refresh it", "")
            return self._token

    def _refresh_token(self) -> None:
        token, expires_in = self._get_service_account_token(**self._auth_params)
        self._token = token
        self._token_expires_at = _token_expiry(token, expires_in)

    def _get_service_account_token(self, tenant_id: str, client_id: str, client_secret: str) -> Tuple[str, int]:
        """Fetch a token using the client credentials flow."""
        url = f"{self.authority}/{tenant_id}/oauth2/v2.0/token"
        data = {
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": client_secret,
            "scope": f"{self.endpoint}/.default",
        }
        try:
            resp = requests.post(url, data=data, timeout=self.request_timeout)
        except requests.RequestException as e:
            raise DirectoryTransportError(url, e) from e
        if resp.status_code != 200:
            raise AuthenticationError(resp.status_code, resp.text, url)
        try:
            payload = resp.json()
            return payload["access_token"], int(payload.get("expires_in", 3600))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise CodecError("decode", "DirectoryClient._get_service_account_token", e, resp.status_code) from e

    # ─────────────────────────────────────────────────────────────────────
    # Verbs
    # ─────────────────────────────────────────────────────────────────────
    def get(self, req: HttpRequestInput, ctx: Optional[RequestContext] = None) -> HttpResult:
        req.method = "GET"
        return self.request(req, ctx)

    def post(self, req: HttpRequestInput, ctx: Optional[RequestContext] = None) -> HttpResult:
        req.method = "POST"
        return self.request(req, ctx)

    def patch(self, req: HttpRequestInput, ctx: Optional[RequestContext] = None) -> HttpResult:
        req.method = "PATCH"
        return self.request(req, ctx)

    def put(self, req: HttpRequestInput, ctx: Optional[RequestContext] = None) -> HttpResult:
        req.method = "PUT"
        return self.request(req, ctx)

    def delete(self, req: HttpRequestInput, ctx: Optional[RequestContext] = None) -> HttpResult:
        req.method = "DELETE"
        return self.request(req, ctx)

    def build_url(self, entity: str) -> str:
        return f"{self.endpoint}/{self.api_version}/{entity.lstrip('/')}"

    def request(self, req: HttpRequestInput, ctx: Optional[RequestContext] = None) -> HttpResult:
        """Execute a request with consistency retries and, for GET, paging.

        Raises:
            DirectoryAPIError: Final response was neither valid nor accepted
            DirectoryTransportError: Network failure
            RequestCancelledError: ``ctx`` was cancelled or its deadline passed
        """
        ctx = ctx or RequestContext()
        url = self.build_url(req.entity)
        result = self._execute(req, url, req.query.values(), ctx)

        if req.method != "GET" or req.disable_paging or result.decision is not Decision.VALID:
            return result

        first = result.json(f"{req.method} {req.entity}")
        if not isinstance(first, dict) or "value" not in first or not result.odata.next_link:
            return result

        pages = list(first.get("value") or [])
        next_link = result.odata.next_link
        while next_link:
            # nextLink already carries the query string
            page = self._execute(req, next_link, None, ctx)
            body = page.json(f"{req.method} {req.entity}")
            pages.extend(body.get("value") or [])
            next_link = page.odata.next_link
            result = page
        result.pages = pages
        return result

    def _execute(
        self,
        req: HttpRequestInput,
        url: str,
        params: Optional[Dict[str, str]],
        ctx: RequestContext,
    ) -> HttpResult:
        endpoint = f"{req.method} {req.entity}"
        attempt = 1
        throttled = 0

        while True:
            ctx.check(endpoint)
            headers = {"Authorization": f"Bearer {self._ensure_authenticated()}"}
            headers.update(req.query.headers())
            if req.body is not None:
                headers["Content-Type"] = req.content_type

            timeout = self.request_timeout
            remaining = ctx.remaining()
            if remaining is not None:
                timeout = max(0.1, min(timeout, remaining))

            try:
                resp = self.session.request(
                    req.method, url, params=params, data=req.body, headers=headers, timeout=timeout
                )
            except requests.RequestException as e:
                raise DirectoryTransportError(endpoint, e) from e

            odata = _parse_odata(resp)

            if resp.status_code in THROTTLE_STATUS_CODES and throttled < self.throttle_max_retries:
                throttled += 1
                delay = _retry_after(resp, self._backoff(throttled))
                logger.warning(f"[transport] {endpoint} throttled ({resp.status_code}), retrying in {delay:.1f}s")
                if ctx.wait(delay):
                    ctx.check(endpoint, resp.status_code)
                continue

            decision = decide(
                resp,
                odata.error,
                req.valid_status_codes,
                req.valid_status_func,
                req.consistency_failure_func,
            )

            if decision in (Decision.VALID, Decision.ACCEPTED):
                if decision is Decision.ACCEPTED:
                    logger.debug(f"[transport] {endpoint} accepted status {resp.status_code} via {req.valid_status_func!r}")
                return HttpResult(resp, resp.status_code, odata, decision, endpoint)

            if decision is Decision.RETRY and attempt < self.consistency_max_attempts:
                delay = self._backoff(attempt)
                logger.debug(
                    f"[transport] {endpoint} consistency retry {attempt}/{self.consistency_max_attempts - 1} "
                    f"after {resp.status_code}, waiting {delay:.1f}s"
                )
                attempt += 1
                if ctx.wait(delay):
                    ctx.check(endpoint, resp.status_code)
                continue

            message = str(odata.error) if odata.error is not None else resp.text
            raise DirectoryAPIError(resp.status_code, message, endpoint, odata.error)

    def _backoff(self, attempt: int) -> float:
        return min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))


def _parse_odata(resp: requests.Response) -> OData:
    """Parse OData annotations and structured errors, tolerating empty or non-JSON bodies."""
    content_type = resp.headers.get("Content-Type", "")
    if not resp.content or "json" not in content_type:
        return OData()
    try:
        return OData.from_body(json.loads(resp.content))
    except ValueError:
        return OData()


def _retry_after(resp: requests.Response, default: float) -> float:
    value = resp.headers.get("Retry-After")
    if value is None:
        return default
    try:
        return max(0.0, float(value))
    except ValueError:
        return default


def _token_expiry(token: str, expires_in: int) -> float:
    """Epoch seconds at which the token expires, read from its exp claim when present."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
        if "exp" in claims:
            return float(claims["exp"])
    except jwt.PyJWTError:
        pass
    return time.time() + expires_in


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────
def create_client_with_token(
    endpoint: Optional[str],
    token: str,
    expires_in: int = 3600,
    **kwargs,
) -> DirectoryClient:
    """Create a pre-authenticated DirectoryClient from an already obtained token.

    The client cannot refresh the token; once it expires, requests fail with
    AuthenticationError.
    """
    client = DirectoryClient(endpoint, **kwargs)
    client._token = token
    client._token_expires_at = time.time() + expires_in
    return client
