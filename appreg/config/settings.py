"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from appreg.core.msgraph.client import (
    DEFAULT_AUTHORITY,
    DEFAULT_BACKOFF_BASE,
    DEFAULT_BACKOFF_MAX,
    DEFAULT_CONSISTENCY_MAX_ATTEMPTS,
    DEFAULT_ENDPOINT,
    DEFAULT_THROTTLE_MAX_RETRIES,
    REQUEST_TIMEOUT,
    VERSION_BETA,
)


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            print(f"[settings] Failed to read /run/secrets/{secret_name}: {e}")

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


@dataclass
class AppConfig:
    """Directory client configuration container."""
    # Mode
    demo_mode: bool

    # Tenant / service principal
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""

    # Endpoints
    graph_endpoint: str = DEFAULT_ENDPOINT
    graph_api_version: str = VERSION_BETA
    authority_url: str = DEFAULT_AUTHORITY

    # Transport
    request_timeout: float = REQUEST_TIMEOUT
    consistency_max_attempts: int = DEFAULT_CONSISTENCY_MAX_ATTEMPTS
    consistency_backoff_base: float = DEFAULT_BACKOFF_BASE
    consistency_backoff_max: float = DEFAULT_BACKOFF_MAX
    throttle_max_retries: int = DEFAULT_THROTTLE_MAX_RETRIES

    # Audit
    audit_log_signing_key: str = ""

    @property
    def client_secret_resolved(self) -> str:
        """Get the service principal client secret with fallback.

        Priority:
        1. Configured value in client_secret
        2. Docker secrets: /run/secrets/graph_client_secret (or graph-client-secret)
        3. Environment variable: GRAPH_CLIENT_SECRET
        4. Demo mode: "demo-client-secret"

        Raises:
            ValueError: If secret not found in production mode
        """
        if self.client_secret:
            return self.client_secret

        for secret_name in ["graph_client_secret", "graph-client-secret"]:
            secret_path = Path("/run/secrets") / secret_name
            if secret_path.exists():
                secret = secret_path.read_text().strip()
                if secret:
                    return secret

        secret = os.environ.get("GRAPH_CLIENT_SECRET")
        if secret:
            return secret

        if self.demo_mode:
            return "demo-client-secret"

        raise ValueError(
            "GRAPH_CLIENT_SECRET not found. "
            "Set DEMO_MODE=true or provide secret via Docker secrets or environment variable."
        )


def _get_or_generate(var_name: str, demo_default: Optional[str] = None, required: bool = True, demo_mode: bool = False) -> str:
    """Get environment variable or use demo default."""
    value = os.environ.get(var_name)
    if value:
        return value

    if demo_mode and demo_default is not None:
        print(f"[demo-mode] Using default for {var_name}")
        os.environ[var_name] = demo_default
        return demo_default

    if not required:
        return ""

    raise RuntimeError(f"Environment variable {var_name} is required in production mode.")


def _env_number(var_name: str, default, cast=float):
    raw = os.environ.get(var_name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {var_name} must be a number, got {raw!r}")


def load_settings() -> AppConfig:
    """Load client settings from environment and /run/secrets."""
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"

    tenant_id = _get_or_generate("GRAPH_TENANT_ID", demo_default="demo-tenant", demo_mode=demo_mode)
    client_id = _get_or_generate("GRAPH_CLIENT_ID", demo_default="demo-client", demo_mode=demo_mode)
    client_secret = _load_secret_from_file("graph_client_secret", "GRAPH_CLIENT_SECRET") or ""

    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY")
    if audit_log_signing_key:
        os.environ["AUDIT_LOG_SIGNING_KEY"] = audit_log_signing_key
    elif demo_mode:
        demo_key = os.environ.get("AUDIT_LOG_SIGNING_KEY_DEMO", "demo-audit-signing-key-change-in-production")
        os.environ["AUDIT_LOG_SIGNING_KEY"] = demo_key
        audit_log_signing_key = demo_key
        print(f"[demo-mode] Using demo AUDIT_LOG_SIGNING_KEY: {demo_key[:20]}...")

    graph_api_version = os.environ.get("GRAPH_API_VERSION", VERSION_BETA).strip()
    if graph_api_version not in ("beta", "v1.0"):
        raise RuntimeError(f"GRAPH_API_VERSION must be 'beta' or 'v1.0', got {graph_api_version!r}")

    cfg = AppConfig(
        demo_mode=demo_mode,
        tenant_id=tenant_id,
        client_id=client_id,
        client_secret=client_secret,
        graph_endpoint=os.environ.get("GRAPH_ENDPOINT", DEFAULT_ENDPOINT).rstrip("/"),
        graph_api_version=graph_api_version,
        authority_url=os.environ.get("GRAPH_AUTHORITY_URL", DEFAULT_AUTHORITY).rstrip("/"),
        request_timeout=_env_number("GRAPH_REQUEST_TIMEOUT", float(REQUEST_TIMEOUT)),
        consistency_max_attempts=_env_number(
            "GRAPH_CONSISTENCY_MAX_ATTEMPTS", DEFAULT_CONSISTENCY_MAX_ATTEMPTS, int
        ),
        consistency_backoff_base=_env_number("GRAPH_CONSISTENCY_BACKOFF_BASE", DEFAULT_BACKOFF_BASE),
        consistency_backoff_max=_env_number("GRAPH_CONSISTENCY_BACKOFF_MAX", DEFAULT_BACKOFF_MAX),
        throttle_max_retries=_env_number("GRAPH_THROTTLE_MAX_RETRIES", DEFAULT_THROTTLE_MAX_RETRIES, int),
        audit_log_signing_key=audit_log_signing_key or "",
    )

    if cfg.consistency_max_attempts < 1:
        raise RuntimeError("GRAPH_CONSISTENCY_MAX_ATTEMPTS must be at least 1")

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    print(f"[settings] Mode={mode_label}; tenant={tenant_id}; api={cfg.graph_endpoint}/{graph_api_version}")
    if demo_mode:
        print("[settings] WARNING: Demo credentials in use. Do not deploy with these defaults.")

    return cfg
