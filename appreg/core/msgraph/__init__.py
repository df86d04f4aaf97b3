"""Directory (Microsoft Graph style) API client library for applications.

Architecture:
- client.py: HTTP client with authentication, consistency retries and paging
- odata.py: OData query options and structured errors
- consistency.py: Retry policies and idempotent outcome classifiers
- models.py: Entity shapes and JSON codec
- applications.py: Application operations (CRUD, credentials, relationships)
- reconcile.py: Owner and token issuance policy edge reconciliation
- exceptions.py: Typed exceptions for error handling

Usage:
    from appreg.core.msgraph import DirectoryClient, ApplicationService, Application, DirectoryObject

    client = DirectoryClient(api_version="beta")
    client.authenticate_service_account(tenant_id, client_id, client_secret)

    apps = ApplicationService(client)
    app, _ = apps.get(app_object_id)
    app.owners = [DirectoryObject(id=user_object_id)]
    apps.add_owners(app)
"""
from .client import (
    DirectoryClient,
    HttpRequestInput,
    HttpResult,
    RequestContext,
    create_client_with_token,
    REQUEST_TIMEOUT,
    VERSION_BETA,
    VERSION_V1,
)
from .consistency import (
    ResponsePredicate,
    Decision,
    status_is,
    error_matches,
    all_of,
    any_of,
    RETRY_ON_NOT_FOUND,
    APPLICATION_UPDATE_CONSISTENCY,
    ADDED_REFERENCE_EXISTS,
    REMOVED_REFERENCE_MISSING,
    REFERENCED_RESOURCE_MISSING,
)
from .exceptions import (
    DirectoryError,
    PreconditionError,
    AuthenticationError,
    DirectoryTransportError,
    CodecError,
    DirectoryAPIError,
    RequestCancelledError,
    ReconcileError,
)
from .models import (
    Application,
    ApplicationExtension,
    DirectoryObject,
    FederatedIdentityCredential,
    PasswordCredential,
    TokenIssuancePolicy,
)
from .odata import Query, OData, ODataError
from .applications import ApplicationService
from .reconcile import (
    RelationshipReconciler,
    Relation,
    OWNERS,
    TOKEN_ISSUANCE_POLICIES,
    EdgeOutcome,
    EdgeResult,
    ReconcileResult,
)

__all__ = [
    # Client
    "DirectoryClient",
    "HttpRequestInput",
    "HttpResult",
    "RequestContext",
    "create_client_with_token",
    "REQUEST_TIMEOUT",
    "VERSION_BETA",
    "VERSION_V1",

    # Policies
    "ResponsePredicate",
    "Decision",
    "status_is",
    "error_matches",
    "all_of",
    "any_of",
    "RETRY_ON_NOT_FOUND",
    "APPLICATION_UPDATE_CONSISTENCY",
    "ADDED_REFERENCE_EXISTS",
    "REMOVED_REFERENCE_MISSING",
    "REFERENCED_RESOURCE_MISSING",

    # Exceptions
    "DirectoryError",
    "PreconditionError",
    "AuthenticationError",
    "DirectoryTransportError",
    "CodecError",
    "DirectoryAPIError",
    "RequestCancelledError",
    "ReconcileError",

    # Models
    "Application",
    "ApplicationExtension",
    "DirectoryObject",
    "FederatedIdentityCredential",
    "PasswordCredential",
    "TokenIssuancePolicy",
    "Query",
    "OData",
    "ODataError",

    # Services
    "ApplicationService",
    "RelationshipReconciler",
    "Relation",
    "OWNERS",
    "TOKEN_ISSUANCE_POLICIES",
    "EdgeOutcome",
    "EdgeResult",
    "ReconcileResult",
]
