"""Application registration operations."""
from __future__ import annotations
import logging
from typing import List, Optional, Sequence, Tuple

from .client import DirectoryClient, HttpRequestInput, HttpResult, RequestContext
from .consistency import (
    APPLICATION_UPDATE_CONSISTENCY,
    HTTP_CREATED,
    HTTP_NO_CONTENT,
    HTTP_NOT_FOUND,
    HTTP_OK,
    RETRY_ON_NOT_FOUND,
)
from .exceptions import DirectoryAPIError, PreconditionError
from .models import (
    Application,
    ApplicationExtension,
    DirectoryObject,
    FederatedIdentityCredential,
    PasswordCredential,
    TokenIssuancePolicy,
    decode,
    decode_list,
    encode,
)
from .odata import METADATA_FULL, Query
from .reconcile import OWNERS, TOKEN_ISSUANCE_POLICIES, ReconcileResult, Relation, RelationshipReconciler

logger = logging.getLogger(__name__)


class ApplicationService:
    """Service for managing directory applications and their relationships.

    Every method issues its requests through the client, which retries
    consistency failures according to the policy each method declares.
    Methods return ``(result, status_code)`` or just ``status_code`` and raise
    DirectoryError subclasses on failure; the status stays available on the
    exception as ``status_code``.
    """

    def __init__(self, client: DirectoryClient):
        """Initialize application service.

        Args:
            client: Authenticated directory client
        """
        self.client = client
        self.reconciler = RelationshipReconciler(self)

    @property
    def base_url(self) -> str:
        return f"{self.client.endpoint}/{self.client.api_version}"

    # ─────────────────────────────────────────────────────────────────────
    # Applications
    # ─────────────────────────────────────────────────────────────────────
    def list(self, query: Optional[Query] = None, ctx: Optional[RequestContext] = None) -> Tuple[List[Application], int]:
        """List applications, following pages unless ``query.top`` is set."""
        query = query or Query()
        result = self.client.get(
            HttpRequestInput(
                "GET",
                "/applications",
                (HTTP_OK,),
                query=query,
                disable_paging=query.top > 0,
            ),
            ctx,
        )
        op = "ApplicationService.list"
        return decode_list(result.json(op), Application, op, result.status_code), result.status_code

    def create(self, application: Application, ctx: Optional[RequestContext] = None) -> Tuple[Application, int]:
        """Create an application. Owners set on ``application`` are bound at creation."""
        op = "ApplicationService.create"
        body = encode(application.to_dict(self.base_url), op)
        result = self.client.post(
            HttpRequestInput(
                "POST",
                "/applications",
                (HTTP_CREATED,),
                query=Query(metadata=METADATA_FULL),
                body=body,
            ),
            ctx,
        )
        created = decode(result.json(op), Application, op, result.status_code)
        logger.info(f"[applications] Created application '{created.display_name}' (id={created.id})")
        return created, result.status_code

    def get(
        self,
        application_id: str,
        query: Optional[Query] = None,
        ctx: Optional[RequestContext] = None,
    ) -> Tuple[Application, int]:
        op = "ApplicationService.get"
        result = self.client.get(
            HttpRequestInput(
                "GET",
                f"/applications/{application_id}",
                (HTTP_OK,),
                query=query or Query(),
                consistency_failure_func=RETRY_ON_NOT_FOUND,
            ),
            ctx,
        )
        return decode(result.json(op), Application, op, result.status_code), result.status_code

    def get_deleted(
        self,
        application_id: str,
        query: Optional[Query] = None,
        ctx: Optional[RequestContext] = None,
    ) -> Tuple[Application, int]:
        """Retrieve a soft-deleted application by object ID."""
        op = "ApplicationService.get_deleted"
        result = self.client.get(
            HttpRequestInput(
                "GET",
                f"/directory/deletedItems/{application_id}",
                (HTTP_OK,),
                query=query or Query(),
                consistency_failure_func=RETRY_ON_NOT_FOUND,
            ),
            ctx,
        )
        return decode(result.json(op), Application, op, result.status_code), result.status_code

    def update(self, application: Application, ctx: Optional[RequestContext] = None) -> int:
        """Patch an existing application.

        Retries while the application is not yet visible, and while the
        directory still reports an entitlement as enabled after it was
        disabled in an earlier request.

        Raises:
            PreconditionError: ``application.id`` is not set (no request sent)
        """
        if not application.id:
            raise PreconditionError("ApplicationService.update(): cannot update application with nil ID")
        body = encode(application, "ApplicationService.update")
        result = self.client.patch(
            HttpRequestInput(
                "PATCH",
                f"/applications/{application.id}",
                (HTTP_NO_CONTENT,),
                body=body,
                consistency_failure_func=APPLICATION_UPDATE_CONSISTENCY,
            ),
            ctx,
        )
        return result.status_code

    def delete(self, application_id: str, ctx: Optional[RequestContext] = None) -> int:
        """Soft-delete an application."""
        result = self.client.delete(
            HttpRequestInput(
                "DELETE",
                f"/applications/{application_id}",
                (HTTP_NO_CONTENT,),
                consistency_failure_func=RETRY_ON_NOT_FOUND,
            ),
            ctx,
        )
        logger.info(f"[applications] Deleted application {application_id}")
        return result.status_code

    def delete_permanently(self, application_id: str, ctx: Optional[RequestContext] = None) -> int:
        """Purge a soft-deleted application."""
        result = self.client.delete(
            HttpRequestInput(
                "DELETE",
                f"/directory/deletedItems/{application_id}",
                (HTTP_NO_CONTENT,),
                consistency_failure_func=RETRY_ON_NOT_FOUND,
            ),
            ctx,
        )
        logger.info(f"[applications] Permanently deleted application {application_id}")
        return result.status_code

    def list_deleted(
        self,
        query: Optional[Query] = None,
        ctx: Optional[RequestContext] = None,
    ) -> Tuple[List[Application], int]:
        query = query or Query()
        op = "ApplicationService.list_deleted"
        result = self.client.get(
            HttpRequestInput(
                "GET",
                "/directory/deleteditems/microsoft.graph.application",
                (HTTP_OK,),
                query=query,
                disable_paging=query.top > 0,
            ),
            ctx,
        )
        return decode_list(result.json(op), Application, op, result.status_code), result.status_code

    def restore_deleted(self, application_id: str, ctx: Optional[RequestContext] = None) -> Tuple[Application, int]:
        op = "ApplicationService.restore_deleted"
        result = self.client.post(
            HttpRequestInput(
                "POST",
                f"/directory/deletedItems/{application_id}/restore",
                (HTTP_OK,),
                consistency_failure_func=RETRY_ON_NOT_FOUND,
            ),
            ctx,
        )
        restored = decode(result.json(op), Application, op, result.status_code)
        logger.info(f"[applications] Restored application {application_id}")
        return restored, result.status_code

    def upload_logo(
        self,
        application_id: str,
        content_type: str,
        logo_data: bytes,
        ctx: Optional[RequestContext] = None,
    ) -> int:
        """Upload the application logo (gif, jpeg or png)."""
        result = self.client.put(
            HttpRequestInput(
                "PUT",
                f"/applications/{application_id}/logo",
                (HTTP_NO_CONTENT,),
                body=logo_data,
                content_type=content_type,
                consistency_failure_func=RETRY_ON_NOT_FOUND,
            ),
            ctx,
        )
        return result.status_code

    # ─────────────────────────────────────────────────────────────────────
    # Password credentials
    # ─────────────────────────────────────────────────────────────────────
    def add_password(
        self,
        application_id: str,
        credential: PasswordCredential,
        ctx: Optional[RequestContext] = None,
    ) -> Tuple[PasswordCredential, int]:
        """Append a password credential; the response carries the generated secret."""
        op = "ApplicationService.add_password"
        body = encode({"passwordCredential": credential.to_dict()}, op)
        result = self.client.post(
            HttpRequestInput(
                "POST",
                f"/applications/{application_id}/addPassword",
                (HTTP_OK, HTTP_CREATED),
                body=body,
                consistency_failure_func=RETRY_ON_NOT_FOUND,
            ),
            ctx,
        )
        return decode(result.json(op), PasswordCredential, op, result.status_code), result.status_code

    def remove_password(self, application_id: str, key_id: str, ctx: Optional[RequestContext] = None) -> int:
        body = encode({"keyId": key_id}, "ApplicationService.remove_password")
        result = self.client.post(
            HttpRequestInput(
                "POST",
                f"/applications/{application_id}/removePassword",
                (HTTP_OK, HTTP_NO_CONTENT),
                body=body,
                consistency_failure_func=RETRY_ON_NOT_FOUND,
            ),
            ctx,
        )
        return result.status_code

    # ─────────────────────────────────────────────────────────────────────
    # Owners
    # ─────────────────────────────────────────────────────────────────────
    def list_owners(self, application_id: str, ctx: Optional[RequestContext] = None) -> Tuple[List[str], int]:
        """Return the object IDs of the application's owners."""
        op = "ApplicationService.list_owners"
        result = self.client.get(
            HttpRequestInput(
                "GET",
                f"/applications/{application_id}/owners",
                (HTTP_OK,),
                query=Query(select=["id"]),
                consistency_failure_func=RETRY_ON_NOT_FOUND,
            ),
            ctx,
        )
        owners = decode_list(result.json(op), DirectoryObject, op, result.status_code)
        return [o.edge_id for o in owners if o.edge_id], result.status_code

    def get_owner(
        self,
        application_id: str,
        owner_id: str,
        ctx: Optional[RequestContext] = None,
    ) -> Tuple[str, int]:
        """Look up a single owner reference. Raises DirectoryAPIError (404) for non-owners."""
        op = "ApplicationService.get_owner"
        result = self.client.get(
            HttpRequestInput(
                "GET",
                f"/applications/{application_id}/owners/{owner_id}/$ref",
                (HTTP_OK,),
                query=Query(select=["id", "url"]),
                consistency_failure_func=RETRY_ON_NOT_FOUND,
            ),
            ctx,
        )
        owner = decode(result.json(op), DirectoryObject, op, result.status_code)
        return owner.edge_id or owner_id, result.status_code

    def add_owners(self, application: Application, ctx: Optional[RequestContext] = None) -> ReconcileResult:
        """Link every entry of ``application.owners``; existing owners count as satisfied."""
        return self.reconciler.add(OWNERS, application.id, application.owners, ctx)

    def remove_owners(
        self,
        application_id: str,
        owner_ids: Optional[Sequence[str]],
        ctx: Optional[RequestContext] = None,
    ) -> ReconcileResult:
        """Unlink the given owners; ids that are not owners are skipped."""
        return self.reconciler.remove(OWNERS, application_id, owner_ids, ctx)

    def sync_owners(
        self,
        application_id: str,
        owner_ids: Optional[Sequence[str]],
        ctx: Optional[RequestContext] = None,
    ) -> ReconcileResult:
        return self.reconciler.sync(OWNERS, application_id, owner_ids, ctx)

    # ─────────────────────────────────────────────────────────────────────
    # Extension properties
    # ─────────────────────────────────────────────────────────────────────
    def list_extensions(
        self,
        application_id: str,
        query: Optional[Query] = None,
        ctx: Optional[RequestContext] = None,
    ) -> Tuple[List[ApplicationExtension], int]:
        op = "ApplicationService.list_extensions"
        result = self.client.get(
            HttpRequestInput(
                "GET",
                f"/applications/{application_id}/extensionProperties",
                (HTTP_OK,),
                query=query or Query(),
                consistency_failure_func=RETRY_ON_NOT_FOUND,
            ),
            ctx,
        )
        return decode_list(result.json(op), ApplicationExtension, op, result.status_code), result.status_code

    def create_extension(
        self,
        extension: ApplicationExtension,
        application_id: str,
        ctx: Optional[RequestContext] = None,
    ) -> Tuple[ApplicationExtension, int]:
        op = "ApplicationService.create_extension"
        result = self.client.post(
            HttpRequestInput(
                "POST",
                f"/applications/{application_id}/extensionProperties",
                (HTTP_CREATED,),
                body=encode(extension, op),
            ),
            ctx,
        )
        return decode(result.json(op), ApplicationExtension, op, result.status_code), result.status_code

    def delete_extension(self, application_id: str, extension_id: str, ctx: Optional[RequestContext] = None) -> int:
        result = self.client.delete(
            HttpRequestInput(
                "DELETE",
                f"/applications/{application_id}/extensionProperties/{extension_id}",
                (HTTP_NO_CONTENT,),
                consistency_failure_func=RETRY_ON_NOT_FOUND,
            ),
            ctx,
        )
        return result.status_code

    # ─────────────────────────────────────────────────────────────────────
    # Federated identity credentials
    # ─────────────────────────────────────────────────────────────────────
    def list_federated_identity_credentials(
        self,
        application_id: str,
        query: Optional[Query] = None,
        ctx: Optional[RequestContext] = None,
    ) -> Tuple[List[FederatedIdentityCredential], int]:
        op = "ApplicationService.list_federated_identity_credentials"
        result = self.client.get(
            HttpRequestInput(
                "GET",
                f"/applications/{application_id}/federatedIdentityCredentials",
                (HTTP_OK,),
                query=query or Query(),
                consistency_failure_func=RETRY_ON_NOT_FOUND,
            ),
            ctx,
        )
        creds = decode_list(result.json(op), FederatedIdentityCredential, op, result.status_code)
        return creds, result.status_code

    def get_federated_identity_credential(
        self,
        application_id: str,
        credential_id: str,
        query: Optional[Query] = None,
        ctx: Optional[RequestContext] = None,
    ) -> Tuple[FederatedIdentityCredential, int]:
        op = "ApplicationService.get_federated_identity_credential"
        result = self.client.get(
            HttpRequestInput(
                "GET",
                f"/applications/{application_id}/federatedIdentityCredentials/{credential_id}",
                (HTTP_OK,),
                query=query or Query(),
                consistency_failure_func=RETRY_ON_NOT_FOUND,
            ),
            ctx,
        )
        cred = decode(result.json(op), FederatedIdentityCredential, op, result.status_code)
        return cred, result.status_code

    def create_federated_identity_credential(
        self,
        application_id: str,
        credential: FederatedIdentityCredential,
        ctx: Optional[RequestContext] = None,
    ) -> Tuple[FederatedIdentityCredential, int]:
        op = "ApplicationService.create_federated_identity_credential"
        result = self.client.post(
            HttpRequestInput(
                "POST",
                f"/applications/{application_id}/federatedIdentityCredentials",
                (HTTP_CREATED,),
                body=encode(credential, op),
            ),
            ctx,
        )
        cred = decode(result.json(op), FederatedIdentityCredential, op, result.status_code)
        return cred, result.status_code

    def update_federated_identity_credential(
        self,
        application_id: str,
        credential: FederatedIdentityCredential,
        ctx: Optional[RequestContext] = None,
    ) -> int:
        """Patch a federated identity credential.

        Raises:
            PreconditionError: ``credential.id`` is not set (no request sent)
        """
        if not credential.id:
            raise PreconditionError(
                "ApplicationService.update_federated_identity_credential(): "
                "cannot update federated identity credential with nil ID"
            )
        op = "ApplicationService.update_federated_identity_credential"
        result = self.client.patch(
            HttpRequestInput(
                "PATCH",
                f"/applications/{application_id}/federatedIdentityCredentials/{credential.id}",
                (HTTP_NO_CONTENT,),
                body=encode(credential, op),
            ),
            ctx,
        )
        return result.status_code

    def delete_federated_identity_credential(
        self,
        application_id: str,
        credential_id: str,
        ctx: Optional[RequestContext] = None,
    ) -> int:
        result = self.client.delete(
            HttpRequestInput(
                "DELETE",
                f"/applications/{application_id}/federatedIdentityCredentials/{credential_id}",
                (HTTP_NO_CONTENT,),
                consistency_failure_func=RETRY_ON_NOT_FOUND,
            ),
            ctx,
        )
        return result.status_code

    # ─────────────────────────────────────────────────────────────────────
    # Token issuance policies
    # ─────────────────────────────────────────────────────────────────────
    def assign_token_issuance_policy(
        self,
        application: Application,
        ctx: Optional[RequestContext] = None,
    ) -> ReconcileResult:
        """Assign every entry of ``application.token_issuance_policies``."""
        return self.reconciler.add(TOKEN_ISSUANCE_POLICIES, application.id, application.token_issuance_policies, ctx)

    def list_token_issuance_policy(
        self,
        application_id: str,
        ctx: Optional[RequestContext] = None,
    ) -> Tuple[List[TokenIssuancePolicy], int]:
        op = "ApplicationService.list_token_issuance_policy"
        result = self.client.get(
            HttpRequestInput(
                "GET",
                f"/applications/{application_id}/tokenIssuancePolicies",
                (HTTP_OK,),
                consistency_failure_func=RETRY_ON_NOT_FOUND,
            ),
            ctx,
        )
        return decode_list(result.json(op), TokenIssuancePolicy, op, result.status_code), result.status_code

    def remove_token_issuance_policy(
        self,
        application: Application,
        policy_ids: Optional[Sequence[str]],
        ctx: Optional[RequestContext] = None,
    ) -> ReconcileResult:
        """Unassign the given policies; unassigned ids are skipped."""
        return self.reconciler.remove(TOKEN_ISSUANCE_POLICIES, application.id, policy_ids, ctx)

    def sync_token_issuance_policies(
        self,
        application_id: str,
        policy_ids: Optional[Sequence[str]],
        ctx: Optional[RequestContext] = None,
    ) -> ReconcileResult:
        return self.reconciler.sync(TOKEN_ISSUANCE_POLICIES, application_id, policy_ids, ctx)

    # ─────────────────────────────────────────────────────────────────────
    # Single-edge primitives used by the reconciler
    # ─────────────────────────────────────────────────────────────────────
    def add_reference(
        self,
        relation: Relation,
        application_id: str,
        target: DirectoryObject,
        ctx: Optional[RequestContext] = None,
    ) -> HttpResult:
        if not isinstance(target, relation.reference_type):
            target = relation.reference_type(id=target.id, odata_id=target.odata_id)
        body = encode(target.reference_body(self.base_url), f"ApplicationService.add_reference({relation.name})")
        return self.client.post(
            HttpRequestInput(
                "POST",
                f"/applications/{application_id}/{relation.name}/$ref",
                (HTTP_NO_CONTENT,),
                body=body,
                consistency_failure_func=RETRY_ON_NOT_FOUND,
                valid_status_func=relation.add_classifier,
            ),
            ctx,
        )

    def remove_reference(
        self,
        relation: Relation,
        application_id: str,
        target_id: str,
        ctx: Optional[RequestContext] = None,
    ) -> HttpResult:
        return self.client.delete(
            HttpRequestInput(
                "DELETE",
                f"/applications/{application_id}/{relation.name}/{target_id}/$ref",
                (HTTP_NO_CONTENT,),
                consistency_failure_func=RETRY_ON_NOT_FOUND,
                valid_status_func=relation.remove_classifier,
            ),
            ctx,
        )

    def list_related_ids(
        self,
        relation: Relation,
        application_id: str,
        ctx: Optional[RequestContext] = None,
    ) -> List[str]:
        if relation is OWNERS:
            ids, _ = self.list_owners(application_id, ctx)
            return ids
        if relation is TOKEN_ISSUANCE_POLICIES:
            policies, _ = self.list_token_issuance_policy(application_id, ctx)
            return [p.edge_id for p in policies if p.edge_id]
        raise ValueError(f"unsupported relation: {relation.name}")

    def is_member(
        self,
        relation: Relation,
        application_id: str,
        target_id: str,
        ctx: Optional[RequestContext] = None,
    ) -> bool:
        """Check a single edge; a 404 from the lookup means "not linked"."""
        if relation is not OWNERS:
            return target_id in self.list_related_ids(relation, application_id, ctx)
        try:
            self.get_owner(application_id, target_id, ctx)
        except DirectoryAPIError as e:
            if e.status_code == HTTP_NOT_FOUND:
                return False
            raise
        return True
