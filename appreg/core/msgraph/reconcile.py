"""Relationship reconciliation for application edges (owners, token issuance policies).

Edges are added and removed one at a time, in the order the caller gives them.
Each edge call is retried on consistency failures and classified for
idempotency by the transport, so "already linked" and "already gone" count as
success. The first edge that fails for any other reason stops the batch;
edges applied before it stay applied, since the directory offers no multi-edge
transaction.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence, Type

from .client import RequestContext
from .consistency import (
    ADDED_REFERENCE_EXISTS,
    REFERENCED_RESOURCE_MISSING,
    REMOVED_REFERENCE_MISSING,
    HTTP_NO_CONTENT,
    ResponsePredicate,
)
from .exceptions import DirectoryError, PreconditionError, ReconcileError, RequestCancelledError
from .models import DirectoryObject, TokenIssuancePolicy

if TYPE_CHECKING:
    from .applications import ApplicationService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Relation:
    """A named many-to-many relation hanging off an application.

    Attributes:
        name: Navigation property name, used in the request path
        bulk_listable: True when membership is checked against one list call;
            False when each target is checked with its own lookup
        add_classifier: Accepts "edge already exists" responses on add
        remove_classifier: Accepts "edge already gone" responses on remove
        reference_type: Entity type used to build ``$ref`` bodies
    """

    name: str
    bulk_listable: bool
    add_classifier: ResponsePredicate
    remove_classifier: ResponsePredicate
    reference_type: Type[DirectoryObject] = DirectoryObject


OWNERS = Relation(
    "owners",
    bulk_listable=False,
    add_classifier=ADDED_REFERENCE_EXISTS,
    remove_classifier=REMOVED_REFERENCE_MISSING,
)

TOKEN_ISSUANCE_POLICIES = Relation(
    "tokenIssuancePolicies",
    bulk_listable=True,
    add_classifier=ADDED_REFERENCE_EXISTS,
    remove_classifier=REFERENCED_RESOURCE_MISSING,
    reference_type=TokenIssuancePolicy,
)


class EdgeOutcome(str, Enum):
    APPLIED = "applied"
    ALREADY_SATISFIED = "already_satisfied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class EdgeResult:
    relation: str
    target_id: str
    outcome: EdgeOutcome
    status_code: int = 0


@dataclass
class ReconcileResult:
    """Outcome of one add/remove/sync batch.

    ``status_code`` is the status of the last edge call made, or 204 when the
    batch needed no mutating call.
    """

    status_code: int = HTTP_NO_CONTENT
    edges: List[EdgeResult] = field(default_factory=list)

    def _with(self, outcome: EdgeOutcome) -> List[str]:
        return [e.target_id for e in self.edges if e.outcome is outcome]

    @property
    def applied(self) -> List[str]:
        return self._with(EdgeOutcome.APPLIED)

    @property
    def already_satisfied(self) -> List[str]:
        return self._with(EdgeOutcome.ALREADY_SATISFIED)

    @property
    def skipped(self) -> List[str]:
        return self._with(EdgeOutcome.SKIPPED)

    @property
    def changed(self) -> bool:
        return bool(self.applied)


class RelationshipReconciler:
    """Drive edge-level add/remove calls toward a desired relationship state."""

    def __init__(self, service: "ApplicationService"):
        """Initialize reconciler.

        Args:
            service: Application service providing the single-edge primitives
        """
        self.service = service

    def add(
        self,
        relation: Relation,
        application_id: Optional[str],
        targets: Optional[Sequence[DirectoryObject]],
        ctx: Optional[RequestContext] = None,
    ) -> ReconcileResult:
        """Ensure each target is linked to the application.

        For bulk-listable relations, targets already present in the live set
        are recorded as satisfied without a call. Otherwise every target gets
        an add call and duplicates are classified by the directory's response.

        Raises:
            PreconditionError: Missing application id, ``targets`` is None, or
                a target has no id. Checked before any request is sent.
            ReconcileError: An edge failed with an unclassified error
        """
        if not application_id:
            raise PreconditionError(f"cannot add {relation.name} to application with nil ID")
        if targets is None:
            raise PreconditionError(f"cannot update application with nil {relation.name}")
        targets = list(targets)
        if any(not target.edge_id for target in targets):
            raise PreconditionError(f"cannot link {relation.name} target without an ID")

        live = set(self.service.list_related_ids(relation, application_id, ctx)) if relation.bulk_listable else None
        result = ReconcileResult()
        calls = 0

        for target in targets:
            target_id = target.edge_id
            if live is not None and target_id in live:
                self._record(result, application_id, relation, target_id, EdgeOutcome.ALREADY_SATISFIED)
                continue
            status = self._apply(
                result,
                application_id,
                relation,
                target_id,
                lambda: self.service.add_reference(relation, application_id, target, ctx),
            )
            result.status_code = status
            calls += 1

        if not calls:
            result.status_code = HTTP_NO_CONTENT
        return result

    def remove(
        self,
        relation: Relation,
        application_id: Optional[str],
        target_ids: Optional[Iterable[str]],
        ctx: Optional[RequestContext] = None,
    ) -> ReconcileResult:
        """Ensure each target id is no longer linked to the application.

        Non-members are skipped without a mutating call. Membership comes from
        one list call for bulk-listable relations, or from a per-target lookup
        where a 404 means "not a member".

        Raises:
            PreconditionError: Missing application id or ``target_ids`` is None
            DirectoryError: A membership lookup failed (propagated unchanged)
            ReconcileError: A delete failed with an unclassified error
        """
        if not application_id:
            raise PreconditionError(f"cannot remove {relation.name} from application with nil ID")
        if target_ids is None:
            raise PreconditionError(f"cannot remove, nil {relation.name} IDs")

        target_ids = list(target_ids)
        result = ReconcileResult()

        live = None
        if relation.bulk_listable:
            live = set(self.service.list_related_ids(relation, application_id, ctx))
            if not live:
                for target_id in target_ids:
                    self._record(result, application_id, relation, target_id, EdgeOutcome.SKIPPED)
                return result

        calls = 0
        for target_id in target_ids:
            if live is not None:
                member = target_id in live
            else:
                member = self.service.is_member(relation, application_id, target_id, ctx)
            if not member:
                self._record(result, application_id, relation, target_id, EdgeOutcome.SKIPPED)
                continue
            result.status_code = self._apply(
                result,
                application_id,
                relation,
                target_id,
                lambda: self.service.remove_reference(relation, application_id, target_id, ctx),
            )
            calls += 1

        if not calls:
            result.status_code = HTTP_NO_CONTENT
        return result

    def sync(
        self,
        relation: Relation,
        application_id: Optional[str],
        desired_ids: Optional[Iterable[str]],
        ctx: Optional[RequestContext] = None,
    ) -> ReconcileResult:
        """Make the live relation equal to ``desired_ids``.

        The live set is listed once; only ids missing from it are added and
        only ids absent from ``desired_ids`` are removed.
        """
        if not application_id:
            raise PreconditionError(f"cannot sync {relation.name} for application with nil ID")
        if desired_ids is None:
            raise PreconditionError(f"cannot sync, nil {relation.name} IDs")

        desired = list(dict.fromkeys(desired_ids))
        live = list(dict.fromkeys(self.service.list_related_ids(relation, application_id, ctx)))
        live_set = set(live)
        desired_set = set(desired)

        result = ReconcileResult()
        calls = 0
        for target_id in desired:
            if target_id in live_set:
                self._record(result, application_id, relation, target_id, EdgeOutcome.ALREADY_SATISFIED)
                continue
            target = relation.reference_type(id=target_id)
            result.status_code = self._apply(
                result,
                application_id,
                relation,
                target_id,
                lambda: self.service.add_reference(relation, application_id, target, ctx),
            )
            calls += 1

        for target_id in live:
            if target_id in desired_set:
                continue
            result.status_code = self._apply(
                result,
                application_id,
                relation,
                target_id,
                lambda: self.service.remove_reference(relation, application_id, target_id, ctx),
            )
            calls += 1

        if not calls:
            result.status_code = HTTP_NO_CONTENT
        return result

    def _apply(self, result: ReconcileResult, application_id: str, relation: Relation, target_id: str, call) -> int:
        try:
            http_result = call()
        except RequestCancelledError:
            raise
        except DirectoryError as e:
            status = getattr(e, "status_code", 0)
            self._record(result, application_id, relation, target_id, EdgeOutcome.FAILED, status)
            logger.error(f"[{relation.name}] {application_id} -> {target_id} failed: {e}")
            raise ReconcileError(relation.name, application_id, target_id, e, result.edges) from e

        outcome = EdgeOutcome.ALREADY_SATISFIED if http_result.accepted else EdgeOutcome.APPLIED
        self._record(result, application_id, relation, target_id, outcome, http_result.status_code)
        return http_result.status_code

    @staticmethod
    def _record(
        result: ReconcileResult,
        application_id: str,
        relation: Relation,
        target_id: str,
        outcome: EdgeOutcome,
        status_code: int = 0,
    ) -> None:
        result.edges.append(EdgeResult(relation.name, target_id, outcome, status_code))
        if outcome is not EdgeOutcome.FAILED:
            logger.info(f"[{relation.name}] {application_id} -> {target_id}: {outcome.value}")
