"""Consistency retry policies and idempotent outcome classifiers.

The directory is eventually consistent: an object written through one replica
may be reported missing by another for a short while, and edge mutations
report "already exists" / "does not exist" as client errors. Both concerns
are expressed as response predicates taking ``(response, odata_error)``:

- a *consistency policy* says whether a non-success response should be
  retried (the transport bounds and schedules the attempts)
- an *outcome classifier* says whether a non-success response should be
  accepted as success, making edge mutations idempotent

Predicates are immutable values composed with ``&`` and ``|``.
"""
from __future__ import annotations
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from .odata import (
    ODataError,
    ERROR_ADDED_OBJECT_REFERENCES_ALREADY_EXIST,
    ERROR_REMOVED_OBJECT_REFERENCES_DO_NOT_EXIST,
    ERROR_RESOURCE_DOES_NOT_EXIST,
    ERROR_CANNOT_DELETE_OR_UPDATE_ENABLED_ENTITLEMENT,
)

HTTP_OK = 200
HTTP_CREATED = 201
HTTP_NO_CONTENT = 204
HTTP_BAD_REQUEST = 400
HTTP_NOT_FOUND = 404


class ResponsePredicate:
    """Named, stateless predicate over a response and its structured error."""

    __slots__ = ("name", "_func")

    def __init__(self, name: str, func: Callable[[Any, Optional[ODataError]], bool]):
        self.name = name
        self._func = func

    def __call__(self, response: Any, error: Optional[ODataError] = None) -> bool:
        if response is None:
            return False
        return bool(self._func(response, error))

    def __and__(self, other: "ResponsePredicate") -> "ResponsePredicate":
        return all_of(self, other)

    def __or__(self, other: "ResponsePredicate") -> "ResponsePredicate":
        return any_of(self, other)

    def __repr__(self) -> str:
        return f"<ResponsePredicate {self.name}>"


def status_is(*codes: int) -> ResponsePredicate:
    """Match responses whose status code is one of ``codes``."""
    wanted = frozenset(codes)
    return ResponsePredicate(
        "status=" + "|".join(str(c) for c in sorted(wanted)),
        lambda resp, _err: resp.status_code in wanted,
    )


def error_matches(pattern: str) -> ResponsePredicate:
    """Match responses carrying a structured error that matches ``pattern``."""
    return ResponsePredicate(
        f"error~{pattern[:40]}",
        lambda _resp, err: err is not None and err.match(pattern),
    )


def all_of(*predicates: ResponsePredicate) -> ResponsePredicate:
    preds = tuple(predicates)
    return ResponsePredicate(
        "(" + " & ".join(p.name for p in preds) + ")",
        lambda resp, err: all(p(resp, err) for p in preds),
    )


def any_of(*predicates: ResponsePredicate) -> ResponsePredicate:
    preds = tuple(predicates)
    return ResponsePredicate(
        "(" + " | ".join(p.name for p in preds) + ")",
        lambda resp, err: any(p(resp, err) for p in preds),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Consistency retry policies
# ─────────────────────────────────────────────────────────────────────────────
RETRY_ON_NOT_FOUND = status_is(HTTP_NOT_FOUND)

APPLICATION_UPDATE_CONSISTENCY = RETRY_ON_NOT_FOUND | (
    status_is(HTTP_BAD_REQUEST) & error_matches(ERROR_CANNOT_DELETE_OR_UPDATE_ENABLED_ENTITLEMENT)
)

# ─────────────────────────────────────────────────────────────────────────────
# Outcome classifiers
# ─────────────────────────────────────────────────────────────────────────────
ADDED_REFERENCE_EXISTS = status_is(HTTP_BAD_REQUEST) & error_matches(ERROR_ADDED_OBJECT_REFERENCES_ALREADY_EXIST)

REMOVED_REFERENCE_MISSING = status_is(HTTP_BAD_REQUEST) & error_matches(ERROR_REMOVED_OBJECT_REFERENCES_DO_NOT_EXIST)

REFERENCED_RESOURCE_MISSING = status_is(HTTP_NOT_FOUND) & error_matches(ERROR_RESOURCE_DOES_NOT_EXIST)


class Decision(str, Enum):
    """What the transport should do with one attempt's response."""

    VALID = "valid"
    ACCEPTED = "accepted"
    RETRY = "retry"
    FAIL = "fail"


def decide(
    response: Any,
    error: Optional[ODataError],
    valid_status_codes: Iterable[int],
    valid_status_func: Optional[ResponsePredicate] = None,
    consistency_failure_func: Optional[ResponsePredicate] = None,
) -> Decision:
    """Classify a response: declared-valid, classifier-accepted, retryable or failed.

    The classifier is consulted before the consistency policy so that an
    idempotent "already satisfied" response is never retried.
    """
    if response.status_code in set(valid_status_codes):
        return Decision.VALID
    if valid_status_func is not None and valid_status_func(response, error):
        return Decision.ACCEPTED
    if consistency_failure_func is not None and consistency_failure_func(response, error):
        return Decision.RETRY
    return Decision.FAIL
