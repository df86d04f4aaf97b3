"""OData query options, response metadata and structured errors."""
from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Structured error texts returned by the directory. Matched as regular
# expressions against the rendered error (code, message, inner error).
ERROR_ADDED_OBJECT_REFERENCES_ALREADY_EXIST = r"One or more added object references already exist"
ERROR_REMOVED_OBJECT_REFERENCES_DO_NOT_EXIST = r"One or more removed object references do not exist"
ERROR_RESOURCE_DOES_NOT_EXIST = (
    r"Resource '.+' does not exist or one of its queried reference-property objects are not present"
)
ERROR_CANNOT_DELETE_OR_UPDATE_ENABLED_ENTITLEMENT = (
    r"Permission \(scope\) or role cannot be deleted or updated unless disabled first"
)

METADATA_FULL = "full"
METADATA_MINIMAL = "minimal"
METADATA_NONE = "none"

CONSISTENCY_LEVEL_EVENTUAL = "eventual"


@dataclass(frozen=True)
class Query:
    """OData query options for a single request.

    Only what the client needs to emit; no parsing or validation of filter
    expressions is attempted.
    """

    select: List[str] = field(default_factory=list)
    expand: Optional[str] = None
    filter: Optional[str] = None
    search: Optional[str] = None
    order_by: Optional[str] = None
    top: int = 0
    count: bool = False
    consistency_level: Optional[str] = None
    metadata: Optional[str] = None

    def values(self) -> Dict[str, str]:
        """Render the query string parameters."""
        params: Dict[str, str] = {}
        if self.select:
            params["$select"] = ",".join(self.select)
        if self.expand:
            params["$expand"] = self.expand
        if self.filter:
            params["$filter"] = self.filter
        if self.search:
            params["$search"] = self.search
        if self.order_by:
            params["$orderby"] = self.order_by
        if self.top > 0:
            params["$top"] = str(self.top)
        if self.count:
            params["$count"] = "true"
        return params

    def headers(self) -> Dict[str, str]:
        """Render the request headers implied by the query."""
        headers: Dict[str, str] = {}
        if self.consistency_level:
            headers["ConsistencyLevel"] = self.consistency_level
        if self.metadata:
            headers["Accept"] = f"application/json;odata.metadata={self.metadata}"
        return headers


@dataclass
class ODataError:
    """Structured error carried in a non-success response body."""

    code: Optional[str] = None
    message: Optional[str] = None
    inner_error: Optional["ODataError"] = None
    details: List["ODataError"] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> Optional["ODataError"]:
        if not isinstance(data, dict):
            return None
        message = data.get("message")
        # Older endpoints wrap the message as {"lang": ..., "value": ...}
        if isinstance(message, dict):
            message = message.get("value")
        inner = data.get("innerError") or data.get("innererror")
        return cls(
            code=data.get("code"),
            message=message,
            inner_error=(
                cls.from_dict(inner) if isinstance(inner, dict) and (inner.get("code") or inner.get("message")) else None
            ),
            details=[d for d in (cls.from_dict(item) for item in data.get("details") or []) if d is not None],
        )

    def __str__(self) -> str:
        parts = []
        if self.code:
            parts.append(self.code)
        if self.message:
            parts.append(self.message)
        if self.inner_error is not None:
            inner = str(self.inner_error)
            if inner:
                parts.append(inner)
        for detail in self.details:
            rendered = str(detail)
            if rendered:
                parts.append(rendered)
        return ": ".join(parts)

    def match(self, pattern: str) -> bool:
        """Return True when the rendered error matches the given pattern."""
        return re.search(pattern, str(self)) is not None


@dataclass
class OData:
    """OData annotations parsed from a response body."""

    context: Optional[str] = None
    count: Optional[int] = None
    next_link: Optional[str] = None
    error: Optional[ODataError] = None

    @classmethod
    def from_body(cls, data: Any) -> "OData":
        if not isinstance(data, dict):
            return cls()
        error_data = data.get("error") or data.get("odata.error")
        return cls(
            context=data.get("@odata.context"),
            count=data.get("@odata.count"),
            next_link=data.get("@odata.nextLink"),
            error=ODataError.from_dict(error_data),
        )
