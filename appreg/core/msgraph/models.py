"""Entity shapes exchanged with the directory and their JSON codec.

Only identity and the fields needed by the services are modelled explicitly;
every other attribute round-trips through ``properties`` untouched.
"""
from __future__ import annotations
import json
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Type, TypeVar

from .exceptions import CodecError

E = TypeVar("E", bound="Entity")


@dataclass
class Entity:
    """Base for JSON-backed entities. Subclasses declare ``_json_fields``."""

    _json_fields: ClassVar[Dict[str, str]] = {}

    def to_dict(self) -> Dict[str, Any]:
        data = dict(getattr(self, "properties", {}) or {})
        for attr, key in self._json_fields.items():
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls: Type[E], data: Any) -> E:
        if not isinstance(data, dict):
            raise TypeError(f"expected JSON object for {cls.__name__}, got {type(data).__name__}")
        known = {attr: data.get(key) for attr, key in cls._json_fields.items()}
        mapped = set(cls._json_fields.values())
        rest = {k: v for k, v in data.items() if k not in mapped and not k.startswith("@odata.")}
        return cls(**known, properties=rest)


@dataclass
class DirectoryObject(Entity):
    """Opaque reference to any directory object. Edge identity is the ``id``."""

    id: Optional[str] = None
    odata_id: Optional[str] = None
    odata_type: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)

    _json_fields: ClassVar[Dict[str, str]] = {
        "id": "id",
        "odata_id": "@odata.id",
        "odata_type": "@odata.type",
    }
    reference_collection: ClassVar[str] = "directoryObjects"

    @property
    def edge_id(self) -> Optional[str]:
        """Identifier used to compare edge endpoints."""
        if self.id:
            return self.id
        if self.odata_id:
            return self.odata_id.rstrip("/").rsplit("/", 1)[-1]
        return None

    def reference_body(self, base_url: str) -> Dict[str, str]:
        """Body for a ``$ref`` POST, building ``@odata.id`` from the id when unset."""
        odata_id = self.odata_id or f"{base_url}/{self.reference_collection}/{self.id}"
        return {"@odata.id": odata_id}


@dataclass
class TokenIssuancePolicy(DirectoryObject):
    display_name: Optional[str] = None
    definition: Optional[List[str]] = None
    is_organization_default: Optional[bool] = None

    _json_fields: ClassVar[Dict[str, str]] = {
        "id": "id",
        "odata_id": "@odata.id",
        "odata_type": "@odata.type",
        "display_name": "displayName",
        "definition": "definition",
        "is_organization_default": "isOrganizationDefault",
    }
    reference_collection: ClassVar[str] = "policies/tokenIssuancePolicies"


@dataclass
class PasswordCredential(Entity):
    custom_key_identifier: Optional[str] = None
    display_name: Optional[str] = None
    end_date_time: Optional[str] = None
    hint: Optional[str] = None
    key_id: Optional[str] = None
    secret_text: Optional[str] = None
    start_date_time: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)

    _json_fields: ClassVar[Dict[str, str]] = {
        "custom_key_identifier": "customKeyIdentifier",
        "display_name": "displayName",
        "end_date_time": "endDateTime",
        "hint": "hint",
        "key_id": "keyId",
        "secret_text": "secretText",
        "start_date_time": "startDateTime",
    }


@dataclass
class FederatedIdentityCredential(Entity):
    id: Optional[str] = None
    name: Optional[str] = None
    issuer: Optional[str] = None
    subject: Optional[str] = None
    audiences: Optional[List[str]] = None
    description: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)

    _json_fields: ClassVar[Dict[str, str]] = {
        "id": "id",
        "name": "name",
        "issuer": "issuer",
        "subject": "subject",
        "audiences": "audiences",
        "description": "description",
    }


@dataclass
class ApplicationExtension(Entity):
    id: Optional[str] = None
    name: Optional[str] = None
    data_type: Optional[str] = None
    target_objects: Optional[List[str]] = None
    app_display_name: Optional[str] = None
    is_synced_from_on_premises: Optional[bool] = None
    properties: Dict[str, Any] = field(default_factory=dict)

    _json_fields: ClassVar[Dict[str, str]] = {
        "id": "id",
        "name": "name",
        "data_type": "dataType",
        "target_objects": "targetObjects",
        "app_display_name": "appDisplayName",
        "is_synced_from_on_premises": "isSyncedFromOnPremises",
    }


@dataclass
class Application(Entity):
    """Application registration.

    ``owners`` is sent as ``owners@odata.bind`` on create; after creation the
    owner and policy collections are managed through the relationship
    operations. ``token_issuance_policies`` is never serialised.
    """

    id: Optional[str] = None
    app_id: Optional[str] = None
    display_name: Optional[str] = None
    sign_in_audience: Optional[str] = None
    owners: Optional[List[DirectoryObject]] = None
    token_issuance_policies: Optional[List[TokenIssuancePolicy]] = None
    properties: Dict[str, Any] = field(default_factory=dict)

    _json_fields: ClassVar[Dict[str, str]] = {
        "id": "id",
        "app_id": "appId",
        "display_name": "displayName",
        "sign_in_audience": "signInAudience",
    }

    def to_dict(self, base_url: Optional[str] = None) -> Dict[str, Any]:
        data = super().to_dict()
        if self.owners and base_url:
            data["owners@odata.bind"] = [o.reference_body(base_url)["@odata.id"] for o in self.owners]
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "Application":
        app = super().from_dict(data)
        owners = app.properties.pop("owners", None)
        if isinstance(owners, list):
            app.owners = [DirectoryObject.from_dict(o) for o in owners]
        policies = app.properties.pop("tokenIssuancePolicies", None)
        if isinstance(policies, list):
            app.token_issuance_policies = [TokenIssuancePolicy.from_dict(p) for p in policies]
        return app


# ─────────────────────────────────────────────────────────────────────────────
# Codec
# ─────────────────────────────────────────────────────────────────────────────
def encode(payload: Any, operation: str) -> bytes:
    """Serialise an entity or plain dict to a JSON request body."""
    try:
        data = payload.to_dict() if isinstance(payload, Entity) else payload
        return json.dumps(data).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise CodecError("encode", operation, e) from e


def decode(data: Any, cls: Type[E], operation: str, status_code: int = 0) -> E:
    try:
        return cls.from_dict(data)
    except (TypeError, ValueError, KeyError) as e:
        raise CodecError("decode", operation, e, status_code) from e


def decode_list(data: Any, cls: Type[E], operation: str, status_code: int = 0) -> List[E]:
    """Decode a ``{"value": [...]}`` list envelope."""
    if not isinstance(data, dict) or not isinstance(data.get("value", []), list):
        raise CodecError("decode", operation, TypeError("expected {\"value\": [...]} envelope"), status_code)
    return [decode(item, cls, operation, status_code) for item in data.get("value") or []]
