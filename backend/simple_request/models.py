from __future__ import annotations
from datetime import datetime, timezone
from typing import List, Optional, Dict, Literal
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
import uuid

EXPORT_VERSION = "1.0"

SecretKind = Literal["api-key", "bearer-token", "basic-auth", "oauth", "custom"]
SecurityLevel = Literal["encrypted", "references-only"]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


class WireModel(BaseModel):
    """camelCase on the wire (desktop frontend shape), snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Secret Models ---

class SecretReference(WireModel):
    id: str
    name: str
    kind: SecretKind = Field("custom", alias="type")
    created_at: str = Field(default_factory=now_iso)
    last_used: Optional[str] = None

class SecretValue(WireModel):
    id: str
    value: str
    expires_at: Optional[float] = None  # monotonic deadline, never serialized to disk

# --- Core Request Models ---

class KeyValue(WireModel):
    """Header or query param row. `value_ref` replaces `value` once redacted."""

    key: str = ""
    value: Optional[str] = ""
    enabled: bool = True
    value_ref: Optional[str] = None

class RequestBody(WireModel):
    type: Literal["none", "json", "form-data", "x-www-form-urlencoded", "raw"] = "none"
    content: str = ""

class BasicAuth(WireModel):
    username: str = ""
    password: Optional[str] = None
    password_ref: Optional[str] = None

class ApiKeyAuth(WireModel):
    key: str = ""
    value: Optional[str] = None
    value_ref: Optional[str] = None
    location: Literal["header", "query"] = Field("header", alias="in")

class Auth(WireModel):
    type: Literal["none", "bearer", "basic", "api-key"] = "none"
    bearer_token: Optional[str] = None
    bearer_token_ref: Optional[str] = None
    basic_auth: Optional[BasicAuth] = None
    api_key: Optional[ApiKeyAuth] = None

class Request(WireModel):
    id: str = Field(default_factory=new_id)
    name: str = "New Request"
    method: Literal["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"] = "GET"
    url: str = ""
    headers: List[KeyValue] = []
    query_params: List[KeyValue] = []
    body: Optional[RequestBody] = None
    auth: Optional[Auth] = None
    collection_id: Optional[str] = None  # back-reference to the owning collection
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

class Collection(WireModel):
    id: str = Field(default_factory=new_id)
    name: str = "My Collection"
    description: Optional[str] = None
    requests: List[Request] = []
    variables: Optional[Dict[str, str]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

# --- Exchange Models ---

class ExportOptions(WireModel):
    include_secrets: bool = False
    secret_references: bool = False

class ExportEnvelope(WireModel):
    version: str = EXPORT_VERSION
    exported_at: str = Field(default_factory=now_iso)
    security_level: SecurityLevel = "references-only"
    collections: List[Collection] = []

class EncryptedEnvelope(WireModel):
    encrypted: Literal[True] = True
    version: str = EXPORT_VERSION
    data: str

class UnresolvedSecret(WireModel):
    request_id: str
    slot: str
    reference_id: str

class ImportReport(WireModel):
    collections: List[Collection] = []
    unresolved: List[UnresolvedSecret] = []
