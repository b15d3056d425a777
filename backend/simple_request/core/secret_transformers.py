import logging
from typing import Any, List, NamedTuple, Optional

from simple_request.models import Request
from simple_request.core.crypto import CryptoError, decrypt_value, encrypt_value, is_encrypted_string

logger = logging.getLogger(__name__)

SECRET_HEADERS = frozenset(
    {
        "authorization",
        "api-key",
        "x-api-key",
        "x-auth-token",
        "x-access-token",
        "authentication",
    }
)


def is_secret_header(name: str | None) -> bool:
    return (name or "").strip().lower() in SECRET_HEADERS


class SecretSlot(NamedTuple):
    """One credential location inside a request: a value field and its *Ref sibling."""

    name: str
    kind: str
    holder: Any
    value_attr: str
    ref_attr: str
    empty: Optional[str] = None

    @property
    def value(self) -> Optional[str]:
        return getattr(self.holder, self.value_attr)

    @property
    def ref(self) -> Optional[str]:
        return getattr(self.holder, self.ref_attr)

    def set_value(self, value: str):
        setattr(self.holder, self.value_attr, value)
        setattr(self.holder, self.ref_attr, None)

    def set_ref(self, ref: str):
        setattr(self.holder, self.value_attr, None)
        setattr(self.holder, self.ref_attr, ref)

    def drop(self):
        setattr(self.holder, self.value_attr, self.empty)
        setattr(self.holder, self.ref_attr, None)


def secret_slots(req: Request) -> List[SecretSlot]:
    """
    Every slot that holds, or may hold, a credential. Headers qualify by name,
    or by already carrying a reference (names can be renamed after export).
    """
    slots: List[SecretSlot] = []
    auth = req.auth
    if auth is not None:
        slots.append(SecretSlot("auth.bearerToken", "bearer-token", auth, "bearer_token", "bearer_token_ref"))
        if auth.basic_auth is not None:
            slots.append(SecretSlot("auth.basicAuth.password", "basic-auth", auth.basic_auth, "password", "password_ref"))
        if auth.api_key is not None:
            slots.append(SecretSlot("auth.apiKey.value", "api-key", auth.api_key, "value", "value_ref"))
    for i, header in enumerate(req.headers or []):
        if is_secret_header(header.key) or header.value_ref:
            slots.append(SecretSlot(f"headers[{i}]", "custom", header, "value", "value_ref", empty=""))
    return slots


# --- At-rest encryption of local workspace files ---

def transform_request_for_encryption(req: Request, master_key: bytes | None) -> Request:
    if not master_key:
        return req
    r = req.model_copy(deep=True)
    for slot in secret_slots(r):
        value = slot.value
        if value and not is_encrypted_string(value):
            setattr(slot.holder, slot.value_attr, encrypt_value(value, master_key))
    return r


def _open_value(value: str, master_key: bytes, where: str) -> str:
    try:
        return decrypt_value(value, master_key)
    except CryptoError as exc:
        logger.warning("could not decrypt %s: %s", where, exc)
        return value


def transform_request_for_decryption(req: Request, master_key: bytes | None) -> Request:
    if not master_key:
        return req
    r = req.model_copy(deep=True)
    for slot in secret_slots(r):
        if is_encrypted_string(slot.value):
            setattr(slot.holder, slot.value_attr, _open_value(slot.value, master_key, f"{slot.name} of request {r.id}"))
    # Headers renamed since they were saved still hold ciphertext.
    for i, header in enumerate(r.headers or []):
        if is_encrypted_string(header.value):
            header.value = _open_value(header.value, master_key, f"headers[{i}] of request {r.id}")
    return r


def request_contains_encrypted_values(req: Request) -> bool:
    values = [slot.value for slot in secret_slots(req)] + [h.value for h in req.headers or []]
    return any(is_encrypted_string(v) for v in values)
